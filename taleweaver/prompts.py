"""Handlebars prompt rendering for the generation stages.

Each stage has a default template below; config.json `prompts.<stage>`
overrides it when non-empty. Templates use triple-stash ({{{x}}}) for
free text so story prose is not HTML-escaped. Block bodies open with their
newline and close on a content line: pybars strips whitespace around a
block tag that stands alone on its line.
"""

from collections.abc import Callable
from typing import Any

import pybars

from taleweaver.models import Character, Message, Session, StoryType

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


def _helper_numbered(this, options, items):
    """{{#numbered array}}...{{/numbered}}: 1-based enumeration as {{n}} and {{item}}."""
    result = []
    for n, item in enumerate(list(items), start=1):
        result.extend(options["fn"]({"n": n, "item": item}))
    return result


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
    "numbered": _helper_numbered,
}


WARMUP_REPLY_PROMPT = """\
You are the Story Guide, a warm and playful storyteller chatting with a young child
before a story begins. Ask about what they like and keep replies short and kind.

Conversation so far:{{#each msgs}}
{{#if is_child}}Child: {{{text}}}{{else}}Story Guide: {{{text}}}{{/if}}{{/each}}

Reply as the Story Guide with one or two short sentences. Return only the reply text."""

STORY_BEAT_PROMPT = """\
You are co-writing a {{{story.name}}} story with a young child.

Arc steps:{{#numbered story.steps}}
{{n}}. {{{item}}}{{/numbered}}

Current Arc Step: {{{arc_step}}} ({{arc_step_number}} of {{arc_step_count}}){{#if chars}}

Supporting characters:{{#each chars}}
- {{{name}}} ({{{role}}}){{#if traits}}: {{{traits}}}{{/if}}{{/each}}{{/if}}

Story so far:
{{{history}}}

Continue the story with one short paragraph for the current arc step, then offer
exactly 3 choices for what happens next. At most one choice may introduce a new
character. Return only JSON:
{"storyContinuation": "...", "options": [{"id": "A", "text": "...",
 "introducesCharacter": false, "newCharacterName": "...", "newCharacterLabel": "...",
 "newCharacterType": "Family | Friend | Pet | Toy | Other"}]}"""

CHARACTER_TRAITS_PROMPT = """\
A new character just joined a {{{story.name}}} story: {{{char.name}}}{{#if char.label}}, {{{char.label}}}{{/if}}.

Story so far:
{{{history}}}

Ask the child one short, friendly question about what {{{char.name}}} is like, and
suggest 2 or 3 simple traits. Return only JSON:
{"question": "...", "suggestedTraits": ["...", "..."]}"""

STORY_ENDING_PROMPT = """\
The child has finished the adventure of a {{{story.name}}} story.

Story so far:
{{{history}}}

Write exactly 3 possible gentle, happy endings of two or three short sentences each.
Return only JSON:
{"endings": [{"id": "A", "text": "..."}, {"id": "B", "text": "..."}, {"id": "C", "text": "..."}]}"""

DEFAULT_PROMPTS: dict[str, str] = {
    "warmup_reply": WARMUP_REPLY_PROMPT,
    "story_beat": STORY_BEAT_PROMPT,
    "character_traits": CHARACTER_TRAITS_PROMPT,
    "story_ending": STORY_ENDING_PROMPT,
}


def template_for(stage: str, overrides: dict[str, str] | None = None) -> str:
    override = (overrides or {}).get(stage, "")
    return override or DEFAULT_PROMPTS[stage]


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def format_history(messages: list[Message]) -> str:
    """Transcript as plain text: "> " for the child, bare for the narrator.

    Options messages are rendered as their lettered choices.
    """
    parts: list[str] = []
    for msg in messages:
        if msg.sender == "child":
            parts.append(f"> {msg.text}")
        elif msg.options:
            parts.append("\n".join(f"  {c.id}) {c.text}" for c in msg.options))
        else:
            parts.append(msg.text)
    return "\n\n".join(parts)


def build_context(
    session: Session,
    messages: list[Message],
    story_type: StoryType | None = None,
    characters: list[Character] | None = None,
    character: Character | None = None,
) -> dict[str, Any]:
    """Assemble template variables from session state.

    Returns a dict suitable for passing to render_prompt().
    """
    msgs = [
        {
            "sender": m.sender,
            "kind": m.kind,
            "text": m.text,
            "is_child": m.sender == "child",
        }
        for m in messages
    ]
    ctx: dict[str, Any] = {
        "session_id": session.id,
        "title": session.story_title or "",
        "msgs": msgs,
        "history": format_history(messages),
    }

    if story_type is not None:
        steps = story_type.arc_template.steps
        index = min(session.arc_step_index, story_type.last_arc_step_index)
        ctx["story"] = {"id": story_type.id, "name": story_type.name, "steps": steps}
        ctx["arc_step"] = story_type.arc_step(index)
        ctx["arc_step_number"] = index + 1
        ctx["arc_step_count"] = len(steps)

    if characters:
        ctx["chars"] = [
            {"name": c.name, "role": c.role, "traits": ", ".join(c.traits)}
            for c in characters
        ]

    if character is not None:
        ctx["char"] = {
            "name": character.name,
            "label": character.label or "",
            "role": character.role,
        }

    return ctx
