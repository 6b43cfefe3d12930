"""Character introduction and the TraitsGate.

When a chosen option introduces a character, the engine creates the
Character, links it to the session, and asks the child what the character
is like. A successful question opens the gate (pending_character_traits);
no beat can run until the child answers.

Asking is fail-open: if the question cannot be generated, nothing is
written and the caller continues the story as if no character had been
introduced. The Character itself stays (an orphan without a gate is fine).
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from taleweaver.models import (
    Character,
    Choice,
    Message,
    PendingCharacterTraits,
    Session,
    utcnow,
)

from .beats import BeatOutcome, advance_and_run_beat
from .context import EngineContext, require_session
from .errors import PreconditionError

logger = logging.getLogger(__name__)

DEFAULT_CHARACTER_NAME = "New Friend"
DEFAULT_CHARACTER_ROLE = "Friend"


class AnswerOutcome(BaseModel):
    character_id: str
    answer_message_id: str
    beat: BeatOutcome


def introduce_character(
    ctx: EngineContext, session: Session, options_message: Message, choice: Choice
) -> Character:
    """Create the Character for `choice` and link it into the session."""
    name = choice.new_character_name or choice.new_character_label or DEFAULT_CHARACTER_NAME
    character = ctx.storage.create_character(
        owner_child_id=session.child_id,
        session_id=session.id,
        name=name,
        role=choice.new_character_kind or DEFAULT_CHARACTER_ROLE,
        label=choice.new_character_label,
        introduced_from_option_id=choice.id,
        introduced_from_message_id=options_message.id,
    )
    ctx.storage.add_supporting_character(session.id, character.id)
    ctx.events.log(session.id, "character.created", character_id=character.id, name=name)
    ctx.triggers.emit(
        "character.created",
        session_id=session.id, character_id=character.id, name=name,
    )
    return character


async def ask_traits_question(
    ctx: EngineContext, session_id: str, character_id: str, character_label: str
) -> bool:
    """Ask about a new character and open the gate. False means nothing was written."""
    result = await ctx.client.character_traits_question(session_id, character_id)
    if not result.ok:
        logger.warning(
            "traits question failed for session=%s character=%s: %s",
            session_id, character_id, result.error_message,
        )
        ctx.events.log(
            session_id, "character.traits_question_skipped",
            character_id=character_id, error=result.error_message,
        )
        return False

    ctx.storage.append_message(
        session_id, sender="assistant", kind="character_traits_question", text=result.question,
    )
    ctx.storage.update_character(
        character_id, traits=result.suggested_traits, traits_last_updated_at=utcnow(),
    )
    ctx.storage.update_session(
        session_id,
        pending_character_traits=PendingCharacterTraits(
            character_id=character_id,
            character_label=character_label,
            question_text=result.question,
        ),
    )
    ctx.events.log(session_id, "character.traits_question_asked", character_id=character_id)
    return True


async def answer_traits_question(
    ctx: EngineContext, session_id: str, answer_text: str
) -> AnswerOutcome:
    """Record the answer, close the gate, then advance one arc step."""
    session = require_session(ctx, session_id)
    gate = session.pending_character_traits
    if gate is None:
        raise PreconditionError("No character question is waiting for an answer")

    answer = ctx.storage.append_message(
        session_id, sender="child", kind="character_traits_answer", text=answer_text,
    )
    trait = answer_text.strip()
    if trait:
        try:
            ctx.storage.append_character_trait(gate.character_id, trait)
        except KeyError:
            logger.warning("character %s vanished before its traits answer", gate.character_id)
    ctx.storage.update_session(session_id, pending_character_traits=None)
    ctx.events.log(session_id, "character.traits_answered", character_id=gate.character_id)

    beat = await advance_and_run_beat(ctx, session_id)
    return AnswerOutcome(character_id=gate.character_id, answer_message_id=answer.id, beat=beat)
