"""Choice acceptance.

Steps, in order, each independently durable:
  1. Append a child_choice message recording the selection.
  2. If the choice introduces a character: create it, link it, ask the
     traits question. If the question was asked, stop; the gate is open
     and the arc pointer stays put.
  3. Otherwise (no character, or the question failed): advance the arc
     pointer one step and run the next beat.

A choice is accepted only on the live, not-yet-chosen beat_options message.
Anything else is a staleness conflict and writes nothing.
"""

from __future__ import annotations

from pydantic import BaseModel

from .beats import BeatOutcome, advance_and_run_beat
from .characters import ask_traits_question, introduce_character
from .context import EngineContext, require_live_options, require_session, require_story_type
from .errors import InvalidTransitionError, StaleMessageError, TraitsGateOpenError


class ChoiceOutcome(BaseModel):
    choice_message_id: str
    character_id: str | None = None
    gate_opened: bool = False
    arc_step_index: int
    beat: BeatOutcome | None = None


async def accept_choice(
    ctx: EngineContext, session_id: str, options_message_id: str, choice_id: str
) -> ChoiceOutcome:
    session = require_session(ctx, session_id)
    if session.gate_open:
        raise TraitsGateOpenError("Answer the character question before choosing")
    if session.phase != "arc_stepping":
        raise InvalidTransitionError(f"Cannot choose an option in phase {session.phase!r}")
    require_story_type(ctx, session)

    live = require_live_options(ctx, session_id, "beat_options", options_message_id)
    choice = live.choice(choice_id)
    if choice is None:
        raise StaleMessageError(f"Option {choice_id!r} is not one of the current choices")

    choice_msg = ctx.storage.append_message(
        session_id, sender="child", kind="child_choice", text=choice.text,
        selected_option_id=choice.id, options_message_id=live.id,
    )
    ctx.events.log(session_id, "choice.accepted", option_id=choice.id)

    character_id = None
    if choice.introduces_character:
        character = introduce_character(ctx, session, live, choice)
        character_id = character.id
        if await ask_traits_question(ctx, session_id, character.id, character.name):
            return ChoiceOutcome(
                choice_message_id=choice_msg.id,
                character_id=character_id,
                gate_opened=True,
                arc_step_index=session.arc_step_index,
            )

    beat = await advance_and_run_beat(ctx, session_id)
    return ChoiceOutcome(
        choice_message_id=choice_msg.id,
        character_id=character_id,
        arc_step_index=beat.arc_step_index,
        beat=beat,
    )
