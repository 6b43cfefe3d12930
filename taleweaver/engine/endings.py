"""Ending orchestration.

run_ending() asks for candidate endings. With preview=True nothing is
written, which lets tooling peek at endings at any arc step. Otherwise the
session must be on its last arc step; the endings are appended as an
ending_options message and the session moves to the ending phase.

The engine never completes a session on its own: choose_ending() records
the child's pick and finalize_session() is the explicit finalize action.
"""

from __future__ import annotations

from pydantic import BaseModel

from taleweaver.generation import EndingOption
from taleweaver.models import Choice, Phase, Session

from .context import EngineContext, require_live_options, require_session, require_story_type
from .errors import (
    GenerationError,
    InvalidTransitionError,
    PreconditionError,
    StaleMessageError,
)
from .state import is_arc_complete, next_phase

ENDINGS_PROMPT_TEXT = "Which ending do you like best?"
ENDING_FALLBACK = "The endings are still hiding. Let's try again."


class EndingOutcome(BaseModel):
    endings: list[EndingOption]
    options_message_id: str | None = None
    phase: Phase


async def run_ending(ctx: EngineContext, session_id: str, *, preview: bool = False) -> EndingOutcome:
    session = require_session(ctx, session_id)
    story_type = require_story_type(ctx, session)
    target = None if preview else next_phase(session, "present_endings")
    if (
        target is not None
        and session.phase == "arc_stepping"
        and not is_arc_complete(session, story_type)
    ):
        raise InvalidTransitionError("The story has not reached its last arc step yet")
    if target is not None and session.selected_ending_id:
        raise InvalidTransitionError("An ending was already chosen")

    ctx.events.log(session_id, "ending.requested", "started", preview=preview)
    result = await ctx.client.story_ending(session_id)
    if not result.ok:
        ctx.events.log(session_id, "ending.failed", "error", error=result.error_message)
        raise GenerationError(result.error_message or "Ending generation failed", ENDING_FALLBACK)

    if target is None:
        return EndingOutcome(endings=result.endings, phase=session.phase)

    current = require_session(ctx, session_id)
    if (
        current.phase != session.phase
        or current.gate_open
        or current.arc_step_index != session.arc_step_index
    ):
        raise StaleMessageError("The story moved on while endings were being written")

    msg = ctx.storage.append_message(
        session_id, sender="assistant", kind="ending_options", text=ENDINGS_PROMPT_TEXT,
        options=[Choice(id=e.id, text=e.text) for e in result.endings],
    )
    if current.phase != target:
        ctx.storage.update_session(session_id, phase=target)
    ctx.events.log(session_id, "ending.presented", "completed", endings=len(result.endings))
    return EndingOutcome(endings=result.endings, options_message_id=msg.id, phase=target)


def choose_ending(
    ctx: EngineContext, session_id: str, options_message_id: str, ending_id: str
) -> Session:
    session = require_session(ctx, session_id)
    if session.phase != "ending":
        raise InvalidTransitionError(f"Cannot choose an ending in phase {session.phase!r}")
    if session.selected_ending_id:
        raise StaleMessageError("An ending was already chosen")
    live = require_live_options(ctx, session_id, "ending_options", options_message_id)
    ending = live.choice(ending_id)
    if ending is None:
        raise StaleMessageError(f"Ending {ending_id!r} is not one of the current endings")

    ctx.storage.append_message(
        session_id, sender="child", kind="child_ending_choice", text=ending.text,
        selected_option_id=ending.id, options_message_id=live.id,
    )
    session = ctx.storage.update_session(
        session_id, selected_ending_id=ending.id, selected_ending_text=ending.text,
    )
    ctx.events.log(session_id, "ending.chosen", ending_id=ending.id)
    return session


def finalize_session(ctx: EngineContext, session_id: str) -> Session:
    session = require_session(ctx, session_id)
    if not session.selected_ending_id:
        raise PreconditionError("Choose an ending before finishing the story")
    session = ctx.storage.update_session(session_id, phase=next_phase(session, "finalize"))
    ctx.events.log(session_id, "session.completed", "completed")
    return session
