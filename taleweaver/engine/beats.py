"""Beat orchestration: narrate at the arc-step pointer, and advance it.

run_beat() narrates the session's *current* arc step. It never moves the
pointer. advance_and_run_beat() is the only writer of arc_step_index: it
moves the pointer exactly one step (clamped) and then narrates there. It is
called once per accepted choice and once per answered traits question.

A beat writes two messages, continuation first then options. Readers must
tolerate the brief window where the continuation exists without options.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from taleweaver.models import Choice, Message

from .context import EngineContext, require_session, require_story_type
from .errors import GenerationError, InvalidTransitionError, StaleMessageError, TraitsGateOpenError
from .state import is_arc_complete, next_arc_step_index, next_phase

logger = logging.getLogger(__name__)

OPTIONS_PROMPT_TEXT = "What happens next?"
BEAT_FALLBACK = "The story got a little stuck. Let's try that again."


class BeatOutcome(BaseModel):
    story_continuation: str
    options: list[Choice]
    arc_step: str | None
    arc_step_index: int
    arc_complete: bool
    continuation_message_id: str
    options_message_id: str


def _message_id(msg: Message | None) -> str | None:
    return msg.id if msg else None


async def run_beat(ctx: EngineContext, session_id: str) -> BeatOutcome:
    """Generate and append one beat for the current arc step."""
    session = require_session(ctx, session_id)
    if session.gate_open:
        raise TraitsGateOpenError("Answer the character question before the story continues")
    if session.phase not in ("type_selected", "arc_stepping"):
        raise InvalidTransitionError(f"Cannot run a story beat in phase {session.phase!r}")
    story_type = require_story_type(ctx, session)

    live_before = ctx.storage.latest_message(session_id, ["beat_options"])
    ctx.events.log(session_id, "beat.requested", "started", arc_step_index=session.arc_step_index)

    result = await ctx.client.story_beat(session_id)
    if not result.ok:
        ctx.events.log(session_id, "beat.failed", "error", error=result.error_message)
        raise GenerationError(result.error_message or "Story beat failed", BEAT_FALLBACK)

    # The session may have moved on while we waited; a late beat must not land.
    current = require_session(ctx, session_id)
    live_now = ctx.storage.latest_message(session_id, ["beat_options"])
    if (
        current.arc_step_index != session.arc_step_index
        or current.gate_open
        or current.phase != session.phase
        or _message_id(live_now) != _message_id(live_before)
    ):
        logger.warning("discarding late beat for session=%s", session_id)
        ctx.events.log(session_id, "beat.discarded", "error", reason="session moved on")
        raise StaleMessageError("The story moved on while this beat was being written")

    continuation = ctx.storage.append_message(
        session_id, sender="assistant", kind="beat_continuation", text=result.story_continuation,
    )
    options_msg = ctx.storage.append_message(
        session_id, sender="assistant", kind="beat_options",
        text=OPTIONS_PROMPT_TEXT, options=result.options,
    )
    if current.phase == "type_selected":
        current = ctx.storage.update_session(session_id, phase=next_phase(current, "first_beat"))

    ctx.events.log(
        session_id, "beat.completed", "completed",
        arc_step_index=current.arc_step_index, options=len(result.options),
    )
    return BeatOutcome(
        story_continuation=result.story_continuation,
        options=result.options,
        arc_step=result.arc_step,
        arc_step_index=current.arc_step_index,
        arc_complete=is_arc_complete(current, story_type),
        continuation_message_id=continuation.id,
        options_message_id=options_msg.id,
    )


async def advance_and_run_beat(ctx: EngineContext, session_id: str) -> BeatOutcome:
    """Move the arc pointer one step (clamped), persist it, then narrate."""
    session = require_session(ctx, session_id)
    if session.gate_open:
        raise TraitsGateOpenError("Answer the character question before the story continues")
    if session.phase != "arc_stepping":
        raise InvalidTransitionError(f"Cannot advance the story in phase {session.phase!r}")
    story_type = require_story_type(ctx, session)

    next_index = next_arc_step_index(session, story_type)
    if next_index != session.arc_step_index:
        ctx.storage.update_session(session_id, arc_step_index=next_index)
    ctx.events.log(
        session_id, "arc.advanced", arc_step_index=next_index,
        clamped=next_index == session.arc_step_index,
    )
    return await run_beat(ctx, session_id)
