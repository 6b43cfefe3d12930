"""Warm-up chat and story type selection.

Free text from the child means one of two things: during warm-up it is chat
with the Story Guide; while a character question is pending it is the
answer to that question.
"""

from __future__ import annotations

from pydantic import BaseModel

from taleweaver.models import Message

from .beats import BeatOutcome, run_beat
from .characters import AnswerOutcome, answer_traits_question
from .context import EngineContext, require_session
from .errors import GenerationError, InvalidTransitionError, PreconditionError
from .state import next_phase

WARMUP_FALLBACK = "The Story Guide is having trouble thinking of a reply. Please try again."


class SendOutcome(BaseModel):
    child_message_id: str | None = None
    reply: Message | None = None
    answer: AnswerOutcome | None = None


async def send_message(ctx: EngineContext, session_id: str, text: str) -> SendOutcome:
    session = require_session(ctx, session_id)
    if session.gate_open:
        answer = await answer_traits_question(ctx, session_id, text)
        return SendOutcome(child_message_id=answer.answer_message_id, answer=answer)
    if session.phase != "warmup":
        raise InvalidTransitionError("Pick one of the options to continue the story")

    child_msg = ctx.storage.append_message(session_id, sender="child", kind="plain", text=text)
    result = await ctx.client.warmup_reply(session_id)
    if not result.ok:
        ctx.events.log(session_id, "warmup.reply_failed", "error", error=result.error_message)
        raise GenerationError(result.error_message or "Warm-up reply failed", WARMUP_FALLBACK)
    reply = ctx.storage.append_message(
        session_id, sender="assistant", kind="plain", text=result.assistant_text,
    )
    return SendOutcome(child_message_id=child_msg.id, reply=reply)


async def select_story_type(ctx: EngineContext, session_id: str, story_type_id: str) -> BeatOutcome:
    """Fix the narrative template, then run the first beat."""
    session = require_session(ctx, session_id)
    story_type = ctx.storage.get_story_type(story_type_id)
    if story_type is None:
        raise PreconditionError(f"Story type {story_type_id} not found")
    target = next_phase(session, "select_type")

    ctx.storage.update_session(
        session_id,
        phase=target,
        story_type_id=story_type.id,
        story_type_name=story_type.name,
        story_phase_id=story_type.default_phase_id,
        ending_phase_id=story_type.ending_phase_id,
        story_title=session.story_title or story_type.name,
        arc_step_index=0,
    )
    ctx.events.log(session_id, "story_type.chosen", story_type_id=story_type.id)
    return await run_beat(ctx, session_id)
