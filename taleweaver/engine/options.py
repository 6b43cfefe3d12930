"""Options regeneration ("more options").

Re-asks the story_beat stage for the *same* arc step and overwrites the
options of the live beat_options message in place. This is the only
mutation allowed on a written message, and only while it is still live and
unchosen. Liveness is checked again after the call returns: if a choice
landed in the meantime, the new options are discarded.
"""

from __future__ import annotations

import logging

from taleweaver.models import Choice

from .context import EngineContext, require_live_options, require_session, require_story_type
from .errors import GenerationError, InvalidTransitionError, StaleMessageError, TraitsGateOpenError
from .retry import retry_generation

logger = logging.getLogger(__name__)

OPTIONS_FALLBACK = "We couldn't think of new ideas just now. Try one of these!"


async def regenerate_options(
    ctx: EngineContext, session_id: str, options_message_id: str | None = None
) -> list[Choice]:
    session = require_session(ctx, session_id)
    if session.gate_open:
        raise TraitsGateOpenError("Answer the character question first")
    if session.phase != "arc_stepping":
        raise InvalidTransitionError(f"Cannot regenerate options in phase {session.phase!r}")
    require_story_type(ctx, session)
    live = require_live_options(ctx, session_id, "beat_options", options_message_id)

    result = await retry_generation(
        lambda: ctx.client.story_beat(session_id),
        tries=ctx.options_retry_attempts,
        base=ctx.options_retry_base_delay,
    )
    if not result.ok:
        ctx.events.log(session_id, "options.regenerate_failed", "error", error=result.error_message)
        raise GenerationError(result.error_message or "Options regeneration failed", OPTIONS_FALLBACK)

    current = require_session(ctx, session_id)
    try:
        require_live_options(ctx, session_id, "beat_options", live.id)
    except StaleMessageError:
        logger.info("discarding regenerated options for session=%s: message superseded", session_id)
        raise
    if current.gate_open or current.arc_step_index != session.arc_step_index:
        raise StaleMessageError("The story moved on while new options were being written")

    ctx.storage.replace_message_options(session_id, live.id, result.options)
    ctx.events.log(session_id, "options.regenerated", options_message_id=live.id)
    return result.options
