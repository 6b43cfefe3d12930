"""Shared engine dependencies and precondition helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from taleweaver.generation import GenerationClient
from taleweaver.models import Message, Session, StoryType
from taleweaver.storage import Storage

from .errors import PreconditionError, StaleMessageError
from .events import BackgroundTriggers, SessionEvents


@dataclass
class EngineContext:
    """Everything an engine operation needs, built once per app."""

    storage: Storage
    client: GenerationClient
    events: SessionEvents
    triggers: BackgroundTriggers = field(default_factory=BackgroundTriggers)
    options_retry_attempts: int = 3
    options_retry_base_delay: float = 0.5

    @classmethod
    def from_config(
        cls,
        storage: Storage,
        client: GenerationClient,
        config: dict[str, Any],
        triggers: BackgroundTriggers | None = None,
    ) -> EngineContext:
        return cls(
            storage=storage,
            client=client,
            events=SessionEvents(storage),
            triggers=triggers or BackgroundTriggers(),
            options_retry_attempts=int(config.get("options_retry_attempts", 3)),
            options_retry_base_delay=float(config.get("options_retry_base_delay", 0.5)),
        )


def require_session(ctx: EngineContext, session_id: str) -> Session:
    session = ctx.storage.get_session(session_id)
    if session is None:
        raise PreconditionError(f"Session {session_id} not found")
    return session


def require_story_type(ctx: EngineContext, session: Session) -> StoryType:
    if not session.has_story_type:
        raise PreconditionError("Pick a story type before the story can start")
    story_type = ctx.storage.get_story_type(session.story_type_id)
    if story_type is None:
        raise PreconditionError(f"Story type {session.story_type_id} not found")
    return story_type


def is_chosen(ctx: EngineContext, session_id: str, options_message_id: str) -> bool:
    """True once any child choice references this options message."""
    return any(
        m.options_message_id == options_message_id
        for m in ctx.storage.get_messages(session_id)
        if m.kind in ("child_choice", "child_ending_choice")
    )


def require_live_options(
    ctx: EngineContext, session_id: str, kind: str, options_message_id: str | None = None
) -> Message:
    """The live, unchosen options message of `kind`.

    When `options_message_id` is given it must name that live message.
    """
    live = ctx.storage.latest_message(session_id, [kind])
    if live is None:
        raise StaleMessageError("There are no options to choose from")
    if options_message_id is not None and live.id != options_message_id:
        raise StaleMessageError("Those options are no longer current")
    if is_chosen(ctx, session_id, live.id):
        raise StaleMessageError("A choice was already made for these options")
    return live
