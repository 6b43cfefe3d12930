"""Session diagnostics and fire-and-forget background triggers.

SessionEvents appends diagnostic entries to a session's event log. Logging
is best effort: a failed write is logged and dropped, never raised into the
progression path.

BackgroundTriggers is a one-way event bus. The engine emits named events
(e.g. "character.created") and never consumes a result. Handlers run as
detached tasks; their failures are logged and swallowed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from taleweaver.models import SessionEvent
from taleweaver.storage import Storage

logger = logging.getLogger(__name__)

TriggerHandler = Callable[[dict[str, Any]], Awaitable[None]]


class SessionEvents:
    def __init__(self, storage: Storage, source: str = "engine") -> None:
        self._storage = storage
        self._source = source

    def log(
        self,
        session_id: str,
        event: str,
        status: str = "info",
        **attributes: Any,
    ) -> None:
        logger.info("session=%s event=%s status=%s %s", session_id, event, status, attributes)
        try:
            self._storage.append_event(
                session_id,
                SessionEvent(
                    event=event, status=status, source=self._source, attributes=attributes,
                ),
            )
        except Exception as e:
            logger.warning("Failed to log session event %s for %s: %s", event, session_id, e)


class BackgroundTriggers:
    def __init__(self) -> None:
        self._handlers: dict[str, list[TriggerHandler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def on(self, event: str, handler: TriggerHandler) -> None:
        self._handlers[event].append(handler)

    def emit(self, event: str, /, **payload: Any) -> None:
        """Schedule every handler for `event`. Returns immediately.

        `event` is positional-only so payloads may carry a `name` key.
        """
        for handler in self._handlers.get(event, []):
            task = asyncio.ensure_future(self._run(event, handler, payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, event: str, handler: TriggerHandler, payload: dict[str, Any]) -> None:
        try:
            await handler(payload)
        except Exception:
            logger.warning("Background trigger %s failed", event, exc_info=True)

    async def drain(self) -> None:
        """Wait for all scheduled handlers. Used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
