"""Per-session single-writer guard.

At most one advancing operation (beat, choice, traits answer, regenerate,
ending) may run for a session at a time. A second request does not queue:
it fails fast with SessionBusyError, the server-side twin of the UI
disabling its buttons while a call is outstanding.

Entries are dropped on release, so the map only holds sessions in flight.
Locks are process-local. Running several API workers against one data
directory loses this guarantee.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .errors import SessionBusyError


class SessionLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def is_busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        if lock.locked():
            raise SessionBusyError(f"Session {session_id} is busy")
        try:
            async with lock:
                yield
        finally:
            if not lock.locked() and self._locks.get(session_id) is lock:
                del self._locks[session_id]
