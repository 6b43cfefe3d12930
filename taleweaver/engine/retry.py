"""Exponential backoff with jitter for generation calls that report not-ok."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from taleweaver.generation import GenerationResult

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=GenerationResult)


async def retry_generation(
    call: Callable[[], Awaitable[R]],
    *,
    tries: int = 3,
    base: float = 0.5,
    factor: float = 2.0,
    max_delay: float = 8.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> R:
    """Call until ok or `tries` attempts are used; return the last result."""
    delay = base
    result = await call()
    for attempt in range(2, max(tries, 1) + 1):
        if result.ok:
            break
        logger.info("retrying generation (attempt %d/%d): %s", attempt, tries, result.error_message)
        await sleep(delay + random.uniform(0, delay / 4))
        delay = min(max_delay, delay * factor)
        result = await call()
    return result
