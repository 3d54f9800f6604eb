"""
Bounded polling for cloud resource state transitions.

Every wait in volsnap (volume available, volume attached, snapshot
completed) goes through poll_until: fetch the resource at a fixed interval
until a predicate holds or a hard deadline elapses.

Invariants:
    - Exceeding the deadline raises WaitTimeoutError, never returns
    - The state is fetched at least once, even with a zero timeout
    - Cancellation of the calling task propagates out of the sleep
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import WaitTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 3.0
VOLUME_AVAILABLE_TIMEOUT = 5 * 60.0
VOLUME_ATTACHED_TIMEOUT = 5 * 60.0
SNAPSHOT_COMPLETED_TIMEOUT = 10 * 60.0


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    predicate: Callable[[T], bool],
    *,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float,
    description: str,
    resource_id: str | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Poll a resource until predicate(state) is true.

    Args:
        fetch: Coroutine factory returning the current state. Errors it
            raises (including terminal-state errors) abort the wait.
        predicate: Target condition
        interval: Seconds between polls
        timeout: Hard deadline in seconds
        description: What is awaited, for logs and errors
        resource_id: Resource being awaited
        clock: Monotonic clock (injectable for tests)
        sleep: Sleep coroutine (injectable for tests)

    Returns:
        The first state satisfying the predicate

    Raises:
        WaitTimeoutError: If the deadline elapses first
    """
    deadline = clock() + timeout
    attempts = 0
    while True:
        attempts += 1
        state = await fetch()
        if predicate(state):
            logger.debug(
                f"Wait for {description} satisfied",
                extra={"resource_id": resource_id, "attempts": attempts},
            )
            return state

        remaining = deadline - clock()
        if remaining <= 0:
            raise WaitTimeoutError(
                f"Timed out after {timeout:.0f}s waiting for {description}",
                resource_id=resource_id,
                operation="wait",
            )
        await sleep(min(interval, remaining))
