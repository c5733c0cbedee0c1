"""Suspendable poll-until-predicate routine.

One bounded loop shared by the shadow locator and the readiness checks:
await a check, sleep a fixed interval, give up after ``max_attempts``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class PollOutcome:
    ok: bool
    value: Any = None
    attempts: int = 0


async def poll_until(
    check: Callable[[], Awaitable[Any]],
    *,
    interval_s: float,
    max_attempts: int,
    sleep: Sleep = asyncio.sleep,
) -> PollOutcome:
    """Await ``check()`` until it returns a truthy value or attempts run out.

    The check runs at most ``max_attempts`` times with ``interval_s`` between
    runs (no sleep after the last one). Exceptions raised by the check
    propagate to the caller.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        value = await check()
        if value:
            return PollOutcome(ok=True, value=value, attempts=attempt)
        if attempt < max_attempts:
            await sleep(interval_s)
    return PollOutcome(ok=False, attempts=max_attempts)
