from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable


class FixedIntervalPacer:
    """Spaces successive sends at least ``1 / messages_per_second`` apart.

    The first call never waits. Call ``wait()`` immediately before each outbound send.
    """

    def __init__(
        self,
        messages_per_second: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if messages_per_second <= 0:
            raise ValueError("messages_per_second must be positive")
        self.interval = 1.0 / messages_per_second
        self._clock = clock
        self._sleep = sleep
        self._next_allowed: float | None = None

    async def wait(self) -> float:
        now = self._clock()
        slot = now if self._next_allowed is None else max(now, self._next_allowed)
        # Reserve the slot before sleeping so concurrent callers queue behind it.
        self._next_allowed = slot + self.interval
        delay = slot - now
        if delay > 0:
            await self._sleep(delay)
        return delay


class NoPacing:
    interval = 0.0

    async def wait(self) -> float:
        return 0.0


def build_pacer(app_settings) -> FixedIntervalPacer:  # noqa: ANN001
    return FixedIntervalPacer(app_settings.outbound_messages_per_second)
