from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FlightOutcome(Generic[T]):
    ran: bool
    result: T | None = None


class SingleFlight:
    """At most one in-flight execution; overlapping calls are skipped, never queued.

    Correct only within one event loop and one process.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._running = False
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> FlightOutcome[T]:
        # Check-and-set happens before the first await, so it cannot interleave.
        if self._running:
            self.skipped += 1
            logger.info("single_flight_skipped", extra={"extra": {"name": self.name}})
            return FlightOutcome(ran=False)
        self._running = True
        try:
            result = await fn(*args, **kwargs)
        finally:
            self._running = False
        return FlightOutcome(ran=True, result=result)
