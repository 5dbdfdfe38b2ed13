"""
Clock and retry primitives.

Timers and delays go through a Scheduler so that debounce windows,
transaction timeouts and retry back-off can be driven deterministically
in tests.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class TimerHandle(Protocol):
    """A pending timer that can be cancelled."""

    def cancel(self) -> None:
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Monotonic clock plus one-shot timers."""

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""
        ...

    async def sleep(self, delay: float) -> None:
        """Suspend the caller for ``delay`` seconds."""
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry schedule.

    Attributes:
        max_attempts: Maximum number of retries after the first failure.
        delays: Delay before each retry in seconds; the last value repeats
            when there are more attempts than delays.
        final_delay: Delay before the last-chance retry on the original target.
    """

    max_attempts: int = 3
    delays: tuple[float, ...] = (0.5, 1.0, 2.0)
    final_delay: float = 3.0

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts cannot be negative")
        if any(delay < 0 for delay in self.delays) or self.final_delay < 0:
            raise ValueError("retry delays cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (0-based).

        Args:
            attempt: Retry index.

        Returns:
            Delay in seconds.
        """
        if not self.delays:
            return 0.0
        return self.delays[min(attempt, len(self.delays) - 1)]
