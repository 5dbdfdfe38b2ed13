"""
Automatic reopening of serial links after a read error.

A supervisor listens for link errors and, while the link is down,
re-ranks the endpoints, reopens the port and brings the device back up.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from prize_vending.core.exceptions import TransportError
from prize_vending.core.interfaces import Endpoint, SerialLink
from prize_vending.core.scheduling import RetryPolicy, Scheduler

from .constants import KNOWN_VENDORS
from .endpoints import open_with_fallback, rank_endpoints


logger = logging.getLogger(__name__)

ReconnectedCallback = Callable[[], Awaitable[bool]]


class LinkSupervisor:
    """
    Reopens a serial link after it dropped.

    Attempts are spaced by the retry policy delays, the last one
    repeating, until the link is back and ``on_reconnected`` accepts it.

    Attributes:
        name: Label used in logs.
        attempts: Reopen attempts made by the current or last run.
    """

    def __init__(
        self,
        link: SerialLink,
        scheduler: Scheduler,
        policy: RetryPolicy,
        baudrate: int,
        preferred_path: Optional[str] = None,
        auto_select: bool = True,
        vendors: Iterable[str] = KNOWN_VENDORS,
        on_reconnected: Optional[ReconnectedCallback] = None,
        name: str = "serial",
    ) -> None:
        """
        Args:
            link: Transport to reopen.
            scheduler: Clock used for the delays.
            policy: Delay schedule between attempts.
            baudrate: Serial speed.
            preferred_path: Path tried first; the last opened path when unset.
            auto_select: Rank all endpoints instead of only ``preferred_path``.
            vendors: Manufacturer substrings preferred when ranking.
            on_reconnected: Re-initialization hook; a False result closes
                the link and schedules another attempt.
            name: Label used in logs.
        """
        self.name = name
        self.attempts = 0
        self._link = link
        self._scheduler = scheduler
        self._policy = policy
        self._baudrate = baudrate
        self._preferred_path = preferred_path
        self._auto_select = auto_select
        self._vendors = tuple(vendors)
        self._on_reconnected = on_reconnected
        self._last_path: Optional[str] = preferred_path
        self._task: Optional[asyncio.Task] = None

        link.add_error_listener(self._on_error)

    @property
    def is_reconnecting(self) -> bool:
        return self._task is not None and not self._task.done()

    def remember(self, path: str) -> None:
        """Record the path the link was opened on."""
        self._last_path = path

    def start(self) -> None:
        """Start reconnecting unless a run is already in progress."""
        if self.is_reconnecting:
            return
        self._task = asyncio.create_task(self._reconnect_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def _on_error(self, error: Exception) -> None:
        logger.warning(f"{self.name}: link lost ({error}), reconnecting")
        self.start()

    def _candidates(self) -> list[Endpoint]:
        if not self._auto_select:
            path = self._preferred_path or self._last_path
            return [Endpoint(path=path)] if path else []

        endpoints = self._link.list_endpoints()
        preferred = self._preferred_path
        # A re-enumerated device may come back under another name
        if preferred is None and any(endpoint.path == self._last_path for endpoint in endpoints):
            preferred = self._last_path
        return rank_endpoints(endpoints, self._vendors, preferred)

    async def _reconnect_loop(self) -> None:
        self.attempts = 0
        while True:
            await self._scheduler.sleep(self._policy.delay_for(self.attempts))
            self.attempts += 1

            if not self._link.is_open:
                try:
                    endpoint = await open_with_fallback(
                        self._link,
                        self._candidates(),
                        self._baudrate,
                        self._policy,
                        self._scheduler,
                    )
                except TransportError as e:
                    logger.warning(f"{self.name}: reconnect attempt {self.attempts} failed: {e.message}")
                    continue
                self._last_path = endpoint.path

            if self._on_reconnected is not None and not await self._on_reconnected():
                logger.warning(f"{self.name}: device did not come back on {self._last_path}")
                await self._link.close()
                continue

            logger.info(f"{self.name}: reconnected on {self._last_path} after {self.attempts} attempt(s)")
            return
