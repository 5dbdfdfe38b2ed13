"""
Offline Log Queue - durable, best-effort delivery of dispensing records.

Every entry is written to the local store before the backend is
contacted. Entries the backend could not be reached for stay queued and
are retried, oldest first, whenever connectivity comes back. Entries the
backend refused (4xx) are logged and dropped so that one bad record
cannot hold back the rest of the queue. Delivery is at-least-once; the
backend deduplicates by entry id.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from prize_vending.core.exceptions import (
    BackendRejectedError,
    BackendUnavailableError,
    RepositoryError,
)
from prize_vending.core.interfaces import LogStore, RemoteCollaborator
from prize_vending.core.scheduling import Scheduler
from prize_vending.core.value_objects import DispensingLogEntry, LogEntry
from prize_vending.loggers import logger


ConnectivityListener = Callable[[bool], Awaitable[None]]


class DeliveryResult(Enum):
    """What happened to one delivery attempt."""

    DELIVERED = "delivered"
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"


class OfflineLogQueue:
    """
    Local-first log queue with flush on reconnect.

    Attributes:
        check_interval: Seconds between connectivity checks.
    """

    def __init__(
        self,
        store: LogStore,
        remote: RemoteCollaborator,
        scheduler: Scheduler,
        check_interval: float = 30.0,
    ) -> None:
        self.check_interval = check_interval
        self._store = store
        self._remote = remote
        self._scheduler = scheduler
        self._online = True
        self._flush_lock = asyncio.Lock()
        self._monitor_task: Optional[asyncio.Task] = None
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def add_connectivity_listener(self, listener: ConnectivityListener) -> None:
        self._listeners.append(listener)

    # =========================================================================
    # Queue operations
    # =========================================================================

    async def enqueue(self, entry: LogEntry) -> bool:
        """
        Store ``entry`` locally, then try to deliver it.

        Returns:
            True if the backend acknowledged the entry.
        """
        persisted = True
        try:
            await self._store.append(entry)
        except RepositoryError as e:
            persisted = False
            logger.error(f"Could not persist log entry {entry.id}: {e.message}")

        if not self._online:
            logger.info(f"Offline, log entry {entry.id} queued")
            return False
        return await self._deliver(entry, persisted) is DeliveryResult.DELIVERED

    async def flush_when_online(self) -> int:
        """
        Retry every queued entry, oldest first, while the backend answers.

        A refused entry is dropped and the flush moves on; an unreachable
        backend stops it.

        Returns:
            Number of entries delivered.
        """
        if not self._online:
            return 0

        delivered = 0
        async with self._flush_lock:
            for entry in await self._store.pending():
                result = await self._deliver(entry, persisted=True)
                if result is DeliveryResult.UNREACHABLE:
                    break
                if result is DeliveryResult.DELIVERED:
                    delivered += 1

        if delivered:
            logger.info(f"Flushed {delivered} queued log entries")
        return delivered

    async def pending(self) -> list[LogEntry]:
        return await self._store.pending()

    # =========================================================================
    # Connectivity
    # =========================================================================

    async def set_online(self, online: bool) -> None:
        """
        Record a connectivity change; coming back online triggers a flush.
        """
        if online == self._online:
            return
        self._online = online
        logger.info(f"Backend {'online' if online else 'offline'}")

        for listener in list(self._listeners):
            try:
                await listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")

        if online:
            await self.flush_when_online()

    async def check_connectivity(self) -> bool:
        """Ping the backend and update the online state."""
        online = await self._remote.ping()
        await self.set_online(online)
        return online

    def start_monitor(self) -> None:
        """Start periodic connectivity checks."""
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.create_task(self._monitor_loop())

    async def stop_monitor(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

    async def _monitor_loop(self) -> None:
        while True:
            await self._scheduler.sleep(self.check_interval)
            try:
                await self.check_connectivity()
            except RepositoryError as e:
                logger.error(f"Queue flush failed: {e.message}")

    # =========================================================================
    # Internals
    # =========================================================================

    async def _deliver(self, entry: LogEntry, persisted: bool) -> DeliveryResult:
        try:
            if isinstance(entry, DispensingLogEntry):
                await self._remote.submit_dispensing_log(entry)
            else:
                await self._remote.submit_out_of_stock(entry)
        except BackendRejectedError as e:
            logger.error(f"Log entry {entry.id} rejected by backend, dropping it: {e.message} {entry.to_dict()}")
            result = DeliveryResult.REJECTED
        except BackendUnavailableError as e:
            logger.warning(f"Log entry {entry.id} not delivered: {e.message}")
            await self.set_online(False)
            return DeliveryResult.UNREACHABLE
        else:
            result = DeliveryResult.DELIVERED

        if persisted:
            try:
                await self._store.acknowledge(entry)
            except RepositoryError as e:
                # Stays queued; the backend drops the duplicate by id
                logger.warning(f"Could not acknowledge log entry {entry.id}: {e.message}")
        if result is DeliveryResult.DELIVERED:
            logger.debug(f"Log entry {entry.id} delivered")
        return result
