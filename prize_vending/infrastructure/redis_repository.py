"""
Redis Repository implementations.

Provides type-safe, domain-specific access to Redis state storage.
Each repository encapsulates Redis keys and operations for its domain.
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Optional, TypeVar

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionFailure
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeout

from prize_vending.core.exceptions import RedisConnectionError, RepositoryError
from prize_vending.core.value_objects import (
    LogEntry,
    SlotRecord,
    Tier,
    log_entry_from_dict,
)
from prize_vending.loggers import logger


T = TypeVar("T")


# =============================================================================
# Base Repository
# =============================================================================


class RedisStateRepository:
    """
    Base repository for Redis state operations.

    Provides common Redis operations with error handling.
    """

    def __init__(self, redis: Redis) -> None:
        """
        Initialize the repository.

        Args:
            redis: Redis client instance.
        """
        self._redis = redis

    async def _execute(self, operation: Awaitable[T]) -> T:
        try:
            return await operation
        except (RedisConnectionFailure, RedisTimeout, ConnectionError) as e:
            raise RedisConnectionError(f"Redis connection error: {e}") from e
        except RedisError as e:
            raise RepositoryError(f"Redis error: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        """Get a string value by key."""
        return await self._execute(self._redis.get(key))

    async def set(self, key: str, value: Any) -> None:
        """Set a key-value pair."""
        await self._execute(self._redis.set(key, value))


# =============================================================================
# Slot Inventory Repository
# =============================================================================


def _encode_datetime(value: Any) -> str:
    return value.isoformat() if value else ""


class SlotInventoryRepository(RedisStateRepository):
    """
    Repository for slot dispense counters.

    Keys:
    - slot_inventory:<slot>: Hash with tier, dispense_count, max_dispenses,
      last_dispensed_at, updated_at
    - slot_inventory:stale: Set by maintenance to force cache reloads
    """

    KEY_PREFIX = "slot_inventory"
    KEY_STALE = "slot_inventory:stale"

    def _key(self, slot: int) -> str:
        return f"{self.KEY_PREFIX}:{slot}"

    async def load_all(self, slots: dict[int, Tier], max_dispenses: int) -> dict[int, SlotRecord]:
        """Load stored records for ``slots``; unknown slots are omitted."""
        records: dict[int, SlotRecord] = {}
        for slot, tier in slots.items():
            data = await self._execute(self._redis.hgetall(self._key(slot)))
            if not data:
                continue
            try:
                records[slot] = SlotRecord.from_mapping(slot, tier, data, max_dispenses)
            except ValueError as e:
                logger.warning(f"Ignoring corrupt record for slot {slot}: {e}")
        return records

    async def save(self, record: SlotRecord) -> None:
        """Persist one record."""
        await self._execute(
            self._redis.hset(
                self._key(record.slot),
                mapping={
                    "tier": record.tier.value,
                    "dispense_count": record.dispense_count,
                    "max_dispenses": record.max_dispenses,
                    "last_dispensed_at": _encode_datetime(record.last_dispensed_at),
                    "updated_at": _encode_datetime(record.updated_at),
                },
            )
        )

    async def save_many(self, records: list[SlotRecord]) -> None:
        for record in records:
            await self.save(record)

    async def pop_stale_flag(self) -> bool:
        """Return and clear the staleness flag."""
        return bool(await self._execute(self._redis.getdel(self.KEY_STALE)))

    async def mark_stale(self) -> None:
        await self.set(self.KEY_STALE, 1)


# =============================================================================
# Offline Log Repository
# =============================================================================


class OfflineLogRepository(RedisStateRepository):
    """
    Durable queue of log entries awaiting delivery to the backend.

    Keys:
    - offline_log:queue: List of undelivered entries (JSON), oldest first
    - offline_log:history: Capped list of every entry, newest first
    """

    KEY_QUEUE = "offline_log:queue"
    KEY_HISTORY = "offline_log:history"

    def __init__(self, redis: Redis, history_limit: int = 1000) -> None:
        super().__init__(redis)
        self.history_limit = history_limit

    @staticmethod
    def _encode(entry: LogEntry) -> str:
        return json.dumps(entry.to_dict(), sort_keys=True)

    async def append(self, entry: LogEntry) -> None:
        """Persist ``entry`` at the tail of the queue and in the history."""
        payload = self._encode(entry)
        await self._execute(self._redis.rpush(self.KEY_QUEUE, payload))
        await self._execute(self._redis.lpush(self.KEY_HISTORY, payload))
        await self._execute(self._redis.ltrim(self.KEY_HISTORY, 0, self.history_limit - 1))

    async def pending(self) -> list[LogEntry]:
        """Undelivered entries, oldest first."""
        entries: list[LogEntry] = []
        for raw in await self._execute(self._redis.lrange(self.KEY_QUEUE, 0, -1)):
            try:
                entries.append(log_entry_from_dict(json.loads(raw)))
            except (ValueError, KeyError) as e:
                logger.error(f"Skipping unreadable queued log entry: {e}")
        return entries

    async def acknowledge(self, entry: LogEntry) -> None:
        """Remove every queued copy of ``entry``."""
        for raw in await self._execute(self._redis.lrange(self.KEY_QUEUE, 0, -1)):
            try:
                entry_id = json.loads(raw).get("id")
            except ValueError:
                continue
            if entry_id == entry.id:
                await self._execute(self._redis.lrem(self.KEY_QUEUE, 0, raw))

    async def count(self) -> int:
        return await self._execute(self._redis.llen(self.KEY_QUEUE))

    async def history(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent entries, newest first."""
        rows = await self._execute(self._redis.lrange(self.KEY_HISTORY, 0, limit - 1))
        result = []
        for raw in rows:
            try:
                result.append(json.loads(raw))
            except ValueError:
                continue
        return result
