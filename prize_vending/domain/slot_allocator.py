"""
Slot allocation with even wear across channels.

The allocator owns the in-memory view of slot counters. Every read or
write goes through one asyncio.Lock, and the view is reloaded from the
durable store whenever it is flagged stale locally or by another process
(maintenance resets).
"""

from __future__ import annotations

import asyncio
import math
from typing import Iterable, Mapping, Optional, Union

from prize_vending.core.exceptions import ConfigurationError
from prize_vending.core.interfaces import SlotStore
from prize_vending.core.value_objects import OutOfStock, SlotRecord, Tier, utc_now
from prize_vending.loggers import logger


MIN_SLOT = 1
MAX_SLOT = 80
DEFAULT_MAX_DISPENSES = 5


class SlotAllocator:
    """
    Tracks per-slot dispense counts and picks the least-used slot of a tier.

    Attributes:
        max_dispenses: Capacity of every slot.
    """

    def __init__(
        self,
        store: SlotStore,
        tier_slots: Mapping[Tier, Iterable[int]],
        max_dispenses: int = DEFAULT_MAX_DISPENSES,
    ) -> None:
        """
        Initialize the allocator.

        Args:
            store: Durable slot counter store.
            tier_slots: Slots configured for each tier.
            max_dispenses: Capacity of every slot.

        Raises:
            ConfigurationError: If a slot is out of range or assigned twice.
        """
        if max_dispenses < 1:
            raise ConfigurationError("max_dispenses must be positive")

        self.max_dispenses = max_dispenses
        self._store = store
        self._slot_tiers: dict[int, Tier] = {}
        self._tier_slots: dict[Tier, tuple[int, ...]] = {}

        for tier, slots in tier_slots.items():
            tier = Tier(tier)
            ordered = tuple(sorted(set(slots)))
            for slot in ordered:
                if not MIN_SLOT <= slot <= MAX_SLOT:
                    raise ConfigurationError(f"Slot {slot} outside {MIN_SLOT}..{MAX_SLOT}")
                if slot in self._slot_tiers:
                    raise ConfigurationError(
                        f"Slot {slot} assigned to both {self._slot_tiers[slot].value} and {tier.value}"
                    )
                self._slot_tiers[slot] = tier
            self._tier_slots[tier] = ordered

        self._cache: dict[int, SlotRecord] = {}
        self._unsaved: set[int] = set()
        self._stale = True
        self._lock = asyncio.Lock()

    @property
    def tiers(self) -> tuple[Tier, ...]:
        return tuple(self._tier_slots)

    def slots_for(self, tier: Tier) -> tuple[int, ...]:
        """Configured slots of ``tier``."""
        if tier not in self._tier_slots:
            raise ConfigurationError(f"Unknown tier: {tier}")
        return self._tier_slots[tier]

    def tier_of(self, slot: int) -> Tier:
        """Tier the slot is configured for."""
        if slot not in self._slot_tiers:
            raise ConfigurationError(f"Slot {slot} is not configured")
        return self._slot_tiers[slot]

    def mark_stale(self) -> None:
        """Force a reload from the store on next access."""
        self._stale = True

    # =========================================================================
    # Allocation
    # =========================================================================

    async def load(self) -> None:
        """Load counters, creating records for slots the store does not know."""
        async with self._lock:
            await self._reload()

    async def next_available(self, tier: Tier) -> Union[int, OutOfStock]:
        """
        Least-used slot of ``tier`` with capacity left.

        Ties go to the smallest slot number.

        Returns:
            Slot number, or OutOfStock when every slot is exhausted.

        Raises:
            ConfigurationError: If the tier is not configured.
        """
        slots = self.slots_for(tier)
        async with self._lock:
            await self._ensure_fresh()
            candidates = [self._cache[slot] for slot in slots if not self._cache[slot].is_exhausted]

        if not candidates:
            return OutOfStock(tier)
        chosen = min(candidates, key=lambda record: (record.dispense_count, record.slot))
        return chosen.slot

    async def increment(self, slot: int) -> SlotRecord:
        """
        Record one confirmed dispense from ``slot``.

        The count is clamped at capacity. The cache is updated before the
        write so a failed write is retried on the next operation.

        Raises:
            ConfigurationError: If the slot is not configured.
            RepositoryError: If the store write fails.
        """
        self.tier_of(slot)
        async with self._lock:
            await self._ensure_fresh()
            record = self._cache[slot].incremented()
            self._cache[slot] = record
            self._unsaved.add(slot)
            await self._store.save(record)
            self._unsaved.discard(slot)
        logger.info(f"Slot {slot} count {record.dispense_count}/{record.max_dispenses}")
        return record

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def reset_all(self) -> list[SlotRecord]:
        """Zero every configured slot in the cache and the store."""
        now = utc_now()
        records = [
            SlotRecord(slot=slot, tier=tier, max_dispenses=self.max_dispenses, updated_at=now)
            for slot, tier in sorted(self._slot_tiers.items())
        ]
        async with self._lock:
            await self._store.save_many(records)
            await self._store.mark_stale()
            self._cache = {record.slot: record for record in records}
            self._unsaved.clear()
            self._stale = False
        logger.info(f"Reset {len(records)} slot counters")
        return records

    async def reset_slot(self, slot: int) -> SlotRecord:
        """Zero one slot after a refill."""
        self.tier_of(slot)
        async with self._lock:
            await self._ensure_fresh()
            record = self._cache[slot].cleared()
            await self._store.save(record)
            self._cache[slot] = record
            self._unsaved.discard(slot)
        logger.info(f"Slot {slot} refilled")
        return record

    async def snapshot(self) -> list[SlotRecord]:
        """All slot records ordered by slot number."""
        async with self._lock:
            await self._ensure_fresh()
            return [self._cache[slot] for slot in sorted(self._cache)]

    async def reconcile(self) -> None:
        """Reload from the store unconditionally."""
        async with self._lock:
            await self._reload()

    async def slots_needing_refill(self, threshold: float = 0.8) -> list[SlotRecord]:
        """
        Slots whose count reached ``threshold`` of capacity.

        Args:
            threshold: Fraction of capacity, 0..1.
        """
        if not 0 <= threshold <= 1:
            raise ConfigurationError("Refill threshold must be between 0 and 1")
        limit = math.floor(self.max_dispenses * threshold)
        return [record for record in await self.snapshot() if record.dispense_count >= limit]

    # =========================================================================
    # Internals
    # =========================================================================

    async def _ensure_fresh(self) -> None:
        if self._unsaved:
            await self._flush_unsaved()
        if self._stale or await self._store.pop_stale_flag():
            await self._reload()

    async def _flush_unsaved(self) -> None:
        records = [self._cache[slot] for slot in sorted(self._unsaved)]
        await self._store.save_many(records)
        self._unsaved.clear()
        logger.info(f"Persisted {len(records)} deferred slot updates")

    async def _reload(self) -> None:
        if self._unsaved:
            await self._flush_unsaved()
        stored = await self._store.load_all(self._slot_tiers, self.max_dispenses)
        missing: list[SlotRecord] = []
        cache: dict[int, SlotRecord] = {}
        for slot, tier in self._slot_tiers.items():
            record: Optional[SlotRecord] = stored.get(slot)
            if record is None:
                record = SlotRecord(slot=slot, tier=tier, max_dispenses=self.max_dispenses)
                missing.append(record)
            cache[slot] = record

        if missing:
            await self._store.save_many(missing)
            logger.info(f"Created {len(missing)} slot records")

        self._cache = cache
        self._stale = False
