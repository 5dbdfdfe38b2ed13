"""
Dispensing orchestrator.

Sequences one prize dispense per game round:

    classify -> allocate slot -> actuate -> update counter -> notify

Only one dispense runs at a time across the process, each round token
is served at most once, and every call returns an Outcome value.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Iterable, Optional

from prize_vending.core.exceptions import (
    DispenseInProgressError,
    VendingSystemError,
)
from prize_vending.core.interfaces import OutcomeObserver
from prize_vending.core.value_objects import (
    DispensingLogEntry,
    Failure,
    LogEntry,
    LogSource,
    NoPrize,
    OutOfStock,
    OutOfStockLogEntry,
    Outcome,
    Success,
    Tier,
)
from prize_vending.loggers import logger

from .dispense_strategies import DispenseChain
from .slot_allocator import SlotAllocator
from .tiers import ThresholdTable


DEFAULT_OUTCOME_CACHE_SIZE = 256


class DispensingOrchestrator:
    """
    Turns a round's hold duration into exactly one outcome.

    Attributes:
        thresholds: Duration to tier table.
        allocator: Slot allocator.
        chain: Ordered dispense strategies.
    """

    def __init__(
        self,
        thresholds: ThresholdTable,
        allocator: SlotAllocator,
        chain: DispenseChain,
        observers: Iterable[OutcomeObserver] = (),
        cache_size: int = DEFAULT_OUTCOME_CACHE_SIZE,
    ) -> None:
        self.thresholds = thresholds
        self.allocator = allocator
        self.chain = chain
        self._observers: list[OutcomeObserver] = list(observers)
        self._cache_size = cache_size
        self._outcomes: OrderedDict[str, Outcome] = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def is_busy(self) -> bool:
        """Whether a dispense is in flight."""
        return self._lock.locked()

    def add_observer(self, observer: OutcomeObserver) -> None:
        self._observers.append(observer)

    def cached_outcome(self, round_token: str) -> Optional[Outcome]:
        return self._outcomes.get(round_token)

    # =========================================================================
    # Dispensing
    # =========================================================================

    async def dispense(self, round_token: str, elapsed_hold_duration_ms: int) -> Outcome:
        """
        Dispense the prize earned in one round.

        A repeated call with the same round token returns the first
        outcome without touching the hardware again.

        Args:
            round_token: Unique id of the game round.
            elapsed_hold_duration_ms: Measured hold duration.

        Returns:
            Success, Failure, OutOfStock or NoPrize.
        """
        async with self._lock:
            cached = self._outcomes.get(round_token)
            if cached is not None:
                logger.info(f"Round {round_token} already resolved: {cached.to_dict()}")
                return cached

            try:
                outcome, entry = await self._run_round(round_token, elapsed_hold_duration_ms)
            except Exception as e:
                logger.exception(f"Round {round_token}: unexpected error: {e}")
                outcome, entry = Failure(error=str(e), error_code=type(e).__name__), None

            self._remember(round_token, outcome)

        await self._notify(outcome, entry)
        return outcome

    async def manual_dispense(self, slot: int) -> Outcome:
        """
        Dispense one prize from ``slot`` for maintenance testing.

        Raises:
            DispenseInProgressError: If a round is being dispensed.
            ConfigurationError: If the slot is not configured.
        """
        tier = self.allocator.tier_of(slot)
        if self.is_busy:
            raise DispenseInProgressError("A dispense is already in progress")

        async with self._lock:
            try:
                outcome, entry = await self._actuate(slot, tier, LogSource.MANUAL)
            except Exception as e:
                logger.exception(f"Manual dispense from slot {slot} failed: {e}")
                outcome, entry = Failure(error=str(e), tier=tier, slot=slot), None

        await self._notify(outcome, entry)
        return outcome

    async def _run_round(
        self,
        round_token: str,
        duration_ms: int,
    ) -> tuple[Outcome, Optional[LogEntry]]:
        tier = self.thresholds.classify(duration_ms)
        if tier is None:
            logger.info(f"Round {round_token}: {duration_ms}ms, no prize")
            return NoPrize(duration_ms=duration_ms), None

        try:
            slot = await self.allocator.next_available(tier)
        except VendingSystemError as e:
            logger.error(f"Round {round_token}: slot allocation failed: {e.message}")
            return Failure(error=e.message, tier=tier, error_code=e.code), None

        if isinstance(slot, OutOfStock):
            logger.warning(f"Round {round_token}: {tier.value} out of stock")
            return slot, OutOfStockLogEntry(tier=tier)

        logger.info(f"Round {round_token}: {duration_ms}ms won {tier.value}, slot {slot}")
        return await self._actuate(slot, tier, LogSource.HARDWARE)

    async def _actuate(
        self,
        slot: int,
        tier: Tier,
        source: LogSource,
    ) -> tuple[Outcome, LogEntry]:
        try:
            result = await self.chain.dispense(slot)
        except VendingSystemError as e:
            logger.error(f"Dispense from slot {slot} failed: {e.message}")
            entry = DispensingLogEntry(slot=slot, tier=tier, success=False, error=e.message, source=source)
            return Failure(error=e.message, tier=tier, slot=slot, error_code=e.code), entry

        if result.source != LogSource.HARDWARE:
            source = result.source

        try:
            await self.allocator.increment(slot)
        except VendingSystemError as e:
            # The prize is out; the allocator retries the write on its next access
            logger.error(f"Slot {slot} dispensed but counter update failed: {e.message}")

        entry = DispensingLogEntry(slot=slot, tier=tier, success=True, source=source)
        return Success(slot=slot, tier=tier, source=source), entry

    # =========================================================================
    # Internals
    # =========================================================================

    def _remember(self, round_token: str, outcome: Outcome) -> None:
        self._outcomes[round_token] = outcome
        while len(self._outcomes) > self._cache_size:
            self._outcomes.popitem(last=False)

    async def _notify(self, outcome: Outcome, entry: Optional[LogEntry]) -> None:
        for observer in self._observers:
            try:
                await observer.on_outcome(outcome, entry)
            except Exception as e:
                logger.error(f"Outcome observer {type(observer).__name__} failed: {e}")
