"""
Dispense strategies and the ordered chain that tries them.

Order: enhanced protocol -> legacy direct drive -> simulated.

The chain moves to the next hardware strategy only when a strategy
failed before any command reached the hardware. Faults, timeouts and
link failures after a write end the attempt, so a slot is never
actuated twice for one request. The simulated strategy runs only when
no hardware strategy was configured; a configured one that lost its link
fails the dispense.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from prize_vending.core.exceptions import TransportError
from prize_vending.core.interfaces import DispenseStrategy
from prize_vending.core.scheduling import Scheduler
from prize_vending.core.value_objects import LogSource
from prize_vending.devices.vending.legacy import LegacyVendingClient
from prize_vending.devices.vending.protocol import VendingProtocolClient
from prize_vending.loggers import logger


# =============================================================================
# Strategies
# =============================================================================


class EnhancedProtocolStrategy(DispenseStrategy):
    """Select and ship through the enhanced protocol."""

    def __init__(self, client: VendingProtocolClient) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return self._client.name

    @property
    def is_available(self) -> bool:
        return self._client.is_initialized and self._client.is_connected

    @property
    def is_configured(self) -> bool:
        return self._client.has_hardware

    async def dispense(self, slot: int) -> None:
        await self._client.dispense(slot)


class LegacyProtocolStrategy(DispenseStrategy):
    """Six-byte direct drive for older boards."""

    def __init__(self, client: LegacyVendingClient) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return self._client.name

    @property
    def is_available(self) -> bool:
        return self._client.is_connected

    @property
    def is_configured(self) -> bool:
        return self._client.has_hardware

    async def dispense(self, slot: int) -> None:
        await self._client.dispense(slot)


class SimulatedStrategy(DispenseStrategy):
    """Pretends to dispense; used when no vending hardware is attached."""

    source = LogSource.SIMULATED

    def __init__(self, scheduler: Scheduler, delay: float = 1.0) -> None:
        self._scheduler = scheduler
        self._delay = delay

    @property
    def name(self) -> str:
        return "simulated"

    @property
    def is_available(self) -> bool:
        return True

    async def dispense(self, slot: int) -> None:
        logger.warning(f"No vending hardware, simulating dispense from slot {slot}")
        await self._scheduler.sleep(self._delay)


# =============================================================================
# Chain
# =============================================================================


@dataclass(frozen=True)
class ChainResult:
    """Which strategy delivered the prize."""

    strategy: str
    source: LogSource


class DispenseChain:
    """
    Ordered list of hardware strategies with a hardware-absent fallback.

    Attributes:
        strategies: Hardware strategies in priority order.
        fallback: Strategy used when none of them is available.
    """

    def __init__(
        self,
        strategies: Sequence[DispenseStrategy],
        fallback: Optional[DispenseStrategy] = None,
    ) -> None:
        self.strategies = tuple(strategies)
        self.fallback = fallback

    @property
    def has_hardware(self) -> bool:
        """Whether any hardware strategy was brought up, even if it dropped out since."""
        return any(strategy.is_configured for strategy in self.strategies)

    async def dispense(self, slot: int) -> ChainResult:
        """
        Dispense ``slot`` with the first strategy that can reach hardware.

        The fallback runs only when no hardware strategy was ever
        configured. A configured strategy that lost its link fails the
        dispense instead.

        Returns:
            The strategy that succeeded.

        Raises:
            HardwareFault: The controller reported a failure.
            TransactionTimeoutError: No result within the budget.
            TransportError: No strategy could reach the hardware.
        """
        if not self.has_hardware and self.fallback is not None:
            await self.fallback.dispense(slot)
            return ChainResult(strategy=self.fallback.name, source=self.fallback.source)

        last_error: Optional[TransportError] = None

        for strategy in self.strategies:
            if not strategy.is_available:
                if strategy.is_configured:
                    logger.warning(f"{strategy.name} is configured but not connected")
                continue
            try:
                await strategy.dispense(slot)
                return ChainResult(strategy=strategy.name, source=strategy.source)
            except TransportError as e:
                if e.command_sent:
                    raise
                logger.warning(f"{strategy.name} unreachable for slot {slot}: {e.message}")
                last_error = e

        raise last_error or TransportError("No vending hardware connected")
