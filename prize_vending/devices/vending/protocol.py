"""
Spring vending enhanced protocol client.

Writes opcode frames, decodes the inbound stream and routes each frame to
the transaction waiting for it. A dispense is a slot selection followed by
a ship command whose result arrives after the motor finishes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from prize_vending.core.exceptions import (
    ProtocolError,
    TransactionTimeoutError,
    TransportError,
)
from prize_vending.core.interfaces import SerialLink
from prize_vending.core.scheduling import Scheduler
from prize_vending.core.value_objects import ChannelStatus, VendingErrorCode

from .codec import (
    Frame,
    FrameDecoder,
    SelfCheckResult,
    ShipmentFailure,
    ShipmentSuccess,
    ShippingStarted,
    SlotStatus,
    Unknown,
    build_frame,
    hardware_fault,
    hex_dump,
    parse_frame,
    validate_slot,
)
from .constants import Opcode
from .transactions import TransactionKind, TransactionRegistry


logger = logging.getLogger(__name__)

# Machine-level requests are correlated on this pseudo-channel
MACHINE_CHANNEL = 0


@dataclass(frozen=True)
class ProtocolTimeouts:
    """Per-request budgets in seconds."""

    slot_status: float = 2.0
    select: float = 3.0
    status: float = 3.0
    self_check: float = 5.0
    reset: float = 5.0
    ship: float = 15.0


class VendingProtocolClient:
    """
    Enhanced protocol client for the spring vending controller.

    Attributes:
        name: Strategy/log name.
        is_initialized: True after a successful self-check.
        has_hardware: True once the controller passed a self-check; stays set
            while the link is down so dispenses fail instead of being simulated.
    """

    def __init__(
        self,
        link: SerialLink,
        scheduler: Scheduler,
        timeouts: ProtocolTimeouts = ProtocolTimeouts(),
        name: str = "spring_vending",
    ) -> None:
        self.name = name
        self.is_initialized = False
        self.has_hardware = False
        self._link = link
        self._timeouts = timeouts
        self._registry = TransactionRegistry(scheduler)
        self._decoder = FrameDecoder()
        self._channel_cache: dict[int, ChannelStatus] = {}
        self._last_self_check: Optional[SelfCheckResult] = None

        link.add_data_listener(self._on_data)
        link.add_error_listener(self._on_error)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def link(self) -> SerialLink:
        return self._link

    @property
    def is_connected(self) -> bool:
        return self._link.is_open

    @property
    def pending_count(self) -> int:
        """Number of transactions awaiting a response."""
        return len(self._registry)

    @property
    def last_self_check(self) -> Optional[SelfCheckResult]:
        return self._last_self_check

    def cached_status(self, channel: int) -> Optional[ChannelStatus]:
        return self._channel_cache.get(channel)

    def cached_statuses(self) -> list[ChannelStatus]:
        return [self._channel_cache[channel] for channel in sorted(self._channel_cache)]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> bool:
        """
        Run a self-check and mark the client usable if it passes.

        Returns:
            True if the controller answered with no error.
        """
        try:
            result = await self.self_check()
        except (TransportError, TransactionTimeoutError) as e:
            logger.error(f"{self.name}: initialization failed: {e}")
            self.is_initialized = False
            return False

        self.is_initialized = result.success
        if result.success:
            self.has_hardware = True
            logger.info(f"{self.name}: controller initialized")
        else:
            logger.error(f"{self.name}: self-check reported {result.error_code.name}")
        return self.is_initialized

    async def close(self) -> None:
        """Abort pending transactions and close the link."""
        self.is_initialized = False
        self.has_hardware = False
        self._registry.cancel_all("client closed")
        self._decoder.clear()
        await self._link.close()

    # =========================================================================
    # Commands
    # =========================================================================

    async def query_slot_status(self, channel: int) -> ChannelStatus:
        """
        Query one channel and refresh the status cache.

        A timeout yields an unhealthy status instead of an error.
        """
        validate_slot(channel)
        try:
            frame = await self._request(
                TransactionKind.SLOT_STATUS, channel, Opcode.QUERY_SLOT_STATUS, self._timeouts.slot_status
            )
            status = ChannelStatus(
                channel=channel,
                is_healthy=frame.error_code == VendingErrorCode.NORMAL,
                has_product=frame.has_product,
                error_code=frame.error_code,
            )
        except TransactionTimeoutError:
            status = ChannelStatus.unreachable(channel)

        self._channel_cache[channel] = status
        return status

    async def select_slot(self, channel: int) -> SlotStatus:
        """
        Select ``channel`` for the next ship command.

        Raises:
            HardwareFault: If the controller reports an error or an empty channel.
        """
        validate_slot(channel)
        frame = await self._request(
            TransactionKind.SELECT, channel, Opcode.SELECT_SLOT, self._timeouts.select
        )
        if frame.error_code != VendingErrorCode.NORMAL:
            raise hardware_fault(frame.error_code, channel)
        if not frame.has_product:
            raise hardware_fault(VendingErrorCode.NO_SHIPMENT_DETECTED, channel)
        return frame

    async def ship(self, channel: int) -> None:
        """
        Turn the motor of ``channel`` and wait for the drop sensor.

        Raises:
            HardwareFault: If shipping ended without delivery.
            TransactionTimeoutError: If no result arrived within the budget.
        """
        validate_slot(channel)
        frame = await self._request(
            TransactionKind.SHIP, channel, Opcode.SHIP, self._timeouts.ship
        )
        if isinstance(frame, ShipmentFailure):
            raise hardware_fault(frame.error_code, channel)
        logger.info(f"{self.name}: channel {channel} delivered")

    async def dispense(self, channel: int) -> None:
        """Select then ship ``channel``."""
        await self.select_slot(channel)
        await self.ship(channel)

    async def self_check(self) -> SelfCheckResult:
        result = await self._request(
            TransactionKind.SELF_CHECK, MACHINE_CHANNEL, Opcode.SELF_CHECK, self._timeouts.self_check
        )
        self._last_self_check = result
        return result

    async def reset(self) -> SelfCheckResult:
        return await self._request(
            TransactionKind.RESET, MACHINE_CHANNEL, Opcode.RESET, self._timeouts.reset
        )

    async def query_status(self) -> SelfCheckResult:
        return await self._request(
            TransactionKind.STATUS, MACHINE_CHANNEL, Opcode.QUERY_STATUS, self._timeouts.status
        )

    async def _request(
        self,
        kind: TransactionKind,
        channel: int,
        opcode: Opcode,
        timeout: float,
    ) -> Frame:
        if not self._link.is_open:
            raise TransportError(f"{self.name}: link not open", device_name=self.name)

        transaction = self._registry.open(kind, channel, timeout)
        frame_channel = None if channel == MACHINE_CHANNEL else channel
        try:
            await self._link.write(build_frame(opcode, frame_channel))
        except TransportError as e:
            self._registry.fail(kind, channel, e)
        else:
            self._registry.mark_sent(transaction)
        return await transaction.future

    # =========================================================================
    # Inbound
    # =========================================================================

    def _on_data(self, data: bytes) -> None:
        for raw in self._decoder.feed(data):
            try:
                frame = parse_frame(raw)
            except ProtocolError as e:
                logger.warning(f"{self.name}: discarding frame: {e.message}")
                continue
            self._dispatch(frame)

    def _on_error(self, error: Exception) -> None:
        self.is_initialized = False
        self._registry.cancel_all(f"read error: {error}")

    def _dispatch(self, frame: Frame) -> None:
        matched = False

        if isinstance(frame, SlotStatus):
            if self._registry.find(TransactionKind.SELECT, frame.channel):
                matched = self._registry.resolve(TransactionKind.SELECT, frame.channel, frame)
            else:
                matched = self._registry.resolve(TransactionKind.SLOT_STATUS, frame.channel, frame)
        elif isinstance(frame, ShippingStarted):
            matched = self._registry.find(TransactionKind.SHIP, frame.channel) is not None
            if matched:
                logger.info(f"{self.name}: channel {frame.channel} shipping")
        elif isinstance(frame, (ShipmentSuccess, ShipmentFailure)):
            matched = self._registry.resolve(TransactionKind.SHIP, frame.channel, frame)
        elif isinstance(frame, SelfCheckResult):
            for kind in (TransactionKind.SELF_CHECK, TransactionKind.STATUS, TransactionKind.RESET):
                if self._registry.resolve(kind, MACHINE_CHANNEL, frame):
                    matched = True
                    break

        if not matched:
            raw = frame.raw if isinstance(frame, Unknown) else None
            logger.warning(
                f"{self.name}: unmatched {type(frame).__name__}"
                + (f" {hex_dump(raw)}" if raw else f" for channel {frame.channel}")
            )
