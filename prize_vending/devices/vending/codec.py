"""
Spring vending frame codec.

Outbound enhanced frame:
    OPCODE | [CHANNEL] | CHECKSUM | 0xAA | 0x55

Inbound enhanced frame:
    CODE | CHANNEL | STATUS | ERROR | CHECKSUM | 0xAA | 0x55

Legacy drive command:
    0x00 | 0xFF | SLOT | 0xFF - SLOT | 0xAA | 0x55

Legacy drive response:
    0x00 | MOTOR | DROP | 0xAA | CHECKSUM

CHECKSUM is the low byte of the sum of the bytes that precede it.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from prize_vending.core.exceptions import ConfigurationError, HardwareFault, ProtocolError
from prize_vending.core.value_objects import VendingErrorCode

from .constants import (
    LEGACY_DROP_OK,
    LEGACY_HEADER,
    LEGACY_MOTOR_OK,
    LEGACY_RESPONSE_LENGTH,
    MAX_BUFFER_SIZE,
    MAX_SLOT,
    MIN_SLOT,
    RESPONSE_FRAME_LENGTH,
    TRAILER,
    Opcode,
    ResponseCode,
    ShippingStatus,
    describe_error,
)


logger = logging.getLogger(__name__)


def checksum(data: bytes) -> int:
    """Low byte of the sum of ``data``."""
    return sum(data) & 0xFF


def hex_dump(data: bytes) -> str:
    """Format bytes as ``AA 55`` for logs."""
    return " ".join(f"{b:02X}" for b in data)


def validate_slot(slot: int) -> int:
    """
    Check that ``slot`` is addressable.

    Raises:
        ConfigurationError: If the slot is outside 1..80.
    """
    if isinstance(slot, bool) or not isinstance(slot, int) or not MIN_SLOT <= slot <= MAX_SLOT:
        raise ConfigurationError(
            f"Slot {slot!r} outside {MIN_SLOT}..{MAX_SLOT}",
            details={"slot": slot},
        )
    return slot


# =============================================================================
# Outbound
# =============================================================================


def encode_legacy_command(slot: int) -> bytes:
    """
    Build the legacy six-byte drive command.

    Args:
        slot: Slot number, 1..80.

    Returns:
        Command bytes.

    Raises:
        ConfigurationError: If the slot is out of range.
    """
    validate_slot(slot)
    return LEGACY_HEADER + bytes([slot, (0xFF - slot) & 0xFF]) + TRAILER


def build_frame(opcode: Opcode, channel: Optional[int] = None) -> bytes:
    """
    Build an enhanced protocol command.

    Args:
        opcode: Command opcode.
        channel: Target channel for channel-addressed commands.

    Returns:
        Frame bytes.
    """
    body = bytes([opcode]) if channel is None else bytes([opcode, validate_slot(channel)])
    return body + bytes([checksum(body)]) + TRAILER


# =============================================================================
# Inbound
# =============================================================================


@dataclass(frozen=True)
class SlotStatus:
    """Reply to a slot status query or slot selection."""

    channel: int
    has_product: bool
    error_code: VendingErrorCode


@dataclass(frozen=True)
class ShippingStarted:
    """Motor started turning."""

    channel: int


@dataclass(frozen=True)
class ShipmentSuccess:
    """Drop sensor confirmed delivery."""

    channel: int


@dataclass(frozen=True)
class ShipmentFailure:
    """Shipping ended without delivery."""

    channel: int
    error_code: VendingErrorCode


@dataclass(frozen=True)
class SelfCheckResult:
    """Machine-level self-check or status reply."""

    channel: int
    success: bool
    error_code: VendingErrorCode


@dataclass(frozen=True)
class Unknown:
    """Well-formed frame with an unrecognised response code."""

    raw: bytes

    @property
    def channel(self) -> int:
        return self.raw[1]


Frame = Union[SlotStatus, ShippingStarted, ShipmentSuccess, ShipmentFailure, SelfCheckResult, Unknown]


def parse_frame(frame: bytes) -> Frame:
    """
    Parse one inbound enhanced frame.

    Args:
        frame: Exactly one frame including trailer.

    Returns:
        The parsed frame variant.

    Raises:
        ProtocolError: On bad length, trailer or checksum.
    """
    if len(frame) != RESPONSE_FRAME_LENGTH:
        raise ProtocolError(f"Bad frame length {len(frame)}: {hex_dump(frame)}")
    if frame[-2:] != TRAILER:
        raise ProtocolError(f"Bad frame trailer: {hex_dump(frame)}")
    if checksum(frame[:4]) != frame[4]:
        raise ProtocolError(
            f"Checksum mismatch: expected {checksum(frame[:4]):02X}, got {frame[4]:02X}",
            details={"frame": hex_dump(frame)},
        )

    code, channel, status, error = frame[0], frame[1], frame[2], frame[3]
    error_code = VendingErrorCode.from_byte(error)

    if code == ResponseCode.SLOT_STATUS:
        return SlotStatus(channel=channel, has_product=status == 0, error_code=error_code)
    if code == ResponseCode.SHIPPING:
        if status == ShippingStatus.STARTED:
            return ShippingStarted(channel=channel)
        if status == ShippingStatus.SUCCESS:
            return ShipmentSuccess(channel=channel)
        return ShipmentFailure(channel=channel, error_code=error_code)
    if code == ResponseCode.SELF_CHECK:
        return SelfCheckResult(
            channel=channel,
            success=error_code == VendingErrorCode.NORMAL,
            error_code=error_code,
        )
    return Unknown(raw=bytes(frame))


class FrameDecoder:
    """
    Splits the inbound byte stream into enhanced frames.

    Bytes that cannot start a frame are skipped one at a time until the
    trailer lines up again.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[bytes]:
        """
        Append received bytes and return complete frames.

        Args:
            data: Newly received bytes.

        Returns:
            Complete raw frames, in arrival order.
        """
        self._buffer.extend(data)
        if len(self._buffer) > MAX_BUFFER_SIZE:
            logger.warning(f"Receive buffer overflow, dropping {len(self._buffer)} bytes")
            self._buffer.clear()
            return []

        frames: list[bytes] = []
        while len(self._buffer) >= RESPONSE_FRAME_LENGTH:
            if self._buffer[RESPONSE_FRAME_LENGTH - 2:RESPONSE_FRAME_LENGTH] == TRAILER:
                frames.append(bytes(self._buffer[:RESPONSE_FRAME_LENGTH]))
                del self._buffer[:RESPONSE_FRAME_LENGTH]
            else:
                logger.debug(f"Resync: skipping 0x{self._buffer[0]:02X}")
                del self._buffer[0]
        return frames

    def clear(self) -> None:
        self._buffer.clear()


# =============================================================================
# Legacy responses
# =============================================================================


@dataclass(frozen=True)
class LegacyResult:
    """Decoded legacy drive response."""

    motor: int
    drop: int

    @property
    def delivered(self) -> bool:
        return self.motor == LEGACY_MOTOR_OK and self.drop == LEGACY_DROP_OK

    @property
    def error_code(self) -> VendingErrorCode:
        if self.delivered:
            return VendingErrorCode.NORMAL
        if self.motor == LEGACY_MOTOR_OK:
            # Motor turned but nothing crossed the drop sensor
            return VendingErrorCode.NO_SHIPMENT_DETECTED
        return VendingErrorCode.from_byte(self.drop or self.motor)


def parse_legacy_response(frame: bytes) -> LegacyResult:
    """
    Parse a legacy drive response.

    Raises:
        ProtocolError: On bad length, marker or checksum.
    """
    if len(frame) != LEGACY_RESPONSE_LENGTH or frame[0] != 0x00 or frame[3] != TRAILER[0]:
        raise ProtocolError(f"Malformed legacy response: {hex_dump(frame)}")
    if checksum(frame[:4]) != frame[4]:
        raise ProtocolError(
            f"Legacy checksum mismatch: expected {checksum(frame[:4]):02X}, got {frame[4]:02X}"
        )
    return LegacyResult(motor=frame[1], drop=frame[2])


class LegacyResponseDecoder:
    """Splits the legacy byte stream into five-byte responses."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        responses: list[bytes] = []
        while len(self._buffer) >= LEGACY_RESPONSE_LENGTH:
            if self._buffer[0] == 0x00 and self._buffer[3] == TRAILER[0]:
                responses.append(bytes(self._buffer[:LEGACY_RESPONSE_LENGTH]))
                del self._buffer[:LEGACY_RESPONSE_LENGTH]
            else:
                del self._buffer[0]
        return responses

    def clear(self) -> None:
        self._buffer.clear()


def hardware_fault(code: VendingErrorCode, channel: Optional[int] = None) -> HardwareFault:
    """Build the operator-facing fault for a controller error code."""
    info = describe_error(code)
    where = f" on channel {channel}" if channel is not None else ""
    return HardwareFault(
        f"{info.description}{where}",
        code=code.name,
        error_code=int(code),
        severity=info.severity,
        suggested_action=info.suggested_action,
        channel=channel,
    )
