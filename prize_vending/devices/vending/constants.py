"""
Spring vending controller protocol constants.

Covers both the enhanced opcode protocol and the legacy fixed six-byte
drive command.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from prize_vending.core.value_objects import VendingErrorCode


# Frame trailer shared by every command and response
TRAILER: Final[bytes] = bytes([0xAA, 0x55])

# Legacy drive command: 00 FF slot ~slot AA 55
LEGACY_HEADER: Final[bytes] = bytes([0x00, 0xFF])
LEGACY_COMMAND_LENGTH: Final[int] = 6
LEGACY_RESPONSE_LENGTH: Final[int] = 5
LEGACY_MOTOR_OK: Final[int] = 0x5D
LEGACY_DROP_OK: Final[int] = 0x00

MIN_SLOT: Final[int] = 1
MAX_SLOT: Final[int] = 80

# Enhanced response: code, channel, status, error, checksum, AA, 55
RESPONSE_FRAME_LENGTH: Final[int] = 7
MAX_BUFFER_SIZE: Final[int] = 256

DEFAULT_BAUDRATE: Final[int] = 9600


class Opcode(IntEnum):
    """Commands sent to the controller."""

    QUERY_SLOT_STATUS = 0x01
    SHIP_TEST = 0x10
    SHIP = 0x11
    SELECT_SLOT = 0x12
    SELF_CHECK = 0x30
    RESET = 0x31
    QUERY_STATUS = 0x32


class ResponseCode(IntEnum):
    """First byte of inbound frames."""

    SLOT_STATUS = 0x81
    SHIPPING = 0x91
    SELF_CHECK = 0xA1


class ShippingStatus(IntEnum):
    """Status byte of SHIPPING responses; anything else is a failure."""

    STARTED = 0x01
    SUCCESS = 0x02


@dataclass(frozen=True)
class ErrorInfo:
    """Operator-facing description of a controller error code."""

    description: str
    severity: str
    suggested_action: str


ERROR_DESCRIPTIONS: Final[dict[VendingErrorCode, ErrorInfo]] = {
    VendingErrorCode.NORMAL: ErrorInfo(
        "Normal operation", "low", "No action required"
    ),
    VendingErrorCode.PHOTOSENSOR_NO_EMISSION_SIGNAL: ErrorInfo(
        "Drop sensor emits no signal", "high", "Check drop sensor wiring"
    ),
    VendingErrorCode.PHOTOSENSOR_NO_CHANGE_SIGNAL: ErrorInfo(
        "Drop sensor signal never changes", "high", "Clean or replace drop sensor"
    ),
    VendingErrorCode.PHOTOSENSOR_ALWAYS_OUTPUT: ErrorInfo(
        "Drop sensor permanently blocked", "high", "Remove obstruction from drop sensor"
    ),
    VendingErrorCode.NO_SHIPMENT_DETECTED: ErrorInfo(
        "No shipment detected (empty channel)",
        "medium",
        "Refill channel or check product placement",
    ),
    VendingErrorCode.P_MOS_SHORT_CIRCUIT_16: ErrorInfo(
        "P-MOS short circuit (16)", "critical", "Service the driver board"
    ),
    VendingErrorCode.P_MOS_SHORT_CIRCUIT_17: ErrorInfo(
        "P-MOS short circuit (17)", "critical", "Service the driver board"
    ),
    VendingErrorCode.N_MOS_SHORT_CIRCUIT_32: ErrorInfo(
        "N-MOS short circuit (32)", "critical", "Service the driver board"
    ),
    VendingErrorCode.MOTOR_SHORT_CIRCUIT: ErrorInfo(
        "Motor short circuit", "critical", "Replace motor or check wiring"
    ),
    VendingErrorCode.MOTOR_OPEN_CIRCUIT: ErrorInfo(
        "Motor open circuit", "critical", "Replace motor or check connections"
    ),
    VendingErrorCode.RAM_ERROR_MOTOR_TIMEOUT: ErrorInfo(
        "Motor rotation timeout", "high", "Check for obstructions or motor failure"
    ),
    VendingErrorCode.NO_RESPONSE_TIMEOUT: ErrorInfo(
        "No response from controller", "high", "Check serial connection and power"
    ),
    VendingErrorCode.DATA_INCOMPLETE: ErrorInfo(
        "Incomplete command data", "medium", "Check serial cable and baud rate"
    ),
    VendingErrorCode.CHECKSUM_ERROR: ErrorInfo(
        "Controller rejected checksum", "medium", "Check serial cable and baud rate"
    ),
    VendingErrorCode.ADDRESS_ERROR: ErrorInfo(
        "Controller address error", "medium", "Check controller address settings"
    ),
    VendingErrorCode.SLOT_NOT_EXISTS: ErrorInfo(
        "Channel does not exist", "medium", "Check channel number and configuration"
    ),
    VendingErrorCode.ERROR_CODE_OUT_OF_RANGE: ErrorInfo(
        "Unknown controller error", "high", "Contact hardware support"
    ),
    VendingErrorCode.CONTINUOUS_NO_DETECTION: ErrorInfo(
        "Repeated drops not detected", "high", "Inspect drop sensor and channel"
    ),
}


def describe_error(code: VendingErrorCode) -> ErrorInfo:
    """Look up the description of a controller error code."""
    return ERROR_DESCRIPTIONS.get(
        code, ERROR_DESCRIPTIONS[VendingErrorCode.ERROR_CODE_OUT_OF_RANGE]
    )


# USB-serial bridge manufacturers fitted to supported controllers
KNOWN_VENDORS: Final[tuple[str, ...]] = (
    "prolific",
    "ch340",
    "wch",
    "qinheng",
    "ftdi",
    "silicon labs",
)
