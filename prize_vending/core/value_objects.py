"""
Value Objects for the prize vending service.

Immutable objects that represent values in the domain.
Value objects are compared by value, not by identity.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Mapping, Optional, Union


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# =============================================================================
# Enums
# =============================================================================


class Tier(str, Enum):
    """Prize class mapped to a set of physical slots."""

    GOLD = "gold"
    SILVER = "silver"
    BRONZE = "bronze"


class LogSource(str, Enum):
    """Where a dispensing outcome came from."""

    HARDWARE = "hardware"
    SIMULATED = "simulated"
    MANUAL = "manual"


class VendingErrorCode(IntEnum):
    """Error codes reported by the spring vending controller."""

    NORMAL = 0
    PHOTOSENSOR_NO_EMISSION_SIGNAL = 1
    PHOTOSENSOR_NO_CHANGE_SIGNAL = 2
    PHOTOSENSOR_ALWAYS_OUTPUT = 3
    NO_SHIPMENT_DETECTED = 4
    P_MOS_SHORT_CIRCUIT_16 = 22
    P_MOS_SHORT_CIRCUIT_17 = 23
    N_MOS_SHORT_CIRCUIT_32 = 50
    MOTOR_SHORT_CIRCUIT = 72
    MOTOR_OPEN_CIRCUIT = 100
    RAM_ERROR_MOTOR_TIMEOUT = 128
    NO_RESPONSE_TIMEOUT = 129
    DATA_INCOMPLETE = 130
    CHECKSUM_ERROR = 131
    ADDRESS_ERROR = 132
    SLOT_NOT_EXISTS = 134
    ERROR_CODE_OUT_OF_RANGE = 135
    CONTINUOUS_NO_DETECTION = 144

    @classmethod
    def from_byte(cls, value: int) -> "VendingErrorCode":
        """Map a raw error byte, folding unknown values into ERROR_CODE_OUT_OF_RANGE."""
        try:
            return cls(value)
        except ValueError:
            return cls.ERROR_CODE_OUT_OF_RANGE


# =============================================================================
# Slot Inventory
# =============================================================================


@dataclass(frozen=True)
class SlotRecord:
    """
    Dispense counter of a single physical slot.

    Attributes:
        slot: Slot (channel) number.
        tier: Prize tier the slot belongs to.
        dispense_count: Prizes dispensed since the last refill.
        max_dispenses: Capacity of the slot.
        last_dispensed_at: Time of the last confirmed dispense.
        updated_at: Time of the last change.
    """

    slot: int
    tier: Tier
    dispense_count: int = 0
    max_dispenses: int = 5
    last_dispensed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate the counter."""
        if self.max_dispenses < 1:
            raise ValueError("max_dispenses must be positive")
        if not 0 <= self.dispense_count <= self.max_dispenses:
            raise ValueError(
                f"dispense_count {self.dispense_count} outside 0..{self.max_dispenses}"
            )

    @property
    def remaining(self) -> int:
        """Prizes left before the slot needs a refill."""
        return self.max_dispenses - self.dispense_count

    @property
    def is_exhausted(self) -> bool:
        """Whether the slot reached its capacity."""
        return self.dispense_count >= self.max_dispenses

    def incremented(self, now: Optional[datetime] = None) -> "SlotRecord":
        """Return a copy with one more dispense, clamped at capacity."""
        now = now or utc_now()
        return replace(
            self,
            dispense_count=min(self.dispense_count + 1, self.max_dispenses),
            last_dispensed_at=now,
            updated_at=now,
        )

    def cleared(self, now: Optional[datetime] = None) -> "SlotRecord":
        """Return a refilled copy."""
        return replace(
            self,
            dispense_count=0,
            last_dispensed_at=None,
            updated_at=now or utc_now(),
        )

    @classmethod
    def from_mapping(
        cls,
        slot: int,
        tier: Tier,
        data: Mapping[str, Any],
        max_dispenses: int,
    ) -> "SlotRecord":
        """
        Build a record from stored fields.

        Stored counts outside the valid range are clamped rather than
        rejected, so a hand-edited store never blocks allocation.
        """
        count = int(data.get("dispense_count", 0) or 0)
        return cls(
            slot=slot,
            tier=tier,
            dispense_count=max(0, min(count, max_dispenses)),
            max_dispenses=max_dispenses,
            last_dispensed_at=_parse_iso(data.get("last_dispensed_at")),
            updated_at=_parse_iso(data.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "slot": self.slot,
            "tier": self.tier.value,
            "dispense_count": self.dispense_count,
            "max_dispenses": self.max_dispenses,
            "last_dispensed_at": _iso(self.last_dispensed_at),
            "updated_at": _iso(self.updated_at),
        }


# =============================================================================
# Channel Status
# =============================================================================


@dataclass(frozen=True)
class ChannelStatus:
    """
    Last known hardware status of a vending channel.

    Attributes:
        channel: Channel number.
        is_healthy: Whether the controller reported no error.
        has_product: Whether the channel reported product present.
        error_code: Controller error code.
        last_checked: Time of the query.
    """

    channel: int
    is_healthy: bool
    has_product: bool
    error_code: VendingErrorCode = VendingErrorCode.NORMAL
    last_checked: datetime = field(default_factory=utc_now)

    @classmethod
    def unreachable(cls, channel: int) -> "ChannelStatus":
        """Status for a channel whose query timed out."""
        return cls(
            channel=channel,
            is_healthy=False,
            has_product=False,
            error_code=VendingErrorCode.NO_RESPONSE_TIMEOUT,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "channel": self.channel,
            "is_healthy": self.is_healthy,
            "has_product": self.has_product,
            "error_code": self.error_code.name,
            "last_checked": _iso(self.last_checked),
        }


# =============================================================================
# Log Entries
# =============================================================================


def new_entry_id() -> str:
    """Generate a unique log entry id."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class DispensingLogEntry:
    """
    Immutable record of one dispense attempt.

    Attributes:
        slot: Slot that was actuated.
        tier: Prize tier.
        success: Whether the prize was delivered.
        error: Failure description, if any.
        source: Hardware, simulated or manual.
        id: Unique id, used by the backend for deduplication.
        timestamp: Time the outcome was decided.
    """

    slot: int
    tier: Tier
    success: bool
    error: Optional[str] = None
    source: LogSource = LogSource.HARDWARE
    id: str = field(default_factory=new_entry_id)
    timestamp: datetime = field(default_factory=utc_now)

    kind = "dispensing"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "kind": self.kind,
            "id": self.id,
            "slot": self.slot,
            "tier": self.tier.value,
            "success": self.success,
            "error": self.error,
            "source": self.source.value,
            "timestamp": _iso(self.timestamp),
        }


@dataclass(frozen=True)
class OutOfStockLogEntry:
    """
    Immutable record of a tier that had no slot left.

    Attributes:
        tier: Prize tier that was requested.
        source: Hardware, simulated or manual.
        id: Unique id, used by the backend for deduplication.
        timestamp: Time the outcome was decided.
    """

    tier: Tier
    source: LogSource = LogSource.HARDWARE
    id: str = field(default_factory=new_entry_id)
    timestamp: datetime = field(default_factory=utc_now)

    kind = "out_of_stock"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "kind": self.kind,
            "id": self.id,
            "tier": self.tier.value,
            "source": self.source.value,
            "timestamp": _iso(self.timestamp),
        }


LogEntry = Union[DispensingLogEntry, OutOfStockLogEntry]


def log_entry_from_dict(data: Mapping[str, Any]) -> LogEntry:
    """
    Rebuild a log entry from its dictionary form.

    Raises:
        ValueError: If the entry kind is unknown.
    """
    kind = data.get("kind")
    timestamp = _parse_iso(data.get("timestamp")) or utc_now()
    if kind == DispensingLogEntry.kind:
        return DispensingLogEntry(
            slot=int(data["slot"]),
            tier=Tier(data["tier"]),
            success=bool(data["success"]),
            error=data.get("error"),
            source=LogSource(data.get("source", LogSource.HARDWARE.value)),
            id=data["id"],
            timestamp=timestamp,
        )
    if kind == OutOfStockLogEntry.kind:
        return OutOfStockLogEntry(
            tier=Tier(data["tier"]),
            source=LogSource(data.get("source", LogSource.HARDWARE.value)),
            id=data["id"],
            timestamp=timestamp,
        )
    raise ValueError(f"Unknown log entry kind: {kind}")


# =============================================================================
# Dispense Outcomes
# =============================================================================


@dataclass(frozen=True)
class Success:
    """Prize delivered from ``slot``."""

    slot: int
    tier: Tier
    source: LogSource = LogSource.HARDWARE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "outcome": "success",
            "slot": self.slot,
            "tier": self.tier.value,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class Failure:
    """Dispense attempt failed; the slot counter was not advanced."""

    error: str
    tier: Optional[Tier] = None
    slot: Optional[int] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "outcome": "failure",
            "error": self.error,
            "error_code": self.error_code,
            "tier": self.tier.value if self.tier else None,
            "slot": self.slot,
        }


@dataclass(frozen=True)
class OutOfStock:
    """No slot of ``tier`` has capacity left."""

    tier: Tier

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"outcome": "out_of_stock", "tier": self.tier.value}


@dataclass(frozen=True)
class NoPrize:
    """Hold duration below the lowest threshold."""

    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"outcome": "no_prize", "duration_ms": self.duration_ms}


Outcome = Union[Success, Failure, OutOfStock, NoPrize]
