"""
Interfaces (Protocols) for the prize vending service.

Defines contracts for serial links, stores, remote services and event
handlers using Python's Protocol for structural subtyping.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .value_objects import LogEntry, LogSource, Outcome, SlotRecord, Tier


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Endpoint:
    """
    A serial endpoint offered by the operating system.

    Attributes:
        path: Device path (``COM3``, ``/dev/ttyUSB0``).
        manufacturer: USB manufacturer string, if reported.
        vendor_id: USB vendor id as hex string, if reported.
        product_id: USB product id as hex string, if reported.
    """

    path: str
    manufacturer: Optional[str] = None
    vendor_id: Optional[str] = None
    product_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "manufacturer": self.manufacturer,
            "vendor_id": self.vendor_id,
            "product_id": self.product_id,
        }


DataListener = Callable[[bytes], None]
ErrorListener = Callable[[Exception], None]


# =============================================================================
# Hardware Interfaces
# =============================================================================


@runtime_checkable
class SerialLink(Protocol):
    """Byte-level serial transport."""

    @property
    def is_open(self) -> bool:
        """Whether a port is currently open."""
        ...

    def list_endpoints(self) -> list[Endpoint]:
        """Enumerate available endpoints."""
        ...

    async def open(self, path: str, baudrate: int) -> None:
        """
        Open ``path``.

        Raises:
            TransportError: If the port cannot be opened.
        """
        ...

    async def close(self) -> None:
        """Close the port; safe to call when already closed."""
        ...

    async def write(self, data: bytes) -> None:
        """
        Write raw bytes.

        Raises:
            TransportError: If the port is closed or the write fails.
        """
        ...

    def add_data_listener(self, listener: DataListener) -> None:
        """Register a callback for inbound bytes."""
        ...

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback for read errors."""
        ...


class SensorEventHandler:
    """
    Receiver of debounced sensor edges.

    All methods are no-ops; subclasses override what they need.
    """

    def on_start(self, timestamp: float) -> None:
        """Sensor went from released to pressed."""

    def on_end(self, timestamp: float) -> None:
        """Sensor went from pressed to released."""

    def on_change(self, state: int, timestamp: float) -> None:
        """Stable state changed to ``state``."""


class DispenseStrategy(ABC):
    """One way of getting a prize out of a slot."""

    source: LogSource = LogSource.HARDWARE

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name used in logs."""
        ...

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether this strategy can be attempted right now."""
        ...

    @property
    def is_configured(self) -> bool:
        """
        Whether hardware behind this strategy was brought up in this process.

        A configured strategy that is temporarily unavailable makes the
        dispense fail instead of being simulated.
        """
        return self.is_available

    @abstractmethod
    async def dispense(self, slot: int) -> None:
        """
        Actuate ``slot`` and wait for the delivery result.

        Raises:
            TransportError: The command could not be written; nothing moved.
            HardwareFault: The controller reported a failure.
            TransactionTimeoutError: No result within the budget.
        """
        ...


# =============================================================================
# Storage Interfaces
# =============================================================================


@runtime_checkable
class SlotStore(Protocol):
    """Durable storage for slot counters."""

    async def load_all(self, slots: dict[int, Tier], max_dispenses: int) -> dict[int, SlotRecord]:
        """Load records for ``slots``; missing records are absent from the result."""
        ...

    async def save(self, record: SlotRecord) -> None:
        """Persist one record."""
        ...

    async def save_many(self, records: list[SlotRecord]) -> None:
        """Persist several records at once."""
        ...

    async def pop_stale_flag(self) -> bool:
        """Return and clear the external staleness flag."""
        ...

    async def mark_stale(self) -> None:
        """Signal every process that cached counters are outdated."""
        ...


@runtime_checkable
class LogStore(Protocol):
    """Durable local queue of log entries awaiting delivery."""

    async def append(self, entry: LogEntry) -> None:
        """Persist ``entry`` at the tail of the queue."""
        ...

    async def pending(self) -> list[LogEntry]:
        """All undelivered entries, oldest first."""
        ...

    async def acknowledge(self, entry: LogEntry) -> None:
        """Remove a delivered entry."""
        ...


@runtime_checkable
class RemoteCollaborator(Protocol):
    """Remote backend receiving dispensing records."""

    async def submit_dispensing_log(self, entry: Any) -> None:
        ...

    async def submit_out_of_stock(self, entry: Any) -> None:
        ...

    async def ping(self) -> bool:
        ...


@runtime_checkable
class OutcomeObserver(Protocol):
    """Notified once per decided dispense outcome."""

    async def on_outcome(self, outcome: Outcome, entry: Optional[LogEntry]) -> None:
        ...
