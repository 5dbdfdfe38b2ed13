"""
Shared fakes for the prize vending tests.

Provides a manually advanced scheduler, an in-memory serial link and
in-memory stores so that no test touches real hardware, Redis or the
network.
"""

import asyncio
from typing import Callable, Optional

import pytest

from prize_vending.core.exceptions import (
    BackendRejectedError,
    BackendUnavailableError,
    RedisConnectionError,
    TransportError,
)
from prize_vending.core.interfaces import Endpoint
from prize_vending.core.value_objects import LogEntry, SlotRecord, Tier
from prize_vending.devices.vending.codec import checksum
from prize_vending.devices.vending.constants import TRAILER, Opcode


# =============================================================================
# Frame helpers
# =============================================================================


def response_frame(code: int, channel: int, status: int = 0, error: int = 0) -> bytes:
    """Build an inbound enhanced frame with a valid checksum."""
    body = bytes([code, channel, status, error])
    return body + bytes([checksum(body)]) + TRAILER


def legacy_response(motor: int = 0x5D, drop: int = 0x00) -> bytes:
    """Build a legacy drive response with a valid checksum."""
    body = bytes([0x00, motor, drop, 0xAA])
    return body + bytes([checksum(body)])


def controller(ship_status: int = 2, ship_error: int = 0, has_product: bool = True):
    """Responder emulating a healthy vending controller."""

    def respond(frame: bytes) -> Optional[bytes]:
        opcode = frame[0]
        if opcode == Opcode.SELF_CHECK:
            return response_frame(0xA1, 0)
        if opcode in (Opcode.SELECT_SLOT, Opcode.QUERY_SLOT_STATUS):
            return response_frame(0x81, frame[1], status=0 if has_product else 1)
        if opcode == Opcode.SHIP:
            return response_frame(0x91, frame[1], status=1) + response_frame(
                0x91, frame[1], status=ship_status, error=ship_error
            )
        return None

    return respond


# =============================================================================
# Scheduler
# =============================================================================


class FakeTimer:
    """Timer handle of the fake scheduler."""

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """
    Deterministic clock.

    Timers fire synchronously from ``advance``; ``sleep`` records the
    delay, moves the clock and yields once to the event loop.
    """

    def __init__(self) -> None:
        self.time = 0.0
        self.timers: list[FakeTimer] = []
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.time + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active_timers(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.time + seconds
        while True:
            due = sorted(
                (timer for timer in self.active_timers if timer.when <= target),
                key=lambda timer: timer.when,
            )
            if not due:
                break
            timer = due[0]
            self.time = timer.when
            timer.cancelled = True
            timer.callback()
        self.time = target

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.time += delay
        await asyncio.sleep(0)


# =============================================================================
# Serial link
# =============================================================================


class FakeLink:
    """
    In-memory serial link.

    ``responder`` is called with every written frame; any bytes it
    returns are delivered to the data listeners straight away.
    """

    def __init__(
        self,
        endpoints: Optional[list[Endpoint]] = None,
        open_errors: Optional[dict[str, Exception]] = None,
        is_open: bool = False,
    ) -> None:
        self.is_open = is_open
        self.endpoints = list(endpoints or [])
        self.open_errors = dict(open_errors or {})
        self.opened: list[str] = []
        self.written: list[bytes] = []
        self.responder: Optional[Callable[[bytes], Optional[bytes]]] = None
        self.write_error: Optional[Exception] = None
        self._data_listeners: list[Callable[[bytes], None]] = []
        self._error_listeners: list[Callable[[Exception], None]] = []

    def list_endpoints(self) -> list[Endpoint]:
        return list(self.endpoints)

    async def open(self, path: str, baudrate: int) -> None:
        self.opened.append(path)
        error = self.open_errors.get(path)
        if error is not None:
            raise error
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False

    async def write(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportError("link closed")
        if self.write_error is not None:
            raise self.write_error
        self.written.append(bytes(data))
        if self.responder is not None:
            reply = self.responder(bytes(data))
            if reply:
                self.inject(reply)

    def add_data_listener(self, listener: Callable[[bytes], None]) -> None:
        self._data_listeners.append(listener)

    def add_error_listener(self, listener: Callable[[Exception], None]) -> None:
        self._error_listeners.append(listener)

    def inject(self, data: bytes) -> None:
        for listener in list(self._data_listeners):
            listener(data)

    def fail(self, error: Exception) -> None:
        """Simulate a read error; the port is released like SerialTransport does."""
        self.is_open = False
        for listener in list(self._error_listeners):
            listener(error)


# =============================================================================
# Stores and remote
# =============================================================================


class InMemorySlotStore:
    """Slot counter store backed by a dict."""

    def __init__(self) -> None:
        self.records: dict[int, SlotRecord] = {}
        self.stale = False
        self.save_calls = 0
        self.fail_saves = False

    async def load_all(self, slots: dict[int, Tier], max_dispenses: int) -> dict[int, SlotRecord]:
        return {slot: self.records[slot] for slot in slots if slot in self.records}

    async def save(self, record: SlotRecord) -> None:
        if self.fail_saves:
            raise RedisConnectionError("store down")
        self.save_calls += 1
        self.records[record.slot] = record

    async def save_many(self, records: list[SlotRecord]) -> None:
        for record in records:
            await self.save(record)

    async def pop_stale_flag(self) -> bool:
        stale, self.stale = self.stale, False
        return stale

    async def mark_stale(self) -> None:
        self.stale = True


class InMemoryLogStore:
    """Log queue backed by a list."""

    def __init__(self) -> None:
        self.entries: list[LogEntry] = []

    async def append(self, entry: LogEntry) -> None:
        self.entries.append(entry)

    async def pending(self) -> list[LogEntry]:
        return list(self.entries)

    async def acknowledge(self, entry: LogEntry) -> None:
        self.entries = [queued for queued in self.entries if queued.id != entry.id]


class FakeRemote:
    """
    Backend stand-in that records deliveries and can go offline.

    Entries whose id is in ``rejected`` are refused with a 422.
    """

    def __init__(self, online: bool = True) -> None:
        self.online = online
        self.delivered: list[LogEntry] = []
        self.rejected: set[str] = set()

    async def _submit(self, entry: LogEntry) -> None:
        if not self.online:
            raise BackendUnavailableError("backend offline")
        if entry.id in self.rejected:
            raise BackendRejectedError("unprocessable entry", status_code=422)
        self.delivered.append(entry)

    async def submit_dispensing_log(self, entry) -> None:
        await self._submit(entry)

    async def submit_out_of_stock(self, entry) -> None:
        await self._submit(entry)

    async def ping(self) -> bool:
        return self.online

    async def close(self) -> None:
        pass


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def link() -> FakeLink:
    return FakeLink(is_open=True)


@pytest.fixture
def slot_store() -> InMemorySlotStore:
    return InMemorySlotStore()


@pytest.fixture
def log_store() -> InMemoryLogStore:
    return InMemoryLogStore()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()
