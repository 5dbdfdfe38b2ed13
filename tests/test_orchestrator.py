"""
Tests for the dispense strategy chain and the dispensing orchestrator.
"""

import asyncio

import pytest

from prize_vending.core.exceptions import (
    ConfigurationError,
    DispenseInProgressError,
    HardwareFault,
    TransactionTimeoutError,
    TransportError,
)
from prize_vending.core.interfaces import DispenseStrategy
from prize_vending.core.value_objects import (
    DispensingLogEntry,
    Failure,
    LogSource,
    NoPrize,
    OutOfStock,
    OutOfStockLogEntry,
    SlotRecord,
    Success,
    Tier,
)
from prize_vending.devices.vending import VendingProtocolClient
from prize_vending.devices.vending.codec import build_frame
from prize_vending.devices.vending.constants import Opcode
from prize_vending.domain import (
    DispenseChain,
    DispensingOrchestrator,
    EnhancedProtocolStrategy,
    SimulatedStrategy,
    SlotAllocator,
    ThresholdTable,
)
from prize_vending.domain.tiers import DEFAULT_THRESHOLDS

from conftest import FakeLink, controller, response_frame


class FakeStrategy(DispenseStrategy):
    """Strategy with scripted availability and failures."""

    def __init__(self, name, available=True, error=None, configured=None):
        self._name = name
        self.available = available
        self.configured = available if configured is None else configured
        self.error = error
        self.calls = []

    @property
    def name(self):
        return self._name

    @property
    def is_available(self):
        return self.available

    @property
    def is_configured(self):
        return self.configured

    async def dispense(self, slot):
        self.calls.append(slot)
        if self.error is not None:
            raise self.error


class RecordingObserver:
    def __init__(self):
        self.calls = []

    async def on_outcome(self, outcome, entry):
        self.calls.append((outcome, entry))


# =============================================================================
# Strategy Chain Tests
# =============================================================================


class TestDispenseChain:
    """Tests for DispenseChain ordering and fallthrough."""

    @pytest.mark.asyncio
    async def test_first_available_wins(self, scheduler):
        first, second = FakeStrategy("enhanced"), FakeStrategy("legacy")
        chain = DispenseChain([first, second], SimulatedStrategy(scheduler))

        result = await chain.dispense(5)

        assert result.strategy == "enhanced"
        assert result.source == LogSource.HARDWARE
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_unsent_transport_error_falls_through(self, scheduler):
        first = FakeStrategy("enhanced", error=TransportError("write failed"))
        second = FakeStrategy("legacy")
        chain = DispenseChain([first, second], SimulatedStrategy(scheduler))

        result = await chain.dispense(5)

        assert result.strategy == "legacy"
        assert first.calls == [5]
        assert second.calls == [5]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        HardwareFault("motor"),
        TransactionTimeoutError("silent"),
        TransportError("unplugged mid-ship", command_sent=True),
    ])
    async def test_post_write_errors_end_attempt(self, scheduler, error):
        """Test a command that may have moved the motor is never repeated."""
        first = FakeStrategy("enhanced", error=error)
        second = FakeStrategy("legacy")
        chain = DispenseChain([first, second], SimulatedStrategy(scheduler))

        with pytest.raises(type(error)):
            await chain.dispense(5)
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_simulated_only_without_hardware(self, scheduler):
        first = FakeStrategy("enhanced", available=False)
        chain = DispenseChain([first], SimulatedStrategy(scheduler, delay=1.0))

        result = await chain.dispense(5)

        assert result.source == LogSource.SIMULATED
        assert scheduler.sleeps == [1.0]
        assert chain.has_hardware is False

    @pytest.mark.asyncio
    async def test_unreachable_hardware_not_simulated(self, scheduler):
        """Test a failed hardware attempt is reported rather than faked."""
        first = FakeStrategy("enhanced", error=TransportError("write failed"))
        chain = DispenseChain([first], SimulatedStrategy(scheduler))

        with pytest.raises(TransportError):
            await chain.dispense(5)
        assert scheduler.sleeps == []

    @pytest.mark.asyncio
    async def test_dropped_hardware_not_simulated(self, scheduler):
        """Test hardware that was brought up and then lost its link fails the dispense."""
        first = FakeStrategy("enhanced", available=False, configured=True)
        chain = DispenseChain([first], SimulatedStrategy(scheduler))

        with pytest.raises(TransportError):
            await chain.dispense(5)
        assert first.calls == []
        assert scheduler.sleeps == []
        assert chain.has_hardware is True


# =============================================================================
# Orchestrator Tests
# =============================================================================


@pytest.fixture
def allocator(slot_store):
    return SlotAllocator(
        slot_store,
        {Tier.GOLD: (24, 25), Tier.SILVER: (1, 2, 3)},
        max_dispenses=5,
    )


@pytest.fixture
def hardware(scheduler):
    link = FakeLink(is_open=True)
    link.responder = controller()
    client = VendingProtocolClient(link, scheduler)
    client.is_initialized = True
    client.has_hardware = True
    return link, client


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def orchestrator(allocator, hardware, scheduler, observer):
    _, client = hardware
    chain = DispenseChain([EnhancedProtocolStrategy(client)], SimulatedStrategy(scheduler))
    return DispensingOrchestrator(
        ThresholdTable.from_mapping(DEFAULT_THRESHOLDS),
        allocator,
        chain,
        observers=[observer],
    )


def ship_commands(link):
    return [frame for frame in link.written if frame[0] == Opcode.SHIP]


class TestDispensingOrchestrator:
    """Tests for DispensingOrchestrator."""

    @pytest.mark.asyncio
    async def test_gold_round_dispenses_slot_24(self, orchestrator, hardware, slot_store, observer):
        """Test a 65 s hold on fresh gold slots [24, 25] ships slot 24."""
        link, _ = hardware

        outcome = await orchestrator.dispense("round-1", 65_000)

        assert outcome == Success(slot=24, tier=Tier.GOLD, source=LogSource.HARDWARE)
        assert link.written == [build_frame(Opcode.SELECT_SLOT, 24), build_frame(Opcode.SHIP, 24)]
        assert slot_store.records[24].dispense_count == 1

        (notified, entry), = observer.calls
        assert notified == outcome
        assert isinstance(entry, DispensingLogEntry)
        assert entry.success is True
        assert entry.slot == 24

    @pytest.mark.asyncio
    async def test_threshold_boundary(self, orchestrator, hardware):
        """Test 59 999 ms wins silver and 60 000 ms wins gold."""
        silver = await orchestrator.dispense("round-a", 59_999)
        gold = await orchestrator.dispense("round-b", 60_000)

        assert silver.tier == Tier.SILVER
        assert gold.tier == Tier.GOLD

    @pytest.mark.asyncio
    async def test_short_hold_no_prize(self, orchestrator, hardware, observer):
        link, _ = hardware

        outcome = await orchestrator.dispense("round-1", 12_000)

        assert outcome == NoPrize(duration_ms=12_000)
        assert link.written == []
        assert observer.calls == [(outcome, None)]

    @pytest.mark.asyncio
    async def test_out_of_stock_sends_nothing(self, orchestrator, hardware, slot_store, observer):
        """Test an exhausted tier logs out-of-stock and never touches hardware."""
        link, _ = hardware
        for slot in (24, 25):
            slot_store.records[slot] = SlotRecord(
                slot=slot, tier=Tier.GOLD, dispense_count=5, max_dispenses=5
            )

        outcome = await orchestrator.dispense("round-1", 70_000)

        assert outcome == OutOfStock(Tier.GOLD)
        assert link.written == []
        (_, entry), = observer.calls
        assert isinstance(entry, OutOfStockLogEntry)
        assert entry.tier == Tier.GOLD

    @pytest.mark.asyncio
    async def test_duplicate_round_token_dispenses_once(self, orchestrator, hardware, slot_store):
        """Test concurrent requests for one round ship exactly once."""
        link, _ = hardware

        first, second = await asyncio.gather(
            orchestrator.dispense("round-1", 65_000),
            orchestrator.dispense("round-1", 65_000),
        )
        third = await orchestrator.dispense("round-1", 65_000)

        assert first == second == third
        assert len(ship_commands(link)) == 1
        assert slot_store.records[24].dispense_count == 1
        assert orchestrator.cached_outcome("round-1") == first

    @pytest.mark.asyncio
    async def test_hardware_fault_no_increment(self, orchestrator, hardware, slot_store, observer):
        link, _ = hardware
        link.responder = controller(ship_status=3, ship_error=100)

        outcome = await orchestrator.dispense("round-1", 65_000)

        assert isinstance(outcome, Failure)
        assert outcome.slot == 24
        assert outcome.error_code == "MOTOR_OPEN_CIRCUIT"
        assert slot_store.records[24].dispense_count == 0
        (_, entry), = observer.calls
        assert entry.success is False
        assert entry.error == outcome.error

    @pytest.mark.asyncio
    async def test_ship_timeout_is_failure(self, orchestrator, hardware, scheduler, slot_store):
        """Test a silent controller yields Failure without a second command."""
        link, _ = hardware

        def no_ship_reply(frame):
            if frame[0] == Opcode.SHIP:
                return None
            return response_frame(0x81, frame[1])

        link.responder = no_ship_reply
        task = asyncio.create_task(orchestrator.dispense("round-1", 65_000))
        for _ in range(5):
            await asyncio.sleep(0)
        scheduler.advance(15.5)

        outcome = await task
        assert isinstance(outcome, Failure)
        assert len(ship_commands(link)) == 1
        assert slot_store.records[24].dispense_count == 0

    @pytest.mark.asyncio
    async def test_read_error_fails_instead_of_simulating(self, orchestrator, hardware, slot_store, observer):
        """Test a controller whose port died reports Failure and counts nothing."""
        link, client = hardware

        link.fail(OSError("device disconnected"))
        outcome = await orchestrator.dispense("round-1", 65_000)

        assert isinstance(outcome, Failure)
        assert link.is_open is False
        assert client.is_initialized is False
        assert link.written == []
        assert 24 not in slot_store.records or slot_store.records[24].dispense_count == 0
        (_, entry), = observer.calls
        assert entry.success is False

    @pytest.mark.asyncio
    async def test_simulated_when_hardware_absent(self, allocator, scheduler, slot_store):
        chain = DispenseChain([FakeStrategy("enhanced", available=False)], SimulatedStrategy(scheduler))
        orchestrator = DispensingOrchestrator(
            ThresholdTable.from_mapping(DEFAULT_THRESHOLDS), allocator, chain
        )

        outcome = await orchestrator.dispense("round-1", 40_000)

        assert outcome == Success(slot=1, tier=Tier.SILVER, source=LogSource.SIMULATED)
        assert slot_store.records[1].dispense_count == 1

    @pytest.mark.asyncio
    async def test_never_raises(self, orchestrator, allocator, monkeypatch):
        """Test unexpected errors come back as Failure."""

        async def broken(tier):
            raise RuntimeError("boom")

        monkeypatch.setattr(allocator, "next_available", broken)

        outcome = await orchestrator.dispense("round-1", 65_000)

        assert isinstance(outcome, Failure)
        assert "boom" in outcome.error

    @pytest.mark.asyncio
    async def test_storage_failure_is_failure(self, orchestrator, hardware, slot_store):
        link, _ = hardware
        slot_store.fail_saves = True

        outcome = await orchestrator.dispense("round-1", 65_000)

        assert isinstance(outcome, Failure)
        assert link.written == []

    @pytest.mark.asyncio
    async def test_counter_write_failure_still_success(self, orchestrator, allocator, slot_store):
        """Test a delivered prize is reported even if the counter write fails."""
        await allocator.load()
        slot_store.fail_saves = True

        outcome = await orchestrator.dispense("round-1", 65_000)

        assert isinstance(outcome, Success)
        slot_store.fail_saves = False
        assert await allocator.next_available(Tier.GOLD) == 25

    @pytest.mark.asyncio
    async def test_observer_failure_ignored(self, orchestrator):
        class Broken:
            async def on_outcome(self, outcome, entry):
                raise RuntimeError("observer down")

        orchestrator.add_observer(Broken())
        outcome = await orchestrator.dispense("round-1", 65_000)
        assert isinstance(outcome, Success)

    @pytest.mark.asyncio
    async def test_manual_dispense(self, orchestrator, hardware, observer):
        link, _ = hardware

        outcome = await orchestrator.manual_dispense(2)

        assert outcome == Success(slot=2, tier=Tier.SILVER, source=LogSource.MANUAL)
        (_, entry), = observer.calls
        assert entry.source == LogSource.MANUAL

    @pytest.mark.asyncio
    async def test_manual_dispense_rejected_while_busy(self, orchestrator, hardware, scheduler):
        link, _ = hardware
        link.responder = None
        task = asyncio.create_task(orchestrator.dispense("round-1", 65_000))
        for _ in range(5):
            await asyncio.sleep(0)

        assert orchestrator.is_busy
        with pytest.raises(DispenseInProgressError):
            await orchestrator.manual_dispense(2)

        scheduler.advance(5)
        await task

    @pytest.mark.asyncio
    async def test_manual_dispense_unknown_slot(self, orchestrator):
        with pytest.raises(ConfigurationError):
            await orchestrator.manual_dispense(70)
