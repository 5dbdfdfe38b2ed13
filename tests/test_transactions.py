"""
Tests for request/response correlation and timeouts.
"""

import pytest

from prize_vending.core.exceptions import ProtocolError, TransactionTimeoutError, TransportError
from prize_vending.devices.vending.transactions import (
    TransactionKind,
    TransactionRegistry,
    TransactionState,
)


class TestTransactionRegistry:
    """Tests for TransactionRegistry."""

    @pytest.mark.asyncio
    async def test_resolve_completes_and_removes(self, scheduler):
        """Test a matching response completes the future and frees the key."""
        registry = TransactionRegistry(scheduler)
        transaction = registry.open(TransactionKind.SHIP, 5, timeout=15)
        registry.mark_sent(transaction)

        assert transaction.state == TransactionState.SENT
        assert (TransactionKind.SHIP, 5) in registry

        assert registry.resolve(TransactionKind.SHIP, 5, "done") is True
        assert await transaction.future == "done"
        assert transaction.state == TransactionState.COMPLETED_SUCCESS
        assert transaction.state.is_final
        assert len(registry) == 0
        assert scheduler.active_timers == []

    @pytest.mark.asyncio
    async def test_timeout_fails_and_removes(self, scheduler):
        """Test an unanswered request times out exactly at its budget."""
        registry = TransactionRegistry(scheduler)
        transaction = registry.open(TransactionKind.SELECT, 3, timeout=3)

        scheduler.advance(2.9)
        assert not transaction.future.done()

        scheduler.advance(0.2)
        assert transaction.state == TransactionState.TIMED_OUT
        assert len(registry) == 0
        with pytest.raises(TransactionTimeoutError) as exc_info:
            await transaction.future
        assert exc_info.value.channel == 3
        assert exc_info.value.kind == "select"

    @pytest.mark.asyncio
    async def test_late_response_after_timeout_ignored(self, scheduler):
        """Test a response for an expired transaction matches nothing."""
        registry = TransactionRegistry(scheduler)
        transaction = registry.open(TransactionKind.SHIP, 1, timeout=1)
        scheduler.advance(2)

        assert registry.resolve(TransactionKind.SHIP, 1, "late") is False
        with pytest.raises(TransactionTimeoutError):
            await transaction.future

    @pytest.mark.asyncio
    async def test_repeated_expiry_leaves_nothing_behind(self, scheduler):
        """Test many expired requests on one key leave no entries or live timers."""
        registry = TransactionRegistry(scheduler)

        for _ in range(50):
            transaction = registry.open(TransactionKind.SLOT_STATUS, 7, timeout=2)
            registry.mark_sent(transaction)
            scheduler.advance(2.5)
            with pytest.raises(TransactionTimeoutError):
                await transaction.future

        assert len(registry) == 0
        assert (TransactionKind.SLOT_STATUS, 7) not in registry
        assert scheduler.active_timers == []
        assert len(scheduler.timers) == 50

    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self, scheduler):
        """Test only one request per (kind, channel) may be pending."""
        registry = TransactionRegistry(scheduler)
        registry.open(TransactionKind.SHIP, 1, timeout=1)

        with pytest.raises(ProtocolError):
            registry.open(TransactionKind.SHIP, 1, timeout=1)

        registry.open(TransactionKind.SELECT, 1, timeout=1)
        registry.open(TransactionKind.SHIP, 2, timeout=1)
        assert len(registry) == 3

    @pytest.mark.asyncio
    async def test_fail_sets_exception(self, scheduler):
        registry = TransactionRegistry(scheduler)
        transaction = registry.open(TransactionKind.RESET, 0, timeout=5)

        assert registry.fail(TransactionKind.RESET, 0, TransportError("gone")) is True
        assert transaction.state == TransactionState.COMPLETED_FAILURE
        with pytest.raises(TransportError):
            await transaction.future
        assert registry.fail(TransactionKind.RESET, 0, TransportError("again")) is False

    @pytest.mark.asyncio
    async def test_cancel_all_marks_sent_commands(self, scheduler):
        """Test cancellation tells sent and unsent requests apart."""
        registry = TransactionRegistry(scheduler)
        sent = registry.open(TransactionKind.SHIP, 1, timeout=15)
        registry.mark_sent(sent)
        unsent = registry.open(TransactionKind.SHIP, 2, timeout=15)

        assert registry.cancel_all("closing") == 2
        assert len(registry) == 0
        assert scheduler.active_timers == []

        with pytest.raises(TransportError) as sent_error:
            await sent.future
        with pytest.raises(TransportError) as unsent_error:
            await unsent.future
        assert sent_error.value.command_sent is True
        assert unsent_error.value.command_sent is False

    @pytest.mark.asyncio
    async def test_find(self, scheduler):
        registry = TransactionRegistry(scheduler)
        transaction = registry.open(TransactionKind.SLOT_STATUS, 9, timeout=2)

        assert registry.find(TransactionKind.SLOT_STATUS, 9) is transaction
        assert registry.find(TransactionKind.SLOT_STATUS, 8) is None
        assert transaction.timeout_at == pytest.approx(2)
