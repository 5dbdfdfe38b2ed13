"""
Request/response correlation for the vending controller.

Each outbound request opens one Transaction keyed by (kind, channel). The
transaction is resolved by the matching inbound frame or expires on its
own timer; either way it is removed from the registry.

Lifecycle:
    IDLE -> SENT -> COMPLETED_SUCCESS | COMPLETED_FAILURE | TIMED_OUT
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Optional

from prize_vending.core.exceptions import (
    ProtocolError,
    TransactionTimeoutError,
    TransportError,
)
from prize_vending.core.scheduling import Scheduler, TimerHandle


logger = logging.getLogger(__name__)


class TransactionKind(str, Enum):
    """Request types; at most one of each may be pending per channel."""

    SLOT_STATUS = "slot_status"
    SELECT = "select"
    SHIP = "ship"
    STATUS = "status"
    SELF_CHECK = "self_check"
    RESET = "reset"


class TransactionState(Enum):
    """Transaction lifecycle states."""

    IDLE = auto()
    SENT = auto()
    COMPLETED_SUCCESS = auto()
    COMPLETED_FAILURE = auto()
    TIMED_OUT = auto()

    @property
    def is_final(self) -> bool:
        return self not in (TransactionState.IDLE, TransactionState.SENT)


@dataclass(eq=False)
class Transaction:
    """
    One outstanding request.

    Attributes:
        channel: Addressed channel (0 for machine-level requests).
        kind: Request type.
        created_at: Scheduler time when opened.
        timeout_at: Scheduler time when it expires.
        future: Completed with the response or the failure.
        state: Lifecycle state.
    """

    channel: int
    kind: TransactionKind
    created_at: float
    timeout_at: float
    future: asyncio.Future
    state: TransactionState = TransactionState.IDLE
    timer: Optional[TimerHandle] = field(default=None, repr=False)

    @property
    def key(self) -> tuple[TransactionKind, int]:
        return self.kind, self.channel


class TransactionRegistry:
    """
    Pending transactions with per-request timeouts.

    Attributes:
        scheduler: Clock used for timeouts.
    """

    def __init__(self, scheduler: Scheduler) -> None:
        self.scheduler = scheduler
        self._pending: dict[tuple[TransactionKind, int], Transaction] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: tuple[TransactionKind, int]) -> bool:
        return key in self._pending

    def open(self, kind: TransactionKind, channel: int, timeout: float) -> Transaction:
        """
        Open a transaction and arm its timeout.

        Args:
            kind: Request type.
            channel: Addressed channel.
            timeout: Budget in seconds.

        Returns:
            The new transaction in IDLE state.

        Raises:
            ProtocolError: If the same (kind, channel) is already pending.
        """
        key = (kind, channel)
        if key in self._pending:
            raise ProtocolError(
                f"{kind.value} request for channel {channel} already pending",
                details={"kind": kind.value, "channel": channel},
            )

        now = self.scheduler.now()
        transaction = Transaction(
            channel=channel,
            kind=kind,
            created_at=now,
            timeout_at=now + timeout,
            future=asyncio.get_running_loop().create_future(),
        )
        transaction.timer = self.scheduler.call_later(
            timeout, lambda: self._expire(transaction)
        )
        self._pending[key] = transaction
        return transaction

    def mark_sent(self, transaction: Transaction) -> None:
        if transaction.state == TransactionState.IDLE:
            transaction.state = TransactionState.SENT

    def find(self, kind: TransactionKind, channel: int) -> Optional[Transaction]:
        return self._pending.get((kind, channel))

    def resolve(self, kind: TransactionKind, channel: int, result: Any) -> bool:
        """
        Complete the matching transaction successfully.

        Returns:
            False if nothing was pending for (kind, channel).
        """
        transaction = self._take(kind, channel)
        if transaction is None:
            return False
        transaction.state = TransactionState.COMPLETED_SUCCESS
        if not transaction.future.done():
            transaction.future.set_result(result)
        return True

    def fail(self, kind: TransactionKind, channel: int, error: Exception) -> bool:
        """
        Complete the matching transaction with ``error``.

        Returns:
            False if nothing was pending for (kind, channel).
        """
        transaction = self._take(kind, channel)
        if transaction is None:
            return False
        transaction.state = TransactionState.COMPLETED_FAILURE
        if not transaction.future.done():
            transaction.future.set_exception(error)
        return True

    def cancel_all(self, reason: str = "link closed") -> int:
        """
        Fail every pending transaction and cancel its timer.

        Returns:
            Number of transactions cancelled.
        """
        pending = list(self._pending.values())
        for transaction in pending:
            self.fail(
                transaction.kind,
                transaction.channel,
                TransportError(
                    f"{transaction.kind.value} aborted: {reason}",
                    command_sent=transaction.state == TransactionState.SENT,
                ),
            )
        if pending:
            logger.info(f"Cancelled {len(pending)} pending transactions: {reason}")
        return len(pending)

    def _take(self, kind: TransactionKind, channel: int) -> Optional[Transaction]:
        transaction = self._pending.pop((kind, channel), None)
        if transaction is not None and transaction.timer is not None:
            transaction.timer.cancel()
            transaction.timer = None
        return transaction

    def _expire(self, transaction: Transaction) -> None:
        if self._pending.get(transaction.key) is not transaction:
            return
        del self._pending[transaction.key]
        transaction.timer = None
        transaction.state = TransactionState.TIMED_OUT
        logger.warning(
            f"{transaction.kind.value} on channel {transaction.channel} timed out "
            f"after {transaction.timeout_at - transaction.created_at:.1f}s"
        )
        if not transaction.future.done():
            transaction.future.set_exception(
                TransactionTimeoutError(
                    f"No {transaction.kind.value} response for channel {transaction.channel}",
                    kind=transaction.kind.value,
                    channel=transaction.channel,
                )
            )
