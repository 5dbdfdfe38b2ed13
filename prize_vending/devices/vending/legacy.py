"""
Legacy direct-drive client.

Older controller firmware only understands the fixed six-byte drive
command and answers with a five-byte motor/drop report. Responses carry
no channel, so only one drive may be outstanding.
"""

import logging
from typing import Optional

from prize_vending.core.exceptions import ProtocolError, TransportError
from prize_vending.core.interfaces import SerialLink
from prize_vending.core.scheduling import Scheduler

from .codec import (
    LegacyResponseDecoder,
    LegacyResult,
    encode_legacy_command,
    hardware_fault,
    hex_dump,
    parse_legacy_response,
)
from .transactions import TransactionKind, TransactionRegistry


logger = logging.getLogger(__name__)

DEFAULT_DRIVE_TIMEOUT = 15.0


class LegacyVendingClient:
    """
    Six-byte command client for legacy vending boards.

    Attributes:
        has_hardware: True once a port was opened through ``open``.
    """

    def __init__(
        self,
        link: SerialLink,
        scheduler: Scheduler,
        timeout: float = DEFAULT_DRIVE_TIMEOUT,
        name: str = "legacy_vending",
    ) -> None:
        self.name = name
        self.has_hardware = False
        self._link = link
        self._timeout = timeout
        self._registry = TransactionRegistry(scheduler)
        self._decoder = LegacyResponseDecoder()
        self._active_slot: Optional[int] = None

        link.add_data_listener(self._on_data)
        link.add_error_listener(self._on_error)

    @property
    def is_connected(self) -> bool:
        return self._link.is_open

    @property
    def pending_count(self) -> int:
        return len(self._registry)

    async def dispense(self, slot: int) -> LegacyResult:
        """
        Drive ``slot`` and wait for the drop report.

        Raises:
            ConfigurationError: If the slot is outside 1..80 (nothing is written).
            TransportError: If the link is closed or the write fails.
            HardwareFault: If the board reports no delivery.
            TransactionTimeoutError: If no report arrives in time.
        """
        command = encode_legacy_command(slot)
        if not self._link.is_open:
            raise TransportError(f"{self.name}: link not open", device_name=self.name)

        transaction = self._registry.open(TransactionKind.SHIP, slot, self._timeout)
        self._active_slot = slot
        try:
            await self._link.write(command)
        except TransportError as e:
            self._registry.fail(TransactionKind.SHIP, slot, e)
        else:
            self._registry.mark_sent(transaction)

        try:
            result: LegacyResult = await transaction.future
        finally:
            self._active_slot = None

        if not result.delivered:
            raise hardware_fault(result.error_code, slot)
        logger.info(f"{self.name}: slot {slot} delivered")
        return result

    async def open(self, path: str, baudrate: int) -> None:
        """
        Open the legacy port.

        Raises:
            TransportError: If the port cannot be opened.
        """
        await self._link.open(path, baudrate)
        self.has_hardware = True
        logger.info(f"{self.name}: legacy board on {path}")

    async def close(self) -> None:
        self.has_hardware = False
        self._registry.cancel_all("client closed")
        self._decoder.clear()
        await self._link.close()

    def _on_data(self, data: bytes) -> None:
        for raw in self._decoder.feed(data):
            try:
                result = parse_legacy_response(raw)
            except ProtocolError as e:
                logger.warning(f"{self.name}: discarding response: {e.message}")
                continue
            if self._active_slot is None or not self._registry.resolve(
                TransactionKind.SHIP, self._active_slot, result
            ):
                logger.warning(f"{self.name}: unmatched response {hex_dump(raw)}")

    def _on_error(self, error: Exception) -> None:
        self._registry.cancel_all(f"read error: {error}")
