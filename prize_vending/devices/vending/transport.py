"""
Async serial transport.

Wraps a pyserial-asyncio stream pair with a background read loop that
pushes received bytes to registered listeners.
"""

import asyncio
import errno
import logging
from typing import Optional

import serial
import serial.tools.list_ports
import serial_asyncio

from prize_vending.core.exceptions import TransportError
from prize_vending.core.interfaces import DataListener, Endpoint, ErrorListener

from .codec import hex_dump


logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64

_ACCESS_DENIED_MARKERS = ("permission denied", "access is denied", "resource busy")


def is_access_denied(error: BaseException) -> bool:
    """Whether an open failure means the port exists but is held or forbidden."""
    if isinstance(error, PermissionError):
        return True
    if isinstance(error, OSError) and error.errno in (errno.EACCES, errno.EBUSY):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _ACCESS_DENIED_MARKERS)


class SerialTransport:
    """
    Serial port with listener-based reads.

    Attributes:
        name: Label used in logs.
        path: Currently open port path, if any.
    """

    def __init__(self, name: str = "serial") -> None:
        self.name = name
        self.path: Optional[str] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._data_listeners: list[DataListener] = []
        self._error_listeners: list[ErrorListener] = []

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    def list_endpoints(self) -> list[Endpoint]:
        """Enumerate serial ports known to the OS."""
        endpoints = []
        for port in serial.tools.list_ports.comports():
            endpoints.append(
                Endpoint(
                    path=port.device,
                    manufacturer=port.manufacturer,
                    vendor_id=f"{port.vid:04x}" if port.vid is not None else None,
                    product_id=f"{port.pid:04x}" if port.pid is not None else None,
                )
            )
        return endpoints

    async def open(self, path: str, baudrate: int) -> None:
        """
        Open ``path`` and start the read loop.

        Raises:
            TransportError: If the port cannot be opened. ``access_denied``
                is set for permission and busy-port failures.
        """
        if self.is_open:
            await self.close()

        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=path,
                baudrate=baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
            )
        except (serial.SerialException, OSError) as e:
            raise TransportError(
                f"{self.name}: cannot open {path}: {e}",
                device_name=self.name,
                path=path,
                access_denied=is_access_denied(e),
            ) from e

        self.path = path
        self._read_task = asyncio.create_task(self._read_loop())
        logger.info(f"{self.name}: port {path} opened at {baudrate} baud")

    async def close(self) -> None:
        if self._read_task is not None:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None

        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (serial.SerialException, OSError) as e:
                logger.debug(f"{self.name}: error while closing port: {e}")
            self._writer = None
            self._reader = None
            logger.info(f"{self.name}: port {self.path} closed")
        self.path = None

    async def write(self, data: bytes) -> None:
        """
        Write ``data`` and drain.

        Raises:
            TransportError: If the port is closed or the write fails.
        """
        if self._writer is None:
            raise TransportError(f"{self.name}: port not open", device_name=self.name)
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (serial.SerialException, OSError) as e:
            raise TransportError(
                f"{self.name}: write failed: {e}", device_name=self.name, path=self.path
            ) from e
        logger.debug(f"{self.name} TX: {hex_dump(data)}")

    def add_data_listener(self, listener: DataListener) -> None:
        self._data_listeners.append(listener)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def _release(self) -> None:
        """Drop a dead port from inside the read loop; the loop ends right after."""
        if self._writer is not None:
            self._writer.close()
        self._writer = None
        self._reader = None
        self._read_task = None
        logger.warning(f"{self.name}: port {self.path} released after read error")
        self.path = None

    async def _read_loop(self) -> None:
        assert self._reader is not None
        try:
            while True:
                data = await self._reader.read(READ_CHUNK_SIZE)
                if not data:
                    raise TransportError(
                        f"{self.name}: port {self.path} closed by peer", device_name=self.name
                    )
                logger.debug(f"{self.name} RX: {hex_dump(data)}")
                for listener in list(self._data_listeners):
                    listener(data)
        except asyncio.CancelledError:
            raise
        except (TransportError, serial.SerialException, OSError) as e:
            logger.error(f"{self.name}: read error: {e}")
            self._release()
            for listener in list(self._error_listeners):
                listener(e)
