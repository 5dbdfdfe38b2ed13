"""
Line reader between the sensor board's serial port and the edge detector.

The board prints one sample per line ("0" or "1").
"""

import logging

from prize_vending.core.interfaces import SerialLink

from .edge_detector import EdgeDetector


logger = logging.getLogger(__name__)

MAX_LINE_LENGTH = 64


class SensorLink:
    """Splits serial input into lines and feeds each one to the detector."""

    def __init__(self, link: SerialLink, detector: EdgeDetector) -> None:
        self._link = link
        self._detector = detector
        self._buffer = bytearray()
        link.add_data_listener(self._on_data)
        link.add_error_listener(self._on_error)

    @property
    def detector(self) -> EdgeDetector:
        return self._detector

    @property
    def is_connected(self) -> bool:
        return self._link.is_open

    def _on_data(self, data: bytes) -> None:
        self._buffer.extend(data)
        while (index := self._buffer.find(b"\n")) >= 0:
            line = bytes(self._buffer[:index]).strip(b"\r ")
            del self._buffer[:index + 1]
            if line:
                self._detector.feed(line)

        if len(self._buffer) > MAX_LINE_LENGTH:
            logger.warning(f"Sensor line too long, dropping {len(self._buffer)} bytes")
            self._buffer.clear()

    def _on_error(self, error: Exception) -> None:
        logger.error(f"Sensor link error: {error}")
        self._buffer.clear()
        self._detector.reset()

    async def close(self) -> None:
        self._detector.set_enabled(False)
        self._buffer.clear()
        await self._link.close()
