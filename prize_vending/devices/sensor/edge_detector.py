"""
Debounced edge detection for the hold sensor.

The sensor streams raw 0/1 samples. A change is only accepted once the
raw value has stayed the same for the debounce window; the accepted
(stable) value is then reported to the handler.

Handler call order on promotion:
    on_change(state, ts), then on_start(ts) for 0 -> 1 or on_end(ts) for 1 -> 0
"""

import logging
from typing import Optional, Union

from prize_vending.core.interfaces import SensorEventHandler
from prize_vending.core.scheduling import Scheduler, TimerHandle


logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_WINDOW = 0.3

RELEASED = 0
PRESSED = 1


def parse_sample(raw: Union[int, str, bytes]) -> Optional[int]:
    """
    Convert a raw sample to 0 or 1.

    Returns:
        The sample, or None if it is malformed.
    """
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw in (RELEASED, PRESSED) else None
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="replace")
    if isinstance(raw, str):
        text = raw.strip()
        if text in ("0", "1"):
            return int(text)
    return None


class EdgeDetector:
    """
    Debounces a binary sample stream into stable edges.

    Attributes:
        window: Debounce window in seconds.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        handler: Optional[SensorEventHandler] = None,
        window: float = DEFAULT_DEBOUNCE_WINDOW,
    ) -> None:
        if window <= 0:
            raise ValueError("Debounce window must be positive")
        self.window = window
        self._scheduler = scheduler
        self._handler = handler or SensorEventHandler()
        self._current_raw = RELEASED
        self._last_stable = RELEASED
        self._timer: Optional[TimerHandle] = None
        self._enabled = True

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def state(self) -> int:
        """Last stable value."""
        return self._last_stable

    @property
    def has_pending(self) -> bool:
        """Whether a debounce timer is running."""
        return self._timer is not None

    def set_handler(self, handler: SensorEventHandler) -> None:
        self._handler = handler

    def feed(self, raw: Union[int, str, bytes]) -> None:
        """
        Accept one raw sample.

        Malformed samples are logged and dropped. Samples are ignored
        silently while the detector is disabled.
        """
        if not self._enabled:
            return

        sample = parse_sample(raw)
        if sample is None:
            logger.warning(f"Dropping malformed sensor sample: {raw!r}")
            return

        if sample == self._current_raw:
            return

        self._cancel_timer()
        self._current_raw = sample
        self._timer = self._scheduler.call_later(self.window, self._promote)

    def reset(self) -> None:
        """Cancel any pending change and return to the released state."""
        self._cancel_timer()
        self._current_raw = RELEASED
        self._last_stable = RELEASED

    def set_enabled(self, enabled: bool) -> None:
        """
        Enable or disable sample processing.

        Disabling discards an unconfirmed change so that nothing fires
        for samples that arrived before or while disabled.
        """
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if not enabled:
            self._cancel_timer()
            self._current_raw = self._last_stable
        logger.info(f"Sensor {'enabled' if enabled else 'disabled'}")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _promote(self) -> None:
        self._timer = None
        previous = self._last_stable
        if self._current_raw == previous:
            return

        self._last_stable = self._current_raw
        timestamp = self._scheduler.now()
        self._handler.on_change(self._last_stable, timestamp)
        if previous == RELEASED and self._last_stable == PRESSED:
            self._handler.on_start(timestamp)
        elif previous == PRESSED and self._last_stable == RELEASED:
            self._handler.on_end(timestamp)
