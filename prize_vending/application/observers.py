"""
Post-decision observers and sensor event bridging.

Observers run once per dispense outcome, after the orchestrator has
decided it, so durable logging and UI notification never influence the
dispensing algorithm.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from prize_vending.core.interfaces import SensorEventHandler
from prize_vending.core.value_objects import LogEntry, Outcome
from prize_vending.event_system import EventPublisher, EventType
from prize_vending.loggers import logger

from .offline_log_queue import OfflineLogQueue


class OfflineLogObserver:
    """Hands each outcome's log entry to the offline queue."""

    def __init__(self, queue: OfflineLogQueue) -> None:
        self._queue = queue

    async def on_outcome(self, outcome: Outcome, entry: Optional[LogEntry]) -> None:
        if entry is not None:
            await self._queue.enqueue(entry)


class EventPublishingObserver:
    """Publishes each outcome on the event queue for the kiosk front-end."""

    def __init__(self, publisher: EventPublisher) -> None:
        self._publisher = publisher

    async def on_outcome(self, outcome: Outcome, entry: Optional[LogEntry]) -> None:
        await self._publisher.publish(EventType.DISPENSE_OUTCOME, **outcome.to_dict())


class SensorEventBridge(SensorEventHandler):
    """
    Forwards debounced sensor edges to the event queue.

    Also measures the hold: the release event carries ``duration_ms``
    since the matching press, both taken at debounce promotion time.
    """

    def __init__(self, publisher: EventPublisher) -> None:
        self._publisher = publisher
        self._pressed_at: Optional[float] = None
        self._tasks: set[asyncio.Task] = set()

    def on_start(self, timestamp: float) -> None:
        self._pressed_at = timestamp
        self._publish(EventType.SENSOR_START, timestamp=timestamp)

    def on_end(self, timestamp: float) -> None:
        duration_ms = None
        if self._pressed_at is not None:
            duration_ms = int(round((timestamp - self._pressed_at) * 1000))
            self._pressed_at = None
        self._publish(EventType.SENSOR_END, timestamp=timestamp, duration_ms=duration_ms)

    def on_change(self, state: int, timestamp: float) -> None:
        self._publish(EventType.SENSOR_CHANGE, state=state, timestamp=timestamp)

    def _publish(self, event_type: EventType, **data) -> None:
        try:
            task = asyncio.get_running_loop().create_task(
                self._publisher.publish(event_type, **data)
            )
        except RuntimeError:
            logger.warning(f"No running loop, dropping {event_type.value} event")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
