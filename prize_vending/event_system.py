"""
Event system for the prize vending service.

This module provides a publish-subscribe event system for sensor edges,
dispense outcomes and backend connectivity changes.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Union

from prize_vending.loggers import logger


class EventType(str, Enum):
    """
    Enumeration of event types in the prize vending service.

    Values double as the event names pushed to the kiosk front-end.
    """

    SENSOR_START = "sensorStart"
    SENSOR_END = "sensorEnd"
    SENSOR_CHANGE = "sensorChange"
    DISPENSE_OUTCOME = "dispenseOutcome"
    CONNECTIVITY_CHANGED = "connectivityChanged"


class EventPublisher:
    """
    Publisher for sending events to the event queue.

    Attributes:
        event_queue: The asyncio queue to publish events to.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        self.event_queue = event_queue

    async def publish(self, event_type: Union[EventType, str], **data: Any) -> None:
        """
        Publish an event to the queue.

        Args:
            event_type: The type of event to publish.
            **data: Additional event data as keyword arguments.
        """
        await self.event_queue.put({"type": event_type, **data})


class EventConsumer:
    """
    Consumer for processing events from the event queue.

    Handles event dispatch to registered handlers based on event type.

    Attributes:
        event_queue: The asyncio queue to consume events from.
        handlers: Mapping of event types to their handler functions.
        is_consuming: Flag indicating if the consumer is active.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        self.event_queue = event_queue
        self.handlers: dict[Union[EventType, str], list[Callable]] = {}
        self.is_consuming = False
        self._consume_task: asyncio.Task | None = None

    def register_handler(
        self,
        event_type: Union[EventType, str],
        handler: Callable,
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event type to handle.
            handler: The handler function (sync or async).
        """
        self.handlers.setdefault(event_type, []).append(handler)

    async def _process_event(self, event: dict[str, Any]) -> None:
        """
        Process a single event by calling all registered handlers.

        Args:
            event: The event dictionary containing type and data.
        """
        handlers = self.handlers.get(event.get("type"), [])

        async_handlers = [h for h in handlers if asyncio.iscoroutinefunction(h)]
        sync_handlers = [h for h in handlers if not asyncio.iscoroutinefunction(h)]

        if async_handlers:
            results = await asyncio.gather(
                *(handler(event) for handler in async_handlers),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Event handler failed for {event.get('type')}: {result}")

        for handler in sync_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler failed for {event.get('type')}: {e}")

    async def _consume_loop(self) -> None:
        while self.is_consuming:
            try:
                # Periodic wake-up to re-check is_consuming
                event = await asyncio.wait_for(self.event_queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            try:
                await self._process_event(event)
            finally:
                self.event_queue.task_done()

    async def start_consuming(self) -> None:
        """Start processing events from the queue."""
        if self.is_consuming:
            return
        self.is_consuming = True
        self._consume_task = asyncio.create_task(self._consume_loop())

    async def stop_consuming(self) -> None:
        """Stop processing events and cancel the consumption task."""
        self.is_consuming = False
        if self._consume_task:
            self._consume_task.cancel()
            try:
                await self._consume_task
            except asyncio.CancelledError:
                pass
            self._consume_task = None
