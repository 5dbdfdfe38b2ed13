"""
Kiosk Facade - Unified interface for the prize vending service.

Builds every component once at startup and exposes the operations the
command channel routes to.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from redis.asyncio import Redis

from prize_vending.core.exceptions import ConfigurationError, TransportError, VendingSystemError
from prize_vending.core.interfaces import SerialLink
from prize_vending.core.scheduling import AsyncioScheduler, Scheduler
from prize_vending.core.value_objects import ChannelStatus, Failure
from prize_vending.devices.sensor import EdgeDetector, SensorLink
from prize_vending.devices.vending import (
    LegacyVendingClient,
    LinkSupervisor,
    SerialTransport,
    VendingProtocolClient,
    open_with_fallback,
    rank_endpoints,
)
from prize_vending.domain import (
    DispenseChain,
    DispensingOrchestrator,
    EnhancedProtocolStrategy,
    LegacyProtocolStrategy,
    SimulatedStrategy,
    SlotAllocator,
)
from prize_vending.event_system import EventConsumer, EventPublisher, EventType
from prize_vending.infrastructure.backend_api import BackendApiClient
from prize_vending.infrastructure.redis_repository import (
    OfflineLogRepository,
    SlotInventoryRepository,
)
from prize_vending.infrastructure.settings import Settings, get_settings
from prize_vending.loggers import logger
from prize_vending.redis_error_handler import redis_error_handler
from prize_vending.send_to_ws import send_to_ws

from .observers import EventPublishingObserver, OfflineLogObserver, SensorEventBridge
from .offline_log_queue import OfflineLogQueue


_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "off"})


def parse_flag(value: Any) -> bool:
    """
    Read an on/off flag sent over the command channel.

    Raises:
        ConfigurationError: If ``value`` is not a recognizable boolean.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ConfigurationError(f"Not a boolean flag: {value!r}", details={"value": repr(value)})


class KioskFacade:
    """
    Facade for the prize vending service.

    Owns the serial links, the dispensing orchestrator, the offline log
    queue and the event pipeline to the kiosk front-end.
    """

    def __init__(
        self,
        redis: Redis,
        settings: Optional[Settings] = None,
        scheduler: Optional[Scheduler] = None,
        backend: Optional[BackendApiClient] = None,
        vending_link: Optional[SerialLink] = None,
        legacy_link: Optional[SerialLink] = None,
        sensor_link: Optional[SerialLink] = None,
    ) -> None:
        """
        Initialize the kiosk facade.

        Args:
            redis: Redis client instance.
            settings: Application settings, defaults to the singleton.
            scheduler: Clock for timers and delays.
            backend: Backend API client.
            vending_link: Serial link of the vending controller.
            legacy_link: Serial link of a legacy vending board.
            sensor_link: Serial link of the hold sensor board.
        """
        self._redis = redis
        self._settings = settings or get_settings()
        self._scheduler = scheduler or AsyncioScheduler()
        settings = self._settings

        # Event system
        self._event_queue: asyncio.Queue = asyncio.Queue()
        self._event_publisher = EventPublisher(self._event_queue)
        self._event_consumer = EventConsumer(self._event_queue)

        # Storage and backend
        self._slot_repo = SlotInventoryRepository(redis)
        self._log_repo = OfflineLogRepository(redis, history_limit=settings.backend.history_limit)
        self._backend = backend or BackendApiClient(
            settings.backend.base_url,
            timeout=settings.backend.timeout,
        )
        self.log_queue = OfflineLogQueue(
            self._log_repo,
            self._backend,
            self._scheduler,
            check_interval=settings.backend.connectivity_check_interval,
        )
        self.log_queue.add_connectivity_listener(self._on_connectivity_changed)

        # Vending hardware
        self._vending_link = vending_link or SerialTransport(name="spring_vending")
        self.vending = VendingProtocolClient(
            self._vending_link,
            self._scheduler,
            timeouts=settings.timeouts.to_protocol_timeouts(),
        )
        self._legacy_link: Optional[SerialLink] = None
        self.legacy: Optional[LegacyVendingClient] = None
        if legacy_link is not None or settings.serial.legacy_port:
            self._legacy_link = legacy_link or SerialTransport(name="legacy_vending")
            self.legacy = LegacyVendingClient(
                self._legacy_link,
                self._scheduler,
                timeout=settings.timeouts.ship,
            )

        # Hold sensor
        self.sensor_bridge = SensorEventBridge(self._event_publisher)
        self.detector = EdgeDetector(
            self._scheduler,
            handler=self.sensor_bridge,
            window=settings.sensor.debounce_window,
        )
        self._sensor_link: Optional[SerialLink] = None
        self.sensor: Optional[SensorLink] = None
        if sensor_link is not None or settings.serial.sensor_port:
            self._sensor_link = sensor_link or SerialTransport(name="hold_sensor")
            self.sensor = SensorLink(self._sensor_link, self.detector)

        # Dispensing
        self.allocator = SlotAllocator(
            self._slot_repo,
            settings.inventory.tier_slots,
            max_dispenses=settings.inventory.max_dispenses,
        )
        strategies = [EnhancedProtocolStrategy(self.vending)]
        if self.legacy is not None:
            strategies.append(LegacyProtocolStrategy(self.legacy))
        self.chain = DispenseChain(
            strategies,
            fallback=SimulatedStrategy(
                self._scheduler,
                delay=settings.inventory.simulated_dispense_delay,
            ),
        )

        # Reconnection
        self.vending_supervisor: Optional[LinkSupervisor] = None
        self._supervisors: list[LinkSupervisor] = []
        if settings.serial.auto_reconnect:
            self._build_supervisors()

        self.orchestrator = DispensingOrchestrator(
            settings.prizes.to_table(),
            self.allocator,
            self.chain,
            observers=[
                OfflineLogObserver(self.log_queue),
                EventPublishingObserver(self._event_publisher),
            ],
        )

        self._is_initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    def _build_supervisors(self) -> None:
        """Reopen each link after a read error; the controller is re-checked before use."""
        serial = self._settings.serial
        policy = self._settings.retry.to_policy()
        self.vending_supervisor = LinkSupervisor(
            self._vending_link,
            self._scheduler,
            policy,
            serial.vending_baudrate,
            preferred_path=serial.vending_port,
            on_reconnected=self.vending.initialize,
            name=self.vending.name,
        )
        self._supervisors.append(self.vending_supervisor)
        if self._legacy_link is not None and serial.legacy_port:
            self._supervisors.append(
                LinkSupervisor(
                    self._legacy_link,
                    self._scheduler,
                    policy,
                    serial.legacy_baudrate,
                    preferred_path=serial.legacy_port,
                    auto_select=False,
                    name="legacy_vending",
                )
            )
        if self._sensor_link is not None and serial.sensor_port:
            self._supervisors.append(
                LinkSupervisor(
                    self._sensor_link,
                    self._scheduler,
                    policy,
                    serial.sensor_baudrate,
                    preferred_path=serial.sensor_port,
                    auto_select=False,
                    name="hold_sensor",
                )
            )

    # =========================================================================
    # Device Initialization
    # =========================================================================

    async def init_devices(self) -> dict[str, Any]:
        """
        Open the serial links, load slot counters and start background tasks.

        A missing vending controller is not fatal: prizes are then
        dispensed in simulated mode.

        Returns:
            Dictionary with success status and per-device state.
        """
        logger.info("Initializing prize vending devices...")
        serial = self._settings.serial

        await self.allocator.load()

        vending_ready = False
        try:
            candidates = rank_endpoints(
                self._vending_link.list_endpoints(),
                preferred_path=serial.vending_port,
            )
            endpoint = await open_with_fallback(
                self._vending_link,
                candidates,
                serial.vending_baudrate,
                self._settings.retry.to_policy(),
                self._scheduler,
            )
            logger.info(f"Vending controller on {endpoint.path}")
            if self.vending_supervisor is not None:
                self.vending_supervisor.remember(endpoint.path)
            vending_ready = await self.vending.initialize()
        except TransportError as e:
            logger.error(f"Vending controller unavailable: {e.message}")

        legacy_ready = False
        if self.legacy is not None and serial.legacy_port:
            try:
                await self.legacy.open(serial.legacy_port, serial.legacy_baudrate)
                legacy_ready = True
            except TransportError as e:
                logger.error(f"Legacy vending board unavailable: {e.message}")

        sensor_ready = False
        if self._sensor_link is not None and serial.sensor_port:
            try:
                await self._sensor_link.open(serial.sensor_port, serial.sensor_baudrate)
                sensor_ready = True
            except TransportError as e:
                logger.error(f"Hold sensor unavailable: {e.message}")

        if not self._is_initialized:
            self._register_event_handlers()
            await self._event_consumer.start_consuming()
            self.log_queue.start_monitor()
            self._is_initialized = True

        await self.log_queue.check_connectivity()
        await self.log_queue.flush_when_online()

        devices = {
            "vending": vending_ready,
            "legacy_vending": legacy_ready,
            "sensor": sensor_ready,
        }
        if not self.chain.has_hardware:
            logger.warning("No vending hardware available, dispensing is simulated")

        return {
            "success": True,
            "message": "Prize vending devices initialized",
            "data": {
                "devices": devices,
                "simulated": not self.chain.has_hardware,
            },
        }

    def _register_event_handlers(self) -> None:
        """Forward every event to the kiosk front-end."""
        for event_type in EventType:
            self._event_consumer.register_handler(event_type, self._forward_to_ws)

    async def _forward_to_ws(self, event: dict[str, Any]) -> None:
        event_type = event["type"]
        data = {key: value for key, value in event.items() if key != "type"}
        await send_to_ws(
            event=event_type.value if isinstance(event_type, EventType) else str(event_type),
            data=data,
            ws_url=self._settings.services.websocket_url,
        )

    async def _on_connectivity_changed(self, online: bool) -> None:
        await self._event_publisher.publish(EventType.CONNECTIVITY_CHANGED, online=online)

    async def shutdown(self) -> None:
        """Shut down all devices and clean up resources."""
        try:
            self.detector.set_enabled(False)
            for supervisor in self._supervisors:
                await supervisor.stop()
            if self.sensor is not None:
                await self.sensor.close()
            if self.legacy is not None:
                await self.legacy.close()
            await self.vending.close()
            await self.log_queue.stop_monitor()
            await self._event_consumer.stop_consuming()
            await self._backend.close()
            self._is_initialized = False
            logger.info("Prize vending service shut down successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    # =========================================================================
    # Dispensing
    # =========================================================================

    async def dispense(self, round_token: str, duration_ms: int) -> dict[str, Any]:
        """
        Dispense the prize earned by a round.

        Args:
            round_token: Unique id of the game round.
            duration_ms: Measured hold duration in milliseconds.

        Returns:
            Dictionary with the round outcome under ``data``.
        """
        outcome = await self.orchestrator.dispense(str(round_token), int(duration_ms))
        return {
            "success": not isinstance(outcome, Failure),
            "message": f"Round {round_token}: {outcome.to_dict()['outcome']}",
            "data": outcome.to_dict(),
        }

    async def manual_dispense(self, slot: int) -> dict[str, Any]:
        """Dispense one prize from ``slot`` for maintenance testing."""
        try:
            outcome = await self.orchestrator.manual_dispense(int(slot))
        except VendingSystemError as e:
            logger.warning(f"Manual dispense rejected: {e.message}")
            return {"success": False, "message": e.message, "data": e.to_dict()}
        return {
            "success": not isinstance(outcome, Failure),
            "message": f"Manual dispense from slot {slot}: {outcome.to_dict()['outcome']}",
            "data": outcome.to_dict(),
        }

    # =========================================================================
    # Slot Maintenance
    # =========================================================================

    @redis_error_handler("Slot snapshot retrieved successfully")
    async def slot_snapshot(self) -> dict[str, Any]:
        records = await self.allocator.snapshot()
        tiers: dict[str, dict[str, int]] = {}
        for tier in self.allocator.tiers:
            tier_records = [record for record in records if record.tier == tier]
            tiers[tier.value] = {
                "slots": len(tier_records),
                "remaining": sum(record.remaining for record in tier_records),
            }
        return {
            "slots": [record.to_dict() for record in records],
            "tiers": tiers,
        }

    @redis_error_handler("All slot counters reset")
    async def reset_slots(self) -> list[dict[str, Any]]:
        return [record.to_dict() for record in await self.allocator.reset_all()]

    @redis_error_handler("Slot counter reset")
    async def reset_slot(self, slot: int) -> dict[str, Any]:
        return (await self.allocator.reset_slot(int(slot))).to_dict()

    @redis_error_handler("Slots needing refill retrieved successfully")
    async def slots_needing_refill(self, threshold: Optional[float] = None) -> list[dict[str, Any]]:
        if threshold is None:
            threshold = self._settings.inventory.refill_threshold
        records = await self.allocator.slots_needing_refill(float(threshold))
        return [record.to_dict() for record in records]

    # =========================================================================
    # Vending Controller
    # =========================================================================

    async def self_check(self) -> dict[str, Any]:
        """Run a controller self-check."""
        try:
            result = await self.vending.self_check()
        except VendingSystemError as e:
            logger.error(f"Self-check failed: {e.message}")
            return {"success": False, "message": e.message, "data": e.to_dict()}
        return {
            "success": result.success,
            "message": "Self-check passed" if result.success else f"Self-check reported {result.error_code.name}",
            "data": {"error_code": result.error_code.name},
        }

    async def channel_status(self, channel: int) -> dict[str, Any]:
        """
        Query one slot channel.

        Falls back to the last known status when the controller is not
        connected.
        """
        channel = int(channel)
        if self.vending.is_connected:
            try:
                status = await self.vending.query_slot_status(channel)
            except VendingSystemError as e:
                return {"success": False, "message": e.message, "data": e.to_dict()}
        else:
            status = self.vending.cached_status(channel) or ChannelStatus.unreachable(channel)
        return {
            "success": True,
            "message": f"Channel {channel} status retrieved",
            "data": status.to_dict(),
        }

    async def vending_status(self) -> dict[str, Any]:
        """Connection state of every device and the log queue."""
        last_check = self.vending.last_self_check
        return {
            "success": True,
            "message": "Vending status retrieved successfully",
            "data": {
                "vending_connected": self.vending.is_connected,
                "vending_initialized": self.vending.is_initialized,
                "legacy_connected": self.legacy.is_connected if self.legacy else False,
                "sensor_connected": self.sensor.is_connected if self.sensor else False,
                "sensor_enabled": self.detector.is_enabled,
                "reconnecting": [supervisor.name for supervisor in self._supervisors if supervisor.is_reconnecting],
                "simulated": not self.chain.has_hardware,
                "dispensing": self.orchestrator.is_busy,
                "backend_online": self.log_queue.is_online,
                "last_self_check": last_check.error_code.name if last_check else None,
                "channels": [status.to_dict() for status in self.vending.cached_statuses()],
            },
        }

    # =========================================================================
    # Offline Log Queue
    # =========================================================================

    @redis_error_handler("Log queue flushed")
    async def flush_logs(self) -> dict[str, Any]:
        await self.log_queue.check_connectivity()
        delivered = await self.log_queue.flush_when_online()
        return {
            "delivered": delivered,
            "online": self.log_queue.is_online,
        }

    @redis_error_handler("Pending log entries retrieved successfully")
    async def pending_logs(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in await self.log_queue.pending()]

    @redis_error_handler("Log history retrieved successfully")
    async def log_history(self, limit: int = 50) -> dict[str, Any]:
        """Recent log entries, newest first, delivered or not."""
        return {
            "pending": await self._log_repo.count(),
            "entries": await self._log_repo.history(int(limit)),
        }

    # =========================================================================
    # Hold Sensor
    # =========================================================================

    async def set_sensor_enabled(self, enabled: Any) -> dict[str, Any]:
        """Arm or disarm the hold sensor between rounds."""
        try:
            enabled = parse_flag(enabled)
        except ConfigurationError as e:
            logger.warning(f"Sensor toggle rejected: {e.message}")
            return {"success": False, "message": e.message, "data": e.to_dict()}
        self.detector.set_enabled(enabled)
        return {
            "success": True,
            "message": f"Sensor {'enabled' if enabled else 'disabled'}",
            "data": {"enabled": self.detector.is_enabled, "state": self.detector.state},
        }

