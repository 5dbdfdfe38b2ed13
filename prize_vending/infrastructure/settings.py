"""
Application settings.

Frozen dataclass sections aggregated into one Settings object.
"""

from dataclasses import dataclass, field
from typing import Optional

from prize_vending.configs import BACKEND_URL, LOKI_URL, REDIS_HOST, REDIS_PORT, SYSTEM_USER, WS_URL
from prize_vending.core.scheduling import RetryPolicy
from prize_vending.core.value_objects import Tier
from prize_vending.devices.vending.protocol import ProtocolTimeouts
from prize_vending.domain.tiers import DEFAULT_THRESHOLDS, ThresholdTable


# =============================================================================
# Configuration Classes
# =============================================================================


@dataclass(frozen=True)
class RedisSettings:
    """Redis connection settings."""

    host: str = REDIS_HOST
    port: int = REDIS_PORT
    decode_responses: bool = True


@dataclass(frozen=True)
class SerialPortSettings:
    """
    Serial port paths and speeds.

    A port left as None is auto-detected from the USB vendor list.
    """

    vending_port: Optional[str] = None
    vending_baudrate: int = 9600
    legacy_port: Optional[str] = None
    legacy_baudrate: int = 9600
    sensor_port: Optional[str] = None
    sensor_baudrate: int = 9600
    auto_reconnect: bool = True


@dataclass(frozen=True)
class ServiceSettings:
    """External service URLs."""

    loki_url: str = LOKI_URL
    websocket_url: str = WS_URL


@dataclass(frozen=True)
class TimeoutSettings:
    """Vending request budgets in seconds."""

    slot_status: float = 2.0
    select: float = 3.0
    status: float = 3.0
    self_check: float = 5.0
    reset: float = 5.0
    ship: float = 15.0

    def to_protocol_timeouts(self) -> ProtocolTimeouts:
        return ProtocolTimeouts(
            slot_status=self.slot_status,
            select=self.select,
            status=self.status,
            self_check=self.self_check,
            reset=self.reset,
            ship=self.ship,
        )


@dataclass(frozen=True)
class RetrySettings:
    """Endpoint fallback schedule."""

    max_attempts: int = 3
    delays: tuple[float, ...] = (0.5, 1.0, 2.0)
    final_delay: float = 3.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            delays=self.delays,
            final_delay=self.final_delay,
        )


def _default_tier_slots() -> dict[Tier, tuple[int, ...]]:
    silver = (
        list(range(1, 9))
        + list(range(11, 19))
        + [21, 22, 23, 26, 27, 28]
        + list(range(31, 39))
        + list(range(45, 49))
        + list(range(51, 59))
    )
    return {
        Tier.GOLD: (24, 25),
        Tier.SILVER: tuple(silver),
    }


@dataclass(frozen=True)
class InventorySettings:
    """Slot layout and capacity."""

    tier_slots: dict[Tier, tuple[int, ...]] = field(default_factory=_default_tier_slots)
    max_dispenses: int = 5
    refill_threshold: float = 0.8
    simulated_dispense_delay: float = 1.0


@dataclass(frozen=True)
class PrizeSettings:
    """Hold duration thresholds in milliseconds, inclusive."""

    thresholds: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))

    def to_table(self) -> ThresholdTable:
        return ThresholdTable.from_mapping(self.thresholds)


@dataclass(frozen=True)
class SensorSettings:
    """Hold sensor settings."""

    debounce_window: float = 0.3


@dataclass(frozen=True)
class BackendSettings:
    """Remote backend and offline queue settings."""

    base_url: str = BACKEND_URL
    timeout: float = 5.0
    connectivity_check_interval: float = 30.0
    history_limit: int = 1000


@dataclass(frozen=True)
class CommandSettings:
    """Redis pub/sub command channel."""

    command_channel: str = "prize_vending_commands"

    @property
    def response_channel(self) -> str:
        """Get response channel name."""
        return f"{self.command_channel}_response"


# =============================================================================
# Main Settings
# =============================================================================


@dataclass
class Settings:
    """
    Main application settings.

    Aggregates all configuration sections.
    """

    system_user: str = SYSTEM_USER
    redis: RedisSettings = field(default_factory=RedisSettings)
    serial: SerialPortSettings = field(default_factory=SerialPortSettings)
    services: ServiceSettings = field(default_factory=ServiceSettings)
    timeouts: TimeoutSettings = field(default_factory=TimeoutSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    inventory: InventorySettings = field(default_factory=InventorySettings)
    prizes: PrizeSettings = field(default_factory=PrizeSettings)
    sensor: SensorSettings = field(default_factory=SensorSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)
    commands: CommandSettings = field(default_factory=CommandSettings)


# =============================================================================
# Settings Singleton
# =============================================================================


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
