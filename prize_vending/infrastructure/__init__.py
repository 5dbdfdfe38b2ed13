"""
Infrastructure module - Redis storage, backend HTTP client and settings.
"""

from .backend_api import BackendApiClient
from .redis_repository import (
    OfflineLogRepository,
    RedisStateRepository,
    SlotInventoryRepository,
)
from .settings import Settings, get_settings


__all__ = [
    "BackendApiClient",
    "OfflineLogRepository",
    "RedisStateRepository",
    "SlotInventoryRepository",
    "Settings",
    "get_settings",
]
