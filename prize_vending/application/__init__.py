"""
Application module - Services wiring the layers together.

Contains:
- Offline log queue
- Outcome observers and sensor event bridge
- Kiosk facade
- Command routing
"""

from .command_handler import CommandHandler, CommandResponse, prize_vending_commands
from .kiosk_facade import KioskFacade
from .observers import EventPublishingObserver, OfflineLogObserver, SensorEventBridge
from .offline_log_queue import OfflineLogQueue


__all__ = [
    "CommandHandler",
    "CommandResponse",
    "prize_vending_commands",
    "KioskFacade",
    "EventPublishingObserver",
    "OfflineLogObserver",
    "SensorEventBridge",
    "OfflineLogQueue",
]
