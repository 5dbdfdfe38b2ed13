"""
Process-level configuration for the prize vending service.

Holds the values needed before settings are loaded (logging destinations,
service URLs). Each value can be overridden through the environment.
"""

import os
from typing import Final


# =============================================================================
# System Configuration
# =============================================================================

SYSTEM_USER: Final[str] = os.getenv("PRIZE_VENDING_USER", "kiosk")
LOG_DIR: Final[str] = os.getenv("PRIZE_VENDING_LOG_DIR", "logs")


# =============================================================================
# Redis Configuration
# =============================================================================

REDIS_HOST: Final[str] = os.getenv("PRIZE_VENDING_REDIS_HOST", "localhost")
REDIS_PORT: Final[int] = int(os.getenv("PRIZE_VENDING_REDIS_PORT", "6379"))


# =============================================================================
# External Services Configuration
# =============================================================================

# Empty string disables remote log shipping
LOKI_URL: Final[str] = os.getenv("PRIZE_VENDING_LOKI_URL", "")
WS_URL: Final[str] = os.getenv("PRIZE_VENDING_WS_URL", "ws://localhost:8005/ws")
BACKEND_URL: Final[str] = os.getenv("PRIZE_VENDING_BACKEND_URL", "http://localhost:8080/api")
