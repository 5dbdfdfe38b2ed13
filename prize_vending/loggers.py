"""
Logging configuration for the prize vending service.

This module provides a centralized logging setup with support for:
- Console output with colored formatting
- File rotation with size limits
- Remote logging to Loki (when a push URL is configured)
"""

import logging
import os
import time
from logging.handlers import RotatingFileHandler
from typing import Final, Optional

import colorlog
import httpx

from prize_vending.configs import LOG_DIR, LOKI_URL


# =============================================================================
# Constants
# =============================================================================

DEFAULT_LOG_FORMAT: Final[str] = (
    "%(name)s | %(asctime)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s"
)
DEFAULT_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"
MAX_LOG_FILE_SIZE: Final[int] = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT: Final[int] = 3
LOKI_TIMEOUT: Final[float] = 2.0

LOG_COLORS: Final[dict[str, str]] = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}


# =============================================================================
# Loki Integration
# =============================================================================

def send_to_loki(url: str, level: str, message: str, app: str) -> None:
    """
    Push a single log line to Loki.

    Args:
        url: Loki push endpoint.
        level: Log level name.
        message: Formatted log message.
        app: Application name for Loki labels.
    """
    try:
        log_entry = {
            "streams": [
                {
                    "stream": {"level": level, "app": app},
                    "values": [[str(int(time.time() * 1e9)), message]],
                }
            ]
        }
        with httpx.Client() as client:
            client.post(url, json=log_entry, timeout=LOKI_TIMEOUT)
    except httpx.HTTPError as e:
        # Logging from here would recurse into this handler
        print(f"[Loki send error]: {e}")


class LokiHandler(logging.Handler):
    """Logging handler that ships records to a Loki push endpoint."""

    def __init__(self, url: str, app: str) -> None:
        super().__init__()
        self.url = url
        self.app = app

    def emit(self, record: logging.LogRecord) -> None:
        try:
            send_to_loki(self.url, record.levelname.upper(), self.format(record), self.app)
        except Exception:
            self.handleError(record)


# =============================================================================
# Logger Factory
# =============================================================================

def get_logger(
    name: str,
    app: str = "prize_vending",
    log_file: Optional[str] = None,
    level: int = logging.DEBUG,
    loki_url: str = LOKI_URL,
) -> logging.Logger:
    """
    Create and configure a logger with console, file, and Loki handlers.

    Args:
        name: Logger name.
        app: Application name for Loki labels.
        log_file: Path to the log file (default: ``<LOG_DIR>/<app>.log``).
        level: Logging level (default: DEBUG).
        loki_url: Loki push URL; the Loki handler is skipped when empty.

    Returns:
        Configured logger instance.
    """
    logger_instance = logging.getLogger(name)
    logger_instance.setLevel(level)

    # Avoid duplicate handlers on repeated calls
    if logger_instance.hasHandlers():
        return logger_instance

    if log_file is None:
        os.makedirs(LOG_DIR, exist_ok=True)
        log_file = os.path.join(LOG_DIR, f"{app}.log")

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=MAX_LOG_FILE_SIZE,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter(fmt=DEFAULT_LOG_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(
        colorlog.ColoredFormatter(
            f"%(name)s | %(log_color)s%(asctime)s | %(levelname)s | "
            f"%(funcName)s:%(lineno)d | %(message)s",
            datefmt=DEFAULT_DATE_FORMAT,
            log_colors=LOG_COLORS,
        )
    )

    logger_instance.addHandler(file_handler)
    logger_instance.addHandler(console_handler)

    if loki_url:
        loki_handler = LokiHandler(loki_url, app)
        loki_handler.setLevel(logging.INFO)
        loki_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
                datefmt=DEFAULT_DATE_FORMAT,
            )
        )
        logger_instance.addHandler(loki_handler)

    return logger_instance


# =============================================================================
# Default Logger Instance
# =============================================================================

# Package root logger; driver modules log through child loggers of this one
logger = get_logger(name="prize_vending")
