"""
Core module - Foundation layer with no external dependencies.

Contains:
- Exceptions
- Interfaces (Protocols)
- Value Objects
- Clock and retry primitives
"""

from .exceptions import (
    VendingSystemError,
    ConfigurationError,
    DeviceError,
    TransportError,
    ProtocolError,
    HardwareFault,
    TransactionTimeoutError,
    DispensingError,
    DispenseInProgressError,
    RepositoryError,
    RedisConnectionError,
    BackendUnavailableError,
    BackendRejectedError,
)
from .interfaces import (
    Endpoint,
    SerialLink,
    SensorEventHandler,
    DispenseStrategy,
    SlotStore,
    LogStore,
    RemoteCollaborator,
    OutcomeObserver,
)
from .scheduling import AsyncioScheduler, RetryPolicy, Scheduler
from .value_objects import (
    Tier,
    LogSource,
    VendingErrorCode,
    SlotRecord,
    ChannelStatus,
    DispensingLogEntry,
    OutOfStockLogEntry,
    Success,
    Failure,
    OutOfStock,
    NoPrize,
)


__all__ = [
    # Exceptions
    "VendingSystemError",
    "ConfigurationError",
    "DeviceError",
    "TransportError",
    "ProtocolError",
    "HardwareFault",
    "TransactionTimeoutError",
    "DispensingError",
    "DispenseInProgressError",
    "RepositoryError",
    "RedisConnectionError",
    "BackendUnavailableError",
    "BackendRejectedError",
    # Interfaces
    "Endpoint",
    "SerialLink",
    "SensorEventHandler",
    "DispenseStrategy",
    "SlotStore",
    "LogStore",
    "RemoteCollaborator",
    "OutcomeObserver",
    # Scheduling
    "AsyncioScheduler",
    "RetryPolicy",
    "Scheduler",
    # Value Objects
    "Tier",
    "LogSource",
    "VendingErrorCode",
    "SlotRecord",
    "ChannelStatus",
    "DispensingLogEntry",
    "OutOfStockLogEntry",
    "Success",
    "Failure",
    "OutOfStock",
    "NoPrize",
]
