"""
Custom exceptions for the prize vending service.

Provides a hierarchy of typed exceptions for better error handling
and more informative error messages.
"""

from typing import Any, Optional


class VendingSystemError(Exception):
    """Base exception for all prize vending errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Optional error code for programmatic handling.
            details: Optional additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(VendingSystemError):
    """Invalid configuration or argument: slot out of range, unknown tier."""

    pass


# =============================================================================
# Device Errors
# =============================================================================


class DeviceError(VendingSystemError):
    """Base exception for hardware-related errors."""

    def __init__(
        self,
        message: str,
        device_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.device_name = device_name
        if device_name:
            self.details["device"] = device_name


class TransportError(DeviceError):
    """Serial port could not be opened, written or read."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        access_denied: bool = False,
        command_sent: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.path = path
        self.access_denied = access_denied
        # True when the link failed after a command reached the hardware
        self.command_sent = command_sent
        if path:
            self.details["path"] = path
        self.details["access_denied"] = access_denied


class ProtocolError(DeviceError):
    """Inbound frame failed checksum or could not be parsed."""

    pass


class HardwareFault(DeviceError):
    """
    Vending hardware reported a fault that needs physical intervention.

    Faults are never retried automatically.
    """

    def __init__(
        self,
        message: str,
        error_code: int = 0,
        severity: str = "medium",
        suggested_action: str = "",
        channel: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.error_code = error_code
        self.severity = severity
        self.suggested_action = suggested_action
        self.channel = channel
        self.details.update(
            {
                "error_code": error_code,
                "severity": severity,
                "suggested_action": suggested_action,
            }
        )
        if channel is not None:
            self.details["channel"] = channel


class TransactionTimeoutError(DeviceError):
    """No matching response arrived within the request budget."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        channel: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.kind = kind
        self.channel = channel
        if kind:
            self.details["kind"] = kind
        if channel is not None:
            self.details["channel"] = channel


# =============================================================================
# Dispensing Errors
# =============================================================================


class DispensingError(VendingSystemError):
    """Base exception for dispensing flow errors."""

    pass


class DispenseInProgressError(DispensingError):
    """A dispense is already in flight on the vending link."""

    pass


# =============================================================================
# Repository Errors
# =============================================================================


class RepositoryError(VendingSystemError):
    """Base exception for repository errors."""

    pass


class RedisConnectionError(RepositoryError):
    """Error connecting to Redis."""

    pass


# =============================================================================
# Remote Service Errors
# =============================================================================


class BackendUnavailableError(VendingSystemError):
    """Remote backend could not be reached or failed on its side; worth retrying."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.details["status_code"] = status_code


class BackendRejectedError(VendingSystemError):
    """Backend answered and refused the request; resending the same payload will not help."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.details["status_code"] = status_code
