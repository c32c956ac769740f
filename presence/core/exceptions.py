"""
Infrastructure exceptions and the structured base shared with domain errors.

Every service exception carries `message`, `details`, `severity`,
`is_retryable` and `error_code`, and renders itself with `to_dict()` for
log `extra`. Infrastructure failures (configuration, schema creation,
storage or timeouts behind a query, the Redis stream) derive from
`PresenceInfrastructureException`; domain rejections live in
`presence.modules.shared.exceptions`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"  # rejected input, ownership conflicts
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"  # service cannot start


class StructuredError(Exception):
    """
    `severity` and `is_retryable` default per subclass through
    DEFAULT_SEVERITY and DEFAULT_RETRYABLE; `error_code` defaults to the
    class name.
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"


class PresenceInfrastructureException(StructuredError):
    """Failure outside the domain rules, raised by the infrastructure layers."""


class ConfigurationError(PresenceInfrastructureException):
    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class _WrappedFailure(PresenceInfrastructureException):
    """An infrastructure call failed; keeps the driver exception as `original_error`."""

    DEFAULT_RETRYABLE = True
    ERROR_CODE = "INFRASTRUCTURE_ERROR"
    SUMMARY = "Infrastructure failure"

    def __init__(self, operation: str, original_error: Exception, **context: Any) -> None:
        self.operation = operation
        self.original_error = original_error
        reason = str(original_error) or type(original_error).__name__
        super().__init__(
            f"{self.SUMMARY} during {operation}: {reason}",
            details={
                "operation": operation,
                **context,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code=self.ERROR_CODE,
        )


class DatabaseError(_WrappedFailure):
    """A statement or schema operation failed in the driver."""

    ERROR_CODE = "DATABASE_ERROR"
    SUMMARY = "Database error"


class UnavailableError(_WrappedFailure):
    """The store did not answer a query in time, or at all."""

    ERROR_CODE = "UNAVAILABLE"
    SUMMARY = "Store unavailable"


class EventStreamError(_WrappedFailure):
    """Reading from or acknowledging on a Redis stream failed."""

    ERROR_CODE = "EVENT_STREAM_ERROR"
    SUMMARY = "Event stream error"

    def __init__(self, operation: str, stream: str, original_error: Exception) -> None:
        self.stream = stream
        super().__init__(operation, original_error, stream=stream)


# ============================================================================
# Helpers
# ============================================================================


def is_transient_error(exc: Exception) -> bool:
    return isinstance(exc, StructuredError) and exc.is_retryable


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Unstructured exceptions count as ERROR."""
    if isinstance(exc, StructuredError):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
