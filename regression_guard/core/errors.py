"""Custom exceptions for the regression guard."""

from typing import Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class GuardError(Exception):
    """Base exception for all regression guard errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        error_code: str = None,
        details: Dict[str, Any] = None,
        recoverable: bool = True
    ):
        self.message = message
        self.severity = severity
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "error_code": self.error_code,
            "details": self.details,
            "recoverable": self.recoverable
        }


class InsufficientDataError(GuardError):
    """Not enough samples to build a baseline or to confirm a regression."""

    def __init__(self, metric_name: str, available: int, required: int, purpose: str = "baseline", **kwargs):
        self.metric_name = metric_name
        self.available = available
        self.required = required
        super().__init__(
            message=f"Insufficient data for {purpose} '{metric_name}': {available} < {required}",
            severity=ErrorSeverity.LOW,
            details={"available": available, "required": required},
            **kwargs
        )


class PersistenceError(GuardError):
    """Raised when a key-value store cannot load or save a record."""

    def __init__(self, key: str, operation: str, message: str, **kwargs):
        self.key = key
        self.operation = operation
        super().__init__(
            message=f"Store {operation} failed for '{key}': {message}",
            severity=ErrorSeverity.MEDIUM,
            details={"key": key, "operation": operation},
            **kwargs
        )


class ExternalActionError(GuardError):
    """Raised when a rollback executor or notifier fails."""

    def __init__(self, action: str, message: str, **kwargs):
        self.action = action
        super().__init__(
            message=f"External action '{action}' failed: {message}",
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


class ConfigurationError(GuardError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, config_key: str = None, **kwargs):
        self.config_key = config_key
        super().__init__(
            message=f"Configuration error: {message}",
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            **kwargs
        )
