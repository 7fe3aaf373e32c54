"""
Custom exceptions for the order execution engine.
"""

from typing import Any, Dict, List, Optional


class OrderEngineError(Exception):
    """Base exception for all order engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context
        }


class ConfigurationError(OrderEngineError):
    """Raised when there's a configuration problem."""
    pass


class ValidationError(OrderEngineError):
    """Raised when a submission is malformed. Never enters the pipeline."""

    def __init__(
        self,
        message: str,
        details: Optional[List[Dict[str, str]]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary with field details."""
        data = super().to_dict()
        data["details"] = self.details
        return data


class ProcessingError(OrderEngineError):
    """Base exception for failures while processing an order."""
    pass


class TransientProcessingError(ProcessingError):
    """Presumed recoverable failure (timeouts, venue hiccups). Retried."""
    pass


class PermanentProcessingError(ProcessingError):
    """Unrecoverable failure. Never retried."""
    pass


class InvalidTransitionError(ProcessingError):
    """Raised when a status transition would leave the lifecycle graph."""
    pass


class NotificationDeliveryError(OrderEngineError):
    """Raised when a status event cannot be delivered to a subscriber."""
    pass


class PersistenceError(OrderEngineError):
    """Base exception for store failures."""
    pass


class EphemeralPersistenceError(PersistenceError):
    """Raised when Redis operations fail."""
    pass


class DurablePersistenceError(PersistenceError):
    """Raised when DuckDB operations fail."""
    pass
