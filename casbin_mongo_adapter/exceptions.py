"""
Custom exceptions for the Casbin MongoDB adapter.

This module defines the exception hierarchy for the adapter. Driver errors
are translated into these types so callers can handle storage failures
without importing PyMongo themselves.
"""

from __future__ import annotations

from typing import Any


class AdapterError(Exception):
    """
    Base class for errors raised by the adapter.

    ``details`` carries structured context, such as the failing operation or
    the offending config key, for callers that log errors as records.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value!r}" for key, value in self.details.items())
        return f"{self.message} ({context})"

    def to_dict(self) -> dict[str, Any]:
        """Error type, message and details as a plain dict."""
        return {"error_type": type(self).__name__, "message": self.message, "details": self.details}


class ConfigurationError(AdapterError):
    """
    Raised when the adapter is misconfigured.

    Covers a missing connection string, a connection string the driver
    refuses to parse, and option values that cannot be interpreted.

    Attributes:
        config_key: The configuration key that has an issue.
        expected: What was expected for this configuration.
        received: What was actually provided.

    Example:
        >>> raise ConfigurationError(
        ...     config_key="uri",
        ...     expected="a MongoDB connection string",
        ...     received=None,
        ... )
    """

    def __init__(
        self,
        config_key: str,
        expected: str | None = None,
        received: Any = None,
        reason: str | None = None,
    ) -> None:
        self.config_key = config_key
        self.expected = expected
        self.received = received

        message = f"Configuration error for '{config_key}'"
        if reason:
            message += f": {reason}"
        elif expected:
            message += f": expected {expected}"

        details: dict[str, Any] = {"config_key": config_key}
        if expected:
            details["expected"] = expected
        if received is not None:
            details["received"] = received
        super().__init__(message, details)


class AdapterConnectionError(AdapterError):
    """
    Raised when the store cannot be reached or the adapter is not open.

    The message is generic for close failures and for data access before
    open() or after close(). The driver error, when there is one, is chained
    as __cause__.
    """

    def __init__(self, message: str = "MongoDB is not connected") -> None:
        super().__init__(message)


class OperationError(AdapterError):
    """
    Raised when a query or write against the collection fails.

    Attributes:
        operation: Name of the adapter operation that failed.

    Example:
        >>> raise OperationError(
        ...     "E11000 duplicate key error",
        ...     operation="add_policy",
        ... )
    """

    def __init__(
        self,
        message: str,
        operation: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.operation = operation
        merged = {"operation": operation}
        merged.update(details or {})
        super().__init__(message, merged)


__all__ = [
    "AdapterError",
    "ConfigurationError",
    "AdapterConnectionError",
    "OperationError",
]
