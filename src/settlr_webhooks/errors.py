"""Exception hierarchy for webhook dispatch.

Exception Hierarchy:
    SettlrWebhookError (base)
    ├── InvalidEventTypeError - Unknown event type passed to dispatch
    ├── InvalidPayloadError - Event data is not a JSON object
    ├── InvalidQueryError - Bad pagination arguments on the read side
    └── StoreError - Persistence backend failure

Delivery failures (timeouts, connection errors, non-2xx responses) are not
exceptions: they are recorded on the WebhookDelivery and returned as data.
"""

from typing import Any


class SettlrWebhookError(Exception):
    """Base exception for all webhook dispatch errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class InvalidEventTypeError(SettlrWebhookError, ValueError):
    """Raised when a caller dispatches an event type outside the closed set."""

    def __init__(self, event_type: object) -> None:
        super().__init__(
            f"Unknown webhook event type: {event_type!r}",
            details={"event_type": str(event_type)},
        )
        self.event_type = event_type


class InvalidPayloadError(SettlrWebhookError, ValueError):
    """Raised when event data cannot be delivered as a JSON object."""


class InvalidQueryError(SettlrWebhookError, ValueError):
    """Raised for negative or zero pagination arguments."""


class StoreError(SettlrWebhookError):
    """Persistence backend failure.

    Attributes:
        operation: Store operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.operation = operation

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["operation"] = self.operation
        return base
