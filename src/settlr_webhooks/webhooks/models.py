"""Subscription and delivery records.

A Subscription is a merchant's registration of "send me these event types at
this URL". A WebhookDelivery is the audit record of one attempt sequence for
one (event, subscription) pair.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from pydantic import (
    BaseModel,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from settlr_webhooks.webhooks.events import WILDCARD, WebhookEventType

# Attempts allowed per delivery (initial attempt included)
MAX_ATTEMPTS = 5

# Characters of the endpoint's response body kept for diagnosis
RESPONSE_BODY_LIMIT = 500


_http_url = TypeAdapter(HttpUrl)


class DeliveryStatus(str, Enum):
    """Status of a webhook delivery."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Subscription(BaseModel):
    """A merchant endpoint subscribed to webhook events."""

    id: str = Field(
        default_factory=lambda: f"wh_{uuid.uuid4().hex[:12]}",
        description="Unique subscription identifier",
    )
    business_id: str = Field(
        ..., description="Owning business identifier", min_length=1
    )
    url: str = Field(
        ..., description="Webhook endpoint URL, kept exactly as registered"
    )
    secret: str = Field(
        default_factory=lambda: f"whsec_{uuid.uuid4().hex}",
        description="Shared secret for HMAC signatures",
        min_length=1,
    )
    events: list[str] = Field(
        default_factory=lambda: [WILDCARD],
        description="Subscribed event types ('*' = all events)",
    )
    active: bool = Field(
        default=True,
        description="Whether the subscription receives deliveries",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the subscription was registered",
    )

    # Delivery summary
    last_delivery_at: datetime | None = Field(
        default=None,
        description="When the last delivery sequence finished",
    )
    last_delivery_status: DeliveryStatus | None = Field(
        default=None,
        description="Outcome of the last delivery sequence",
    )

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        # Validated as http(s) but not normalized; deliveries POST to this exact string
        try:
            _http_url.validate_python(value)
        except ValidationError as e:
            raise ValueError(f"Invalid webhook URL: {value!r}") from e
        return value

    @field_validator("events", mode="before")
    @classmethod
    def _normalize_events(cls, value: object) -> object:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple, set, frozenset)):
            return [
                item.value if isinstance(item, WebhookEventType) else str(item).strip()
                for item in value
            ]
        return value

    def matches(self, event_type: WebhookEventType | str) -> bool:
        """Check if this subscription should receive an event type.

        Args:
            event_type: Event type to check.

        Returns:
            True if active and subscribed to the type or to '*'.
        """
        if not self.active:
            return False
        value = event_type.value if isinstance(event_type, WebhookEventType) else event_type
        return value in self.events or WILDCARD in self.events


class WebhookDelivery(BaseModel):
    """Record of one delivery attempt sequence."""

    id: str = Field(
        default_factory=lambda: f"del_{uuid.uuid4().hex[:24]}",
        description="Unique delivery identifier",
    )
    event_id: str = Field(
        ..., description="Event being delivered"
    )
    subscription_id: str = Field(
        ..., description="Destination subscription"
    )
    url: str = Field(
        ..., description="Target URL at creation time"
    )
    status: DeliveryStatus = Field(
        default=DeliveryStatus.PENDING,
        description="Current delivery status",
    )
    http_status: int | None = Field(
        default=None,
        description="Last observed HTTP status code",
    )

    # Attempt tracking
    attempts: int = Field(
        default=0,
        description="Number of attempts made",
        ge=0,
    )
    max_attempts: int = Field(
        default=MAX_ATTEMPTS,
        description="Maximum attempts before failure",
        ge=1,
    )
    last_attempt_at: datetime | None = Field(
        default=None,
        description="Last attempt timestamp",
    )
    next_retry_at: datetime | None = Field(
        default=None,
        description="When the next attempt is due (informational)",
    )

    # Response tracking
    response_body: str | None = Field(
        default=None,
        description="Response body (truncated)",
    )
    error_message: str | None = Field(
        default=None,
        description="Error message if the last attempt failed",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the delivery sequence started",
    )

    @model_validator(mode="after")
    def _check_attempt_budget(self) -> WebhookDelivery:
        if self.attempts > self.max_attempts:
            raise ValueError(
                f"attempts ({self.attempts}) exceeds max_attempts ({self.max_attempts})"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        """Whether the delivery reached success or failed."""
        return self.status != DeliveryStatus.PENDING

    @property
    def can_resume(self) -> bool:
        """Whether a deferred retry is recorded and budget remains."""
        return (
            self.status == DeliveryStatus.FAILED
            and self.next_retry_at is not None
            and self.attempts < self.max_attempts
        )

    def begin_attempt(self) -> None:
        """Count a new attempt and stamp its start time."""
        if self.attempts >= self.max_attempts:
            raise ValueError(f"Delivery {self.id} has no attempts left")
        self.attempts += 1
        self.last_attempt_at = datetime.now(UTC)
        self.status = DeliveryStatus.PENDING

    def mark_success(self, http_status: int, response_body: str | None = None) -> None:
        """Mark delivery as successful.

        Args:
            http_status: HTTP status code.
            response_body: Optional response body.
        """
        self.status = DeliveryStatus.SUCCESS
        self.http_status = http_status
        self.response_body = truncate_body(response_body)
        self.error_message = None
        self.next_retry_at = None

    def record_failure(
        self,
        error_message: str,
        *,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        """Record the outcome of a failed attempt without finalizing.

        Args:
            error_message: Error description.
            http_status: HTTP status code, None for transport errors.
            response_body: Optional response body.
        """
        self.error_message = error_message
        self.http_status = http_status
        self.response_body = truncate_body(response_body)

    def mark_failed(self, next_retry_at: datetime | None = None) -> None:
        """Finalize the delivery as failed.

        Args:
            next_retry_at: When a deferred retry would be due, if any.
        """
        self.status = DeliveryStatus.FAILED
        self.next_retry_at = next_retry_at


def truncate_body(body: str | None) -> str | None:
    """Truncate a response body for storage."""
    if not body:
        return None
    return body[:RESPONSE_BODY_LIMIT]
