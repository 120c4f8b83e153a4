"""Webhook event types and the event record.

Events are immutable facts emitted by the payout and treasury flows. The
wire format delivered to merchants is::

    {"createdAt": ..., "data": {...}, "id": "evt_...",
     "merchantId": ..., "type": "payout.created"}

serialized compactly with sorted keys so the signed bytes are reproducible.
"""

import copy
import json
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from settlr_webhooks.errors import InvalidEventTypeError, InvalidPayloadError

# Subscription token meaning "every event type"
WILDCARD = "*"


class WebhookEventType(str, Enum):
    """Supported webhook event types.

    Events are organized by category:
    - payout.*: Payout lifecycle events
    - deposit.*: Treasury deposit events
    - batch.*: Batch payout events
    """

    # Payout events
    PAYOUT_CREATED = "payout.created"
    PAYOUT_CLAIMED = "payout.claimed"
    PAYOUT_EXPIRED = "payout.expired"
    PAYOUT_FAILED = "payout.failed"

    # Treasury events
    DEPOSIT_CONFIRMED = "deposit.confirmed"

    # Batch events
    BATCH_CREATED = "batch.created"


def parse_event_type(value: WebhookEventType | str) -> WebhookEventType:
    """Coerce a caller-supplied value into a WebhookEventType.

    Args:
        value: Enum member or its string value.

    Returns:
        The matching event type.

    Raises:
        InvalidEventTypeError: If the value is not a known event type.
    """
    if isinstance(value, WebhookEventType):
        return value
    try:
        return WebhookEventType(value)
    except ValueError as e:
        raise InvalidEventTypeError(value) from e


def generate_event_id() -> str:
    """Generate a unique event identifier."""
    return f"evt_{uuid.uuid4().hex}"


class WebhookEvent(BaseModel):
    """An immutable fact about something that happened to a business."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=generate_event_id,
        description="Unique event identifier",
    )
    type: WebhookEventType = Field(
        ..., description="Event type"
    )
    business_id: str = Field(
        ..., description="Owning business (merchant) identifier", min_length=1
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the event occurred (UTC)",
    )

    @field_validator("created_at")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @property
    def created_at_iso(self) -> str:
        """Creation time as the ISO-8601 string used on the wire."""
        return self.created_at.isoformat()

    def to_json_dict(self) -> dict[str, Any]:
        """Convert to the JSON-serializable wire dictionary.

        Returns:
            Dictionary keyed by the wire field names.
        """
        return {
            "id": self.id,
            "type": self.type.value,
            "merchantId": self.business_id,
            "data": self.data,
            "createdAt": self.created_at_iso,
        }

    def to_canonical_json(self) -> str:
        """Serialize to the exact string that is signed and sent.

        Returns:
            Compact JSON with sorted keys.
        """
        return json.dumps(
            self.to_json_dict(),
            separators=(",", ":"),
            sort_keys=True,
            allow_nan=False,
        )


def create_webhook_event(
    business_id: str,
    event_type: WebhookEventType | str,
    data: dict[str, Any] | None = None,
    *,
    event_id: str | None = None,
    timestamp: datetime | None = None,
) -> WebhookEvent:
    """Create a validated webhook event.

    Args:
        business_id: Owning business identifier.
        event_type: Type of event (enum member or string value).
        data: Event-specific data; must be JSON-serializable.
        event_id: Optional custom event ID.
        timestamp: Optional custom creation time.

    Returns:
        WebhookEvent ready to persist and deliver.

    Raises:
        InvalidEventTypeError: If event_type is unknown.
        InvalidPayloadError: If data is not a JSON object.
    """
    resolved_type = parse_event_type(event_type)

    payload = {} if data is None else data
    if not isinstance(payload, dict):
        raise InvalidPayloadError(
            "Event data must be a mapping",
            details={"data_type": type(payload).__name__},
        )
    try:
        json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidPayloadError(
            f"Event data is not JSON-serializable: {e}",
        ) from e

    fields: dict[str, Any] = {
        "type": resolved_type,
        "business_id": business_id,
        "data": copy.deepcopy(payload),
    }
    if event_id:
        fields["id"] = event_id
    if timestamp:
        fields["created_at"] = timestamp

    return WebhookEvent(**fields)


# Event data builders for the flows that trigger dispatch


def build_payout_data(
    payout_id: str,
    amount: float,
    *,
    currency: str = "USDC",
    email: str | None = None,
    status: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build the data dictionary shared by payout.* events.

    Args:
        payout_id: Payout identifier.
        amount: Payout amount.
        currency: Payout currency.
        email: Recipient email.
        status: Payout status at the time of the event.
        **extra: Event-specific fields (claimUrl, txSignature, ...).

    Returns:
        Data dictionary with camelCase keys, None values dropped.
    """
    data: dict[str, Any] = {
        "payoutId": payout_id,
        "amount": amount,
        "currency": currency,
        "email": email,
        "status": status,
        **extra,
    }
    return {key: value for key, value in data.items() if value is not None}


def build_deposit_confirmed_data(
    amount: float,
    tx_signature: str,
    *,
    currency: str = "USDC",
    balance_after: float | None = None,
    total_deposited: float | None = None,
) -> dict[str, Any]:
    """Build the data dictionary for a deposit.confirmed event."""
    data: dict[str, Any] = {
        "amount": amount,
        "currency": currency,
        "txSignature": tx_signature,
        "balanceAfter": balance_after,
        "totalDeposited": total_deposited,
    }
    return {key: value for key, value in data.items() if value is not None}


def build_batch_created_data(
    batch_id: str,
    total_amount: float,
    count: int,
    *,
    currency: str = "USDC",
    created_at: datetime | None = None,
) -> dict[str, Any]:
    """Build the data dictionary for a batch.created event."""
    return {
        "batchId": batch_id,
        "total": total_amount,
        "count": count,
        "currency": currency,
        "createdAt": (created_at or datetime.now(UTC)).isoformat(),
    }
