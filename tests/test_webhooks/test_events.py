"""Tests for webhook events module."""

import json
from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from settlr_webhooks.errors import InvalidEventTypeError, InvalidPayloadError
from settlr_webhooks.webhooks.events import (
    WebhookEvent,
    WebhookEventType,
    build_batch_created_data,
    build_deposit_confirmed_data,
    build_payout_data,
    create_webhook_event,
    generate_event_id,
    parse_event_type,
)

# ============================================================================
# WebhookEventType Tests
# ============================================================================


class TestWebhookEventType:
    """Tests for WebhookEventType enum."""

    def test_closed_set(self):
        """Test the exact set of supported event types."""
        assert {t.value for t in WebhookEventType} == {
            "payout.created",
            "payout.claimed",
            "payout.expired",
            "payout.failed",
            "deposit.confirmed",
            "batch.created",
        }

    def test_string_enum(self):
        """Test members compare equal to their string values."""
        assert WebhookEventType.PAYOUT_CREATED == "payout.created"

    def test_parse_string(self):
        """Test parsing a string value."""
        assert parse_event_type("deposit.confirmed") is WebhookEventType.DEPOSIT_CONFIRMED

    def test_parse_enum(self):
        """Test parsing passes enum members through."""
        assert parse_event_type(WebhookEventType.BATCH_CREATED) is WebhookEventType.BATCH_CREATED

    def test_parse_unknown(self):
        """Test unknown types raise InvalidEventTypeError."""
        with pytest.raises(InvalidEventTypeError) as exc_info:
            parse_event_type("payout.exploded")

        assert exc_info.value.event_type == "payout.exploded"
        assert isinstance(exc_info.value, ValueError)


# ============================================================================
# WebhookEvent Tests
# ============================================================================


class TestWebhookEvent:
    """Tests for WebhookEvent model."""

    def test_generated_id(self):
        """Test event ids are unique and prefixed."""
        first = generate_event_id()
        second = generate_event_id()

        assert first.startswith("evt_")
        assert first != second

    def test_defaults(self):
        """Test default id, data and UTC timestamp."""
        event = WebhookEvent(type=WebhookEventType.PAYOUT_CREATED, business_id="biz_1")

        assert event.id.startswith("evt_")
        assert event.data == {}
        assert event.created_at.tzinfo is not None

    def test_immutable(self):
        """Test events cannot be modified after creation."""
        event = WebhookEvent(type=WebhookEventType.PAYOUT_CREATED, business_id="biz_1")

        with pytest.raises(ValidationError):
            event.business_id = "biz_2"

    def test_empty_business_id_rejected(self):
        """Test business_id must be non-empty."""
        with pytest.raises(ValidationError):
            WebhookEvent(type=WebhookEventType.PAYOUT_CREATED, business_id="")

    def test_naive_timestamp_treated_as_utc(self):
        """Test naive datetimes are interpreted as UTC."""
        event = WebhookEvent(
            type=WebhookEventType.PAYOUT_CREATED,
            business_id="biz_1",
            created_at=datetime(2026, 1, 1, 12, 0, 0),
        )

        assert event.created_at == datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

    def test_offset_timestamp_normalized(self):
        """Test aware datetimes are converted to UTC."""
        event = WebhookEvent(
            type=WebhookEventType.PAYOUT_CREATED,
            business_id="biz_1",
            created_at=datetime(2026, 1, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2))),
        )

        assert event.created_at_iso == "2026-01-01T12:00:00+00:00"

    def test_wire_dict(self):
        """Test the wire dictionary uses merchantId and createdAt."""
        event = WebhookEvent(
            id="evt_abc",
            type=WebhookEventType.PAYOUT_CLAIMED,
            business_id="biz_1",
            data={"payoutId": "p_1"},
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
        )

        assert event.to_json_dict() == {
            "id": "evt_abc",
            "type": "payout.claimed",
            "merchantId": "biz_1",
            "data": {"payoutId": "p_1"},
            "createdAt": "2026-01-01T00:00:00+00:00",
        }

    def test_canonical_json_is_compact_and_sorted(self):
        """Test canonical JSON has no whitespace and sorted keys."""
        event = WebhookEvent(
            id="evt_abc",
            type=WebhookEventType.PAYOUT_CLAIMED,
            business_id="biz_1",
            data={"z": 1, "a": 2},
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
        )

        assert event.to_canonical_json() == (
            '{"createdAt":"2026-01-01T00:00:00+00:00","data":{"a":2,"z":1},'
            '"id":"evt_abc","merchantId":"biz_1","type":"payout.claimed"}'
        )

    def test_canonical_json_is_stable(self):
        """Test repeated serialization yields identical strings."""
        event = WebhookEvent(
            type=WebhookEventType.DEPOSIT_CONFIRMED,
            business_id="biz_1",
            data={"amount": 10.5, "nested": {"b": 1, "a": [1, 2]}},
        )

        assert event.to_canonical_json() == event.to_canonical_json()
        assert json.loads(event.to_canonical_json())["data"]["nested"] == {"b": 1, "a": [1, 2]}


# ============================================================================
# create_webhook_event Tests
# ============================================================================


class TestCreateWebhookEvent:
    """Tests for create_webhook_event function."""

    def test_create_from_string_type(self):
        """Test creating an event from a string type."""
        event = create_webhook_event("biz_1", "payout.created", {"payoutId": "p_1"})

        assert event.type is WebhookEventType.PAYOUT_CREATED
        assert event.business_id == "biz_1"
        assert event.data == {"payoutId": "p_1"}

    def test_create_with_none_data(self):
        """Test None data becomes an empty object."""
        event = create_webhook_event("biz_1", WebhookEventType.BATCH_CREATED)

        assert event.data == {}

    def test_create_with_custom_id_and_timestamp(self):
        """Test custom id and timestamp are kept."""
        ts = datetime(2026, 3, 1, tzinfo=UTC)
        event = create_webhook_event(
            "biz_1",
            "payout.failed",
            event_id="evt_custom",
            timestamp=ts,
        )

        assert event.id == "evt_custom"
        assert event.created_at == ts

    def test_unknown_type_raises(self):
        """Test unknown types are rejected."""
        with pytest.raises(InvalidEventTypeError):
            create_webhook_event("biz_1", "refund.created", {})

    def test_non_mapping_data_raises(self):
        """Test non-dict data is rejected."""
        with pytest.raises(InvalidPayloadError):
            create_webhook_event("biz_1", "payout.created", ["not", "a", "dict"])  # type: ignore[arg-type]

    def test_unserializable_data_raises(self):
        """Test data that cannot be JSON encoded is rejected."""
        with pytest.raises(InvalidPayloadError):
            create_webhook_event("biz_1", "payout.created", {"when": object()})

    def test_non_finite_number_raises(self):
        """Test NaN and infinity are rejected since they are not valid JSON."""
        with pytest.raises(InvalidPayloadError):
            create_webhook_event("biz_1", "payout.created", {"amount": float("nan")})
        with pytest.raises(InvalidPayloadError):
            create_webhook_event("biz_1", "payout.created", {"amount": float("inf")})

    def test_data_copied_from_caller(self):
        """Test later changes to the caller's dict do not reach the event."""
        data = {"payout": {"amount": 1}}
        event = create_webhook_event("biz_1", "payout.created", data)

        data["payout"]["amount"] = 999
        data["extra"] = True

        assert event.data == {"payout": {"amount": 1}}
        assert '"amount":1' in event.to_canonical_json()

    def test_empty_business_id_raises(self):
        """Test empty business ids are rejected as ValueError."""
        with pytest.raises(ValueError):
            create_webhook_event("", "payout.created", {})


# ============================================================================
# Data Builder Tests
# ============================================================================


class TestDataBuilders:
    """Tests for event data builders."""

    def test_payout_data(self):
        """Test payout data uses camelCase and drops None values."""
        data = build_payout_data("p_1", 25.0, email="a@example.com", claimUrl="https://x/c")

        assert data == {
            "payoutId": "p_1",
            "amount": 25.0,
            "currency": "USDC",
            "email": "a@example.com",
            "claimUrl": "https://x/c",
        }

    def test_payout_data_with_status(self):
        """Test payout status is included when given."""
        data = build_payout_data("p_1", 25.0, status="claimed")

        assert data["status"] == "claimed"
        assert "email" not in data

    def test_deposit_confirmed_data(self):
        """Test deposit data."""
        data = build_deposit_confirmed_data(100.0, "sig_abc", balance_after=150.0)

        assert data == {
            "amount": 100.0,
            "currency": "USDC",
            "txSignature": "sig_abc",
            "balanceAfter": 150.0,
        }

    def test_batch_created_data(self):
        """Test batch data."""
        created = datetime(2026, 1, 2, tzinfo=UTC)
        data = build_batch_created_data("batch_1", 300.0, 3, created_at=created)

        assert data == {
            "batchId": "batch_1",
            "total": 300.0,
            "count": 3,
            "currency": "USDC",
            "createdAt": "2026-01-02T00:00:00+00:00",
        }

    def test_builder_output_is_dispatchable(self):
        """Test builder output is accepted by create_webhook_event."""
        event = create_webhook_event("biz_1", "payout.created", build_payout_data("p_1", 1.0))

        assert event.data["payoutId"] == "p_1"
