"""Tests for subscription and delivery models."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from settlr_webhooks.webhooks.events import WebhookEventType
from settlr_webhooks.webhooks.models import (
    MAX_ATTEMPTS,
    RESPONSE_BODY_LIMIT,
    DeliveryStatus,
    Subscription,
    WebhookDelivery,
    truncate_body,
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def delivery():
    """Create a fresh delivery."""
    return WebhookDelivery(
        event_id="evt_1",
        subscription_id="wh_1",
        url="https://merchant.example/hook",
    )


# ============================================================================
# Subscription Tests
# ============================================================================


class TestSubscription:
    """Tests for Subscription model."""

    def test_defaults(self):
        """Test generated id, secret and wildcard events."""
        sub = Subscription(business_id="biz_1", url="https://merchant.example/hook")

        assert sub.id.startswith("wh_")
        assert sub.secret.startswith("whsec_")
        assert sub.events == ["*"]
        assert sub.active is True
        assert sub.last_delivery_at is None

    def test_invalid_url_rejected(self):
        """Test URLs are validated."""
        with pytest.raises(ValidationError):
            Subscription(business_id="biz_1", url="not a url")

    def test_non_http_url_rejected(self):
        """Test only http(s) endpoints are accepted."""
        with pytest.raises(ValidationError):
            Subscription(business_id="biz_1", url="ftp://merchant.example/hook")

    def test_url_kept_as_registered(self):
        """Test the URL is stored verbatim, without a trailing slash added."""
        sub = Subscription(business_id="biz_1", url="https://m.example")

        assert sub.url == "https://m.example"

    def test_events_normalized_from_enum(self):
        """Test enum members are stored as their string values."""
        sub = Subscription(
            business_id="biz_1",
            url="https://merchant.example/hook",
            events=[WebhookEventType.PAYOUT_CREATED, "deposit.confirmed"],
        )

        assert sub.events == ["payout.created", "deposit.confirmed"]

    def test_events_single_string(self):
        """Test a single string becomes a one-item list."""
        sub = Subscription(
            business_id="biz_1",
            url="https://merchant.example/hook",
            events="payout.claimed",
        )

        assert sub.events == ["payout.claimed"]

    def test_matches_exact_type(self):
        """Test matching an explicitly subscribed type."""
        sub = Subscription(
            business_id="biz_1",
            url="https://merchant.example/hook",
            events=["payout.created"],
        )

        assert sub.matches(WebhookEventType.PAYOUT_CREATED) is True
        assert sub.matches("payout.created") is True
        assert sub.matches(WebhookEventType.PAYOUT_CLAIMED) is False

    def test_matches_wildcard(self):
        """Test '*' matches every type."""
        sub = Subscription(business_id="biz_1", url="https://merchant.example/hook")

        for event_type in WebhookEventType:
            assert sub.matches(event_type) is True

    def test_inactive_never_matches(self):
        """Test inactive subscriptions match nothing."""
        sub = Subscription(
            business_id="biz_1",
            url="https://merchant.example/hook",
            active=False,
        )

        assert sub.matches(WebhookEventType.PAYOUT_CREATED) is False

    def test_empty_events_matches_nothing(self):
        """Test an empty event list matches nothing."""
        sub = Subscription(
            business_id="biz_1",
            url="https://merchant.example/hook",
            events=[],
        )

        assert sub.matches(WebhookEventType.PAYOUT_CREATED) is False


# ============================================================================
# WebhookDelivery Tests
# ============================================================================


class TestWebhookDelivery:
    """Tests for WebhookDelivery model."""

    def test_defaults(self, delivery):
        """Test initial delivery state."""
        assert delivery.id.startswith("del_")
        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.attempts == 0
        assert delivery.max_attempts == MAX_ATTEMPTS == 5
        assert delivery.is_terminal is False

    def test_attempts_cannot_exceed_max(self):
        """Test the attempt budget is enforced on construction."""
        with pytest.raises(ValidationError):
            WebhookDelivery(
                event_id="evt_1",
                subscription_id="wh_1",
                url="https://merchant.example/hook",
                attempts=6,
                max_attempts=5,
            )

    def test_begin_attempt(self, delivery):
        """Test starting an attempt counts it and stamps the time."""
        delivery.begin_attempt()

        assert delivery.attempts == 1
        assert delivery.last_attempt_at is not None
        assert delivery.status == DeliveryStatus.PENDING

    def test_begin_attempt_without_budget(self, delivery):
        """Test no attempt can start once the budget is spent."""
        for _ in range(delivery.max_attempts):
            delivery.begin_attempt()

        with pytest.raises(ValueError):
            delivery.begin_attempt()
        assert delivery.attempts == delivery.max_attempts

    def test_mark_success(self, delivery):
        """Test marking a delivery successful clears failure details."""
        delivery.begin_attempt()
        delivery.record_failure("HTTP 500", http_status=500)
        delivery.next_retry_at = datetime.now(UTC)
        delivery.begin_attempt()
        delivery.mark_success(http_status=200, response_body="ok")

        assert delivery.status == DeliveryStatus.SUCCESS
        assert delivery.http_status == 200
        assert delivery.response_body == "ok"
        assert delivery.error_message is None
        assert delivery.next_retry_at is None
        assert delivery.is_terminal is True

    def test_record_failure_keeps_pending(self, delivery):
        """Test recording a failed attempt does not finalize."""
        delivery.begin_attempt()
        delivery.record_failure("HTTP 503", http_status=503, response_body="down")

        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.error_message == "HTTP 503"
        assert delivery.http_status == 503
        assert delivery.response_body == "down"

    def test_record_transport_failure_clears_http_status(self, delivery):
        """Test a transport error replaces an earlier HTTP status."""
        delivery.begin_attempt()
        delivery.record_failure("HTTP 500", http_status=500)
        delivery.begin_attempt()
        delivery.record_failure("Connection error: refused")

        assert delivery.http_status is None
        assert delivery.error_message == "Connection error: refused"

    def test_mark_failed(self, delivery):
        """Test finalizing as failed."""
        delivery.begin_attempt()
        delivery.mark_failed()

        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.next_retry_at is None
        assert delivery.can_resume is False

    def test_can_resume_with_deferred_retry(self, delivery):
        """Test a deferred failure with budget left can resume."""
        delivery.begin_attempt()
        delivery.mark_failed(next_retry_at=datetime.now(UTC) + timedelta(seconds=30))

        assert delivery.can_resume is True

    def test_cannot_resume_when_exhausted(self, delivery):
        """Test an exhausted delivery is never resumable."""
        for _ in range(delivery.max_attempts):
            delivery.begin_attempt()
        delivery.mark_failed(next_retry_at=datetime.now(UTC))

        assert delivery.can_resume is False


class TestTruncateBody:
    """Tests for truncate_body function."""

    def test_short_body_unchanged(self):
        """Test short bodies are kept."""
        assert truncate_body("ok") == "ok"

    def test_long_body_truncated(self):
        """Test bodies are capped at the storage limit."""
        assert truncate_body("x" * 2000) == "x" * RESPONSE_BODY_LIMIT

    def test_empty_body_is_none(self):
        """Test empty bodies are stored as None."""
        assert truncate_body("") is None
        assert truncate_body(None) is None
