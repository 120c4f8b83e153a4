"""Webhook dispatch for merchant event notifications.

This module provides:
- WebhookEventType: Enumeration of all webhook event types
- WebhookEvent: Immutable event record and its signed wire format
- Subscription / WebhookDelivery: Destination and audit records
- SubscriptionMatcher: Resolve active subscriptions for an event
- DeliveryExecutor: Signed HTTP delivery with bounded retry
- WebhookDispatcher: Persist, match and fan out events
- WebhookQueryService: Event and delivery history
- HMAC signature generation and verification
"""

from settlr_webhooks.webhooks.dispatcher import (
    WebhookDispatcher,
    get_webhook_dispatcher,
    set_webhook_dispatcher,
)
from settlr_webhooks.webhooks.events import (
    WILDCARD,
    WebhookEvent,
    WebhookEventType,
    create_webhook_event,
    parse_event_type,
)
from settlr_webhooks.webhooks.executor import DeliveryExecutor
from settlr_webhooks.webhooks.matcher import SubscriptionMatcher
from settlr_webhooks.webhooks.models import (
    MAX_ATTEMPTS,
    DeliveryStatus,
    Subscription,
    WebhookDelivery,
)
from settlr_webhooks.webhooks.queries import EventWithDeliveries, WebhookQueryService
from settlr_webhooks.webhooks.security import sign, verify, verify_from_headers

__all__ = [
    # Events
    "WILDCARD",
    "WebhookEvent",
    "WebhookEventType",
    "create_webhook_event",
    "parse_event_type",
    # Records
    "MAX_ATTEMPTS",
    "DeliveryStatus",
    "Subscription",
    "WebhookDelivery",
    # Engine
    "DeliveryExecutor",
    "SubscriptionMatcher",
    "WebhookDispatcher",
    "get_webhook_dispatcher",
    "set_webhook_dispatcher",
    # Queries
    "EventWithDeliveries",
    "WebhookQueryService",
    # Security
    "sign",
    "verify",
    "verify_from_headers",
]
