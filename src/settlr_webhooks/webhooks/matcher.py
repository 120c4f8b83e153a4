"""Subscription matching.

Resolves which merchant endpoints should receive an event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from settlr_webhooks.webhooks.events import WebhookEventType, parse_event_type
from settlr_webhooks.webhooks.models import Subscription

if TYPE_CHECKING:
    from settlr_webhooks.storage.base import WebhookStore

logger = structlog.get_logger(__name__)


class SubscriptionMatcher:
    """Finds active subscriptions for a business and event type."""

    def __init__(self, store: WebhookStore) -> None:
        """Initialize the matcher.

        Args:
            store: Store holding subscriptions.
        """
        self._store = store
        self._logger = logger.bind(component="subscription_matcher")

    async def resolve(
        self,
        business_id: str,
        event_type: WebhookEventType | str,
    ) -> list[Subscription]:
        """Get all subscriptions that should receive an event.

        Args:
            business_id: Business the event belongs to.
            event_type: Event type.

        Returns:
            Active subscriptions subscribed to the type or to '*'.
        """
        resolved_type = parse_event_type(event_type)
        candidates = await self._store.list_subscriptions(business_id, active_only=True)
        matched = [s for s in candidates if s.matches(resolved_type)]

        self._logger.debug(
            "subscriptions_resolved",
            business_id=business_id,
            event_type=resolved_type.value,
            candidate_count=len(candidates),
            matched_count=len(matched),
        )
        return matched

    async def register(self, subscription: Subscription) -> Subscription:
        """Register a subscription directly in the backing store.

        Args:
            subscription: Subscription to save.

        Returns:
            The saved subscription.
        """
        return await self._store.save_subscription(subscription)
