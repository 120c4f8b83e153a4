"""In-memory webhook store.

Fallback when no database is configured, and the test double for the
dispatcher. Records are copied on the way in and out so callers never share
mutable state with the store.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import TypeVar

import structlog

from settlr_webhooks.storage.base import WebhookStore
from settlr_webhooks.webhooks.events import WebhookEvent, WebhookEventType
from settlr_webhooks.webhooks.models import DeliveryStatus, Subscription, WebhookDelivery

logger = structlog.get_logger(__name__)


R = TypeVar("R", WebhookEvent, WebhookDelivery)
T = TypeVar("T")


def _newest_first(records: list[R]) -> list[R]:
    # Later inserts win ties on created_at
    return sorted(reversed(records), key=lambda r: r.created_at, reverse=True)


def _page(records: list[T], limit: int | None, offset: int = 0) -> list[T]:
    if offset:
        records = records[offset:]
    if limit is not None:
        records = records[:limit]
    return records


class InMemoryWebhookStore(WebhookStore):
    """Dictionary-backed store with the same semantics as the SQLite store."""

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._events: dict[str, WebhookEvent] = {}
        self._deliveries: dict[str, WebhookDelivery] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._logger = logger.bind(component="memory_webhook_store")

    async def insert_event(self, event: WebhookEvent) -> None:
        self._events[event.id] = event.model_copy(deep=True)
        self._logger.debug("event_saved", event_id=event.id, event_type=event.type.value)

    async def get_event(self, event_id: str) -> WebhookEvent | None:
        event = self._events.get(event_id)
        return event.model_copy(deep=True) if event else None

    async def list_events(
        self,
        business_id: str,
        *,
        event_type: WebhookEventType | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[WebhookEvent]:
        events = [e for e in self._events.values() if e.business_id == business_id]
        if event_type:
            events = [e for e in events if e.type == event_type]
        return [e.model_copy(deep=True) for e in _page(_newest_first(events), limit, offset)]

    async def upsert_delivery(self, delivery: WebhookDelivery) -> None:
        self._deliveries[delivery.id] = delivery.model_copy(deep=True)
        self._logger.debug(
            "delivery_saved",
            delivery_id=delivery.id,
            status=delivery.status.value,
        )

    async def list_deliveries(
        self,
        event_id: str,
        *,
        limit: int | None = None,
    ) -> list[WebhookDelivery]:
        deliveries = [d for d in self._deliveries.values() if d.event_id == event_id]
        return [d.model_copy(deep=True) for d in _page(_newest_first(deliveries), limit)]

    async def list_deliveries_for_events(
        self,
        event_ids: Sequence[str],
        *,
        limit: int | None = None,
    ) -> list[WebhookDelivery]:
        wanted = set(event_ids)
        if not wanted:
            return []
        deliveries = [d for d in self._deliveries.values() if d.event_id in wanted]
        return [d.model_copy(deep=True) for d in _page(_newest_first(deliveries), limit)]

    async def list_due_retries(
        self,
        now: datetime,
        *,
        limit: int = 100,
    ) -> list[WebhookDelivery]:
        due = [
            d for d in self._deliveries.values()
            if d.can_resume and d.next_retry_at is not None and d.next_retry_at <= now
        ]
        due.sort(key=lambda d: d.next_retry_at or now)
        return [d.model_copy(deep=True) for d in due[:limit]]

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        self._subscriptions[subscription.id] = subscription.model_copy(deep=True)
        self._logger.info(
            "subscription_saved",
            subscription_id=subscription.id,
            business_id=subscription.business_id,
            events=subscription.events,
        )
        return subscription

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        subscription = self._subscriptions.get(subscription_id)
        return subscription.model_copy(deep=True) if subscription else None

    async def list_subscriptions(
        self,
        business_id: str,
        *,
        active_only: bool = True,
    ) -> list[Subscription]:
        return [
            s.model_copy(deep=True)
            for s in self._subscriptions.values()
            if s.business_id == business_id and (s.active or not active_only)
        ]

    async def record_delivery_outcome(
        self,
        subscription_id: str,
        status: DeliveryStatus,
        at: datetime,
    ) -> None:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return
        subscription.last_delivery_at = at
        subscription.last_delivery_status = status
