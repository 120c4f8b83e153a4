"""Store contract for webhook events, deliveries and subscriptions.

The dispatcher, executor and query service depend only on WebhookStore.
Implementations must honor the same semantics:

- events are append-only and listed newest first
- deliveries are insert-or-update by id and listed newest first
- every list method returns an empty list, never raises, for "no rows"
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from settlr_webhooks.webhooks.events import WebhookEvent, WebhookEventType
from settlr_webhooks.webhooks.models import DeliveryStatus, Subscription, WebhookDelivery


class WebhookStore(ABC):
    """Abstract persistence backend for webhook dispatch."""

    async def initialize(self) -> None:  # noqa: B027
        """Prepare the backend (create tables, open connections)."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""

    # Events

    @abstractmethod
    async def insert_event(self, event: WebhookEvent) -> None:
        """Append an event."""

    @abstractmethod
    async def get_event(self, event_id: str) -> WebhookEvent | None:
        """Get an event by ID."""

    @abstractmethod
    async def list_events(
        self,
        business_id: str,
        *,
        event_type: WebhookEventType | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[WebhookEvent]:
        """List a business's events, newest first.

        Args:
            business_id: Owning business.
            event_type: Only return events of this type.
            limit: Maximum results (None = no limit).
            offset: Number of results to skip.
        """

    # Deliveries

    @abstractmethod
    async def upsert_delivery(self, delivery: WebhookDelivery) -> None:
        """Insert a delivery or replace the row with the same id."""

    @abstractmethod
    async def list_deliveries(
        self,
        event_id: str,
        *,
        limit: int | None = None,
    ) -> list[WebhookDelivery]:
        """List deliveries of one event, newest first."""

    @abstractmethod
    async def list_deliveries_for_events(
        self,
        event_ids: Sequence[str],
        *,
        limit: int | None = None,
    ) -> list[WebhookDelivery]:
        """List deliveries referencing any of the events, newest first."""

    @abstractmethod
    async def list_due_retries(
        self,
        now: datetime,
        *,
        limit: int = 100,
    ) -> list[WebhookDelivery]:
        """List failed deliveries whose recorded retry time has passed.

        Only deliveries with attempts left are returned, oldest retry first.
        """

    # Subscriptions

    @abstractmethod
    async def save_subscription(self, subscription: Subscription) -> Subscription:
        """Insert or replace a subscription."""

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        """Get a subscription by ID."""

    @abstractmethod
    async def list_subscriptions(
        self,
        business_id: str,
        *,
        active_only: bool = True,
    ) -> list[Subscription]:
        """List a business's subscriptions."""

    @abstractmethod
    async def record_delivery_outcome(
        self,
        subscription_id: str,
        status: DeliveryStatus,
        at: datetime,
    ) -> None:
        """Update a subscription's last-delivery summary."""
