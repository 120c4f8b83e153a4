"""Webhook event dispatcher.

Public entry point of the dispatch engine: persists the event, resolves the
matching subscriptions and fans delivery out to one task per destination.
Deliveries are independent; one endpoint failing never cancels or delays
another.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from settlr_webhooks.config import Settings
from settlr_webhooks.config import settings as default_settings
from settlr_webhooks.logging import bind_context, unbind_context
from settlr_webhooks.webhooks.events import WebhookEvent, WebhookEventType, create_webhook_event
from settlr_webhooks.webhooks.executor import DeliveryExecutor
from settlr_webhooks.webhooks.matcher import SubscriptionMatcher
from settlr_webhooks.webhooks.models import DeliveryStatus, Subscription, WebhookDelivery

if TYPE_CHECKING:
    from settlr_webhooks.storage.base import WebhookStore

logger = structlog.get_logger(__name__)


class WebhookDispatcher:
    """Dispatches webhook events to subscribed merchant endpoints.

    Features:
    - Event persisted before any delivery, even with no subscribers
    - Concurrent per-destination delivery with a concurrency cap
    - Fire-and-forget dispatch with tracked background tasks
    - Opt-in sweep for deliveries whose long-delay retry is due
    """

    def __init__(
        self,
        store: WebhookStore | None = None,
        *,
        matcher: SubscriptionMatcher | None = None,
        executor: DeliveryExecutor | None = None,
        config: Settings | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Event/delivery store (created from settings if not provided).
            matcher: Subscription matcher (built on the store if not provided).
            executor: Delivery executor (built on the store if not provided).
            config: Settings (uses global settings if not provided).
        """
        self._config = config or default_settings
        if store is None:
            from settlr_webhooks.storage import create_store

            store = create_store(self._config)

        self._store = store
        self._matcher = matcher or SubscriptionMatcher(store)
        # Caps in-flight requests; backoff sleeps do not hold a slot
        self._semaphore = asyncio.Semaphore(self._config.WEBHOOK_MAX_CONCURRENT_DELIVERIES)
        self._executor = executor or DeliveryExecutor(
            store,
            user_agent=self._config.WEBHOOK_USER_AGENT,
            concurrency=self._semaphore,
        )
        self._background_tasks: set[asyncio.Task[list[WebhookDelivery]]] = set()
        self._logger = logger.bind(component="webhook_dispatcher")

    @property
    def store(self) -> WebhookStore:
        """Store backing this dispatcher."""
        return self._store

    @property
    def matcher(self) -> SubscriptionMatcher:
        """Subscription matcher used to resolve destinations."""
        return self._matcher

    async def dispatch(
        self,
        business_id: str,
        event_type: WebhookEventType | str,
        data: dict[str, Any] | None = None,
    ) -> list[WebhookDelivery]:
        """Dispatch an event to all subscribed endpoints and wait for them.

        Args:
            business_id: Business the event belongs to.
            event_type: Type of event.
            data: Event data.

        Returns:
            Finalized delivery records, one per matching subscription.

        Raises:
            InvalidEventTypeError: If event_type is unknown (nothing is persisted).
            InvalidPayloadError: If data is not a JSON object (nothing is persisted).
        """
        event = create_webhook_event(business_id, event_type, data)
        return await self._dispatch_event(event)

    def dispatch_in_background(
        self,
        business_id: str,
        event_type: WebhookEventType | str,
        data: dict[str, Any] | None = None,
    ) -> asyncio.Task[list[WebhookDelivery]]:
        """Dispatch without making the caller wait for delivery.

        The event is validated synchronously, so boundary errors still raise
        here. Everything after that runs in a tracked task whose failures are
        logged, never propagated to the triggering operation.

        Args:
            business_id: Business the event belongs to.
            event_type: Type of event.
            data: Event data.

        Returns:
            The background task (awaiting it is optional).
        """
        event = create_webhook_event(business_id, event_type, data)
        task = asyncio.create_task(
            self._dispatch_event(event),
            name=f"webhook-dispatch-{event.id}",
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[list[WebhookDelivery]]) -> None:
        """Error boundary for background dispatches."""
        self._background_tasks.discard(task)
        if task.cancelled():
            self._logger.warning("background_dispatch_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "background_dispatch_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    async def _dispatch_event(self, event: WebhookEvent) -> list[WebhookDelivery]:
        """Persist, resolve and fan out one event."""
        bind_context(event_id=event.id, business_id=event.business_id)
        try:
            self._logger.info(
                "dispatching_event",
                event_type=event.type.value,
            )

            await self._store.insert_event(event)

            subscriptions = await self._matcher.resolve(event.business_id, event.type)
            if not subscriptions:
                self._logger.debug(
                    "no_webhooks_subscribed",
                    event_type=event.type.value,
                )
                return []

            results = await asyncio.gather(
                *(self._executor.deliver(subscription, event) for subscription in subscriptions),
                return_exceptions=True,
            )

            deliveries: list[WebhookDelivery] = []
            for subscription, result in zip(subscriptions, results, strict=True):
                if isinstance(result, BaseException):
                    self._logger.error(
                        "delivery_task_failed",
                        subscription_id=subscription.id,
                        error=str(result),
                        error_type=result.__class__.__name__,
                    )
                    continue
                deliveries.append(result)

            self._logger.info(
                "event_dispatched",
                event_type=event.type.value,
                webhook_count=len(subscriptions),
                success_count=sum(1 for d in deliveries if d.status == DeliveryStatus.SUCCESS),
                failed_count=sum(1 for d in deliveries if d.status == DeliveryStatus.FAILED),
            )
            return deliveries
        finally:
            unbind_context("event_id", "business_id")

    async def retry_due_deliveries(self, *, limit: int | None = None) -> list[WebhookDelivery]:
        """Resume deliveries whose deferred retry time has passed.

        Nothing in this package calls this on a timer; an external scheduler
        (cron, worker) may call it to spend the rest of a delivery's budget.

        Args:
            limit: Maximum deliveries to examine (defaults to settings).

        Returns:
            Delivery records after the resumed attempts.
        """
        batch_size = limit or self._config.WEBHOOK_RETRY_BATCH_SIZE
        due = await self._store.list_due_retries(datetime.now(UTC), limit=batch_size)
        if not due:
            return []

        self._logger.info("retrying_due_deliveries", count=len(due))

        results = await asyncio.gather(
            *(self._resume(delivery) for delivery in due),
            return_exceptions=True,
        )

        resumed: list[WebhookDelivery] = []
        for delivery, result in zip(due, results, strict=True):
            if isinstance(result, BaseException):
                self._logger.error(
                    "delivery_resume_failed",
                    delivery_id=delivery.id,
                    error=str(result),
                )
                continue
            resumed.append(result)
        return resumed

    async def _resume(self, delivery: WebhookDelivery) -> WebhookDelivery:
        event = await self._store.get_event(delivery.event_id)
        subscription = await self._store.get_subscription(delivery.subscription_id)

        if event is None or subscription is None or not subscription.active:
            # Destination gone: stop offering this delivery for retry
            delivery.mark_failed()
            await self._store.upsert_delivery(delivery)
            self._logger.info(
                "delivery_retry_abandoned",
                delivery_id=delivery.id,
                event_found=event is not None,
                subscription_active=bool(subscription and subscription.active),
            )
            return delivery

        return await self._executor.resume(subscription, event, delivery)

    async def register_subscription(
        self,
        business_id: str,
        url: str,
        *,
        events: list[WebhookEventType | str] | None = None,
        secret: str | None = None,
        active: bool = True,
    ) -> Subscription:
        """Register a subscription directly (test and integration seam).

        Args:
            business_id: Owning business.
            url: Endpoint URL.
            events: Event types to subscribe to (None = all events).
            secret: Shared secret (generated if not provided).
            active: Whether the subscription receives deliveries.

        Returns:
            The saved subscription.
        """
        fields: dict[str, Any] = {
            "business_id": business_id,
            "url": url,
            "active": active,
        }
        if events is not None:
            fields["events"] = events
        if secret is not None:
            fields["secret"] = secret

        subscription = Subscription(**fields)
        await self._matcher.register(subscription)
        return subscription

    async def shutdown(self) -> None:
        """Wait for background dispatches to finish."""
        if self._background_tasks:
            self._logger.info(
                "waiting_for_pending_deliveries",
                count=len(self._background_tasks),
            )
            await asyncio.gather(*self._background_tasks, return_exceptions=True)


# Global dispatcher instance
_dispatcher: WebhookDispatcher | None = None


def get_webhook_dispatcher() -> WebhookDispatcher:
    """Get the global webhook dispatcher.

    Returns:
        Singleton WebhookDispatcher.
    """
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher()
    return _dispatcher


def set_webhook_dispatcher(dispatcher: WebhookDispatcher | None) -> None:
    """Set the global webhook dispatcher.

    Useful for testing.

    Args:
        dispatcher: WebhookDispatcher instance, or None to reset.
    """
    global _dispatcher
    _dispatcher = dispatcher
