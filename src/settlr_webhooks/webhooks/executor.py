"""Webhook delivery executor.

Delivers one event to one subscription under a bounded retry policy:

- up to MAX_ATTEMPTS attempts, each with a hard REQUEST_TIMEOUT_SECONDS
- the delay before attempt N is RETRY_DELAYS_SECONDS[N - 1]
- delays up to MAX_INLINE_RETRY_DELAY_SECONDS are waited out in-process;
  a longer delay finalizes the delivery as failed with next_retry_at set,
  leaving the rest of the budget to WebhookDispatcher.retry_due_deliveries()
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import httpx
import structlog

from settlr_webhooks.errors import StoreError
from settlr_webhooks.webhooks.events import WebhookEvent
from settlr_webhooks.webhooks.models import MAX_ATTEMPTS, DeliveryStatus, Subscription, WebhookDelivery
from settlr_webhooks.webhooks.security import DEFAULT_USER_AGENT, build_delivery_headers

if TYPE_CHECKING:
    from settlr_webhooks.storage.base import WebhookStore

logger = structlog.get_logger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0

# Immediate, 5s, 30s, 2m, 10m
RETRY_DELAYS_SECONDS: tuple[float, ...] = (0, 5, 30, 120, 600)

MAX_INLINE_RETRY_DELAY_SECONDS = 5.0


def retry_delay(attempt: int) -> float:
    """Get the delay to wait before a 1-based attempt number.

    Args:
        attempt: Attempt about to be made.

    Returns:
        Delay in seconds. Attempts past the schedule reuse its last entry.
    """
    index = max(attempt - 1, 0)
    if index < len(RETRY_DELAYS_SECONDS):
        return RETRY_DELAYS_SECONDS[index]
    return RETRY_DELAYS_SECONDS[-1]


class DeliveryExecutor:
    """Runs the delivery attempt sequence for one destination.

    Never raises for delivery problems: timeouts, transport errors and
    non-2xx responses are recorded on the returned WebhookDelivery.
    """

    def __init__(
        self,
        store: WebhookStore,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        concurrency: asyncio.Semaphore | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            store: Store where finalized deliveries are written.
            user_agent: Client identifier sent with every request.
            timeout_seconds: Per-attempt request timeout.
            transport: Optional httpx transport (tests, proxies).
            concurrency: Optional semaphore shared with other executors; a slot
                is held for one attempt at a time, never across a backoff.
        """
        self._store = store
        self._user_agent = user_agent
        self._timeout = timeout_seconds
        self._transport = transport
        self._concurrency = concurrency
        self._logger = logger.bind(component="delivery_executor")

    async def deliver(self, subscription: Subscription, event: WebhookEvent) -> WebhookDelivery:
        """Deliver an event to a subscription.

        Args:
            subscription: Destination.
            event: Event to deliver.

        Returns:
            The finalized, persisted delivery record.
        """
        delivery = WebhookDelivery(
            event_id=event.id,
            subscription_id=subscription.id,
            url=subscription.url,
            max_attempts=MAX_ATTEMPTS,
        )
        return await self._run(subscription, event, delivery)

    async def resume(
        self,
        subscription: Subscription,
        event: WebhookEvent,
        delivery: WebhookDelivery,
    ) -> WebhookDelivery:
        """Continue a deferred delivery from its next attempt.

        Args:
            subscription: Destination.
            event: Event being delivered.
            delivery: Record with a recorded next_retry_at and budget left.

        Returns:
            The updated, persisted delivery record.
        """
        if not delivery.can_resume:
            return delivery

        self._logger.info(
            "resuming_delivery",
            delivery_id=delivery.id,
            next_attempt=delivery.attempts + 1,
        )
        return await self._run(subscription, event, delivery)

    async def _run(
        self,
        subscription: Subscription,
        event: WebhookEvent,
        delivery: WebhookDelivery,
    ) -> WebhookDelivery:
        """Attempt loop shared by deliver() and resume()."""
        payload = event.to_canonical_json()
        headers = build_delivery_headers(
            payload,
            subscription.secret,
            event_type=event.type.value,
            delivery_id=delivery.id,
            timestamp=event.created_at_iso,
            user_agent=self._user_agent,
        )

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            while delivery.attempts < delivery.max_attempts:
                delivery.begin_attempt()

                if await self._attempt(client, delivery, payload, headers):
                    break

                if delivery.attempts >= delivery.max_attempts:
                    delivery.mark_failed()
                    self._logger.error(
                        "delivery_failed_permanently",
                        delivery_id=delivery.id,
                        subscription_id=subscription.id,
                        attempts=delivery.attempts,
                    )
                    break

                delay = retry_delay(delivery.attempts + 1)
                next_retry_at = datetime.now(UTC) + timedelta(seconds=delay)

                if delay > MAX_INLINE_RETRY_DELAY_SECONDS:
                    delivery.mark_failed(next_retry_at=next_retry_at)
                    self._logger.warning(
                        "delivery_retry_deferred",
                        delivery_id=delivery.id,
                        attempts=delivery.attempts,
                        next_retry_at=next_retry_at.isoformat(),
                    )
                    break

                delivery.next_retry_at = next_retry_at
                self._logger.debug(
                    "scheduling_retry",
                    delivery_id=delivery.id,
                    delay_seconds=delay,
                    next_attempt=delivery.attempts + 1,
                )
                await asyncio.sleep(delay)

        await self._persist(subscription, delivery)
        return delivery

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        delivery: WebhookDelivery,
        payload: str,
        headers: dict[str, str],
    ) -> bool:
        if self._concurrency is None:
            return await self._attempt_delivery(client, delivery, payload, headers)
        async with self._concurrency:
            return await self._attempt_delivery(client, delivery, payload, headers)

    async def _attempt_delivery(
        self,
        client: httpx.AsyncClient,
        delivery: WebhookDelivery,
        payload: str,
        headers: dict[str, str],
    ) -> bool:
        """Make a single delivery attempt.

        Returns:
            True if the endpoint answered 2xx.
        """
        self._logger.debug(
            "attempting_delivery",
            delivery_id=delivery.id,
            attempt=delivery.attempts,
            url=delivery.url,
        )

        try:
            # httpx timeouts are per phase; wait_for bounds the whole request
            response = await asyncio.wait_for(
                client.post(
                    delivery.url,
                    content=payload.encode("utf-8"),
                    headers=headers,
                ),
                timeout=self._timeout,
            )
        except (httpx.TimeoutException, TimeoutError):
            delivery.record_failure(f"Request timeout after {self._timeout:g}s")
            self._logger.warning(
                "delivery_timeout",
                delivery_id=delivery.id,
                timeout=self._timeout,
            )
            return False
        except httpx.ConnectError as e:
            delivery.record_failure(f"Connection error: {e}")
            self._logger.warning(
                "delivery_connection_error",
                delivery_id=delivery.id,
                error=str(e),
            )
            return False
        except Exception as e:
            delivery.record_failure(str(e) or e.__class__.__name__)
            self._logger.warning(
                "delivery_unexpected_error",
                delivery_id=delivery.id,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return False

        if response.is_success:
            delivery.mark_success(
                http_status=response.status_code,
                response_body=response.text,
            )
            self._logger.info(
                "delivery_success",
                delivery_id=delivery.id,
                status_code=response.status_code,
                attempt=delivery.attempts,
            )
            return True

        delivery.record_failure(
            f"HTTP {response.status_code}",
            http_status=response.status_code,
            response_body=response.text,
        )
        self._logger.warning(
            "delivery_non_success_response",
            delivery_id=delivery.id,
            status_code=response.status_code,
            attempt=delivery.attempts,
        )
        return False

    async def _persist(self, subscription: Subscription, delivery: WebhookDelivery) -> None:
        """Write the finalized delivery and update the subscription summary."""
        try:
            await self._store.upsert_delivery(delivery)
        except StoreError as e:
            self._logger.error(
                "delivery_persist_failed",
                delivery_id=delivery.id,
                error=str(e),
            )

        outcome = (
            DeliveryStatus.SUCCESS
            if delivery.status == DeliveryStatus.SUCCESS
            else DeliveryStatus.FAILED
        )
        try:
            await self._store.record_delivery_outcome(
                subscription.id,
                outcome,
                datetime.now(UTC),
            )
        except Exception as e:
            self._logger.warning(
                "subscription_summary_update_failed",
                subscription_id=subscription.id,
                error=str(e),
            )
