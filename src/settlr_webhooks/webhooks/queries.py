"""Read-side queries over the webhook audit trail.

Used by the dashboard and the webhook history API. All methods are
read-only and return empty lists when nothing matches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from settlr_webhooks.errors import InvalidQueryError
from settlr_webhooks.webhooks.events import WebhookEvent, WebhookEventType, parse_event_type
from settlr_webhooks.webhooks.models import WebhookDelivery

if TYPE_CHECKING:
    from settlr_webhooks.storage.base import WebhookStore

logger = structlog.get_logger(__name__)

DEFAULT_RECENT_DELIVERIES_LIMIT = 50


def _check_limit(limit: int | None) -> None:
    if limit is not None and limit < 1:
        raise InvalidQueryError("limit must be a positive integer", details={"limit": limit})


@dataclass
class EventWithDeliveries:
    """An event together with its most recent delivery attempts."""

    event: WebhookEvent
    deliveries: list[WebhookDelivery] = field(default_factory=list)


class WebhookQueryService:
    """Lists events and deliveries for audit and dashboard views."""

    def __init__(self, store: WebhookStore) -> None:
        """Initialize the query service.

        Args:
            store: Store to read from.
        """
        self._store = store
        self._logger = logger.bind(component="webhook_queries")

    async def list_events(
        self,
        business_id: str,
        *,
        event_type: WebhookEventType | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[WebhookEvent]:
        """List a business's events, newest first.

        Args:
            business_id: Owning business.
            event_type: Only return events of this type.
            limit: Maximum results (None = no limit).
            offset: Number of results to skip.

        Returns:
            Matching events ordered by created_at descending.

        Raises:
            InvalidQueryError: For a non-positive limit or negative offset.
            InvalidEventTypeError: For an unknown event_type filter.
        """
        _check_limit(limit)
        if offset < 0:
            raise InvalidQueryError("offset must not be negative", details={"offset": offset})

        resolved_type = parse_event_type(event_type) if event_type else None
        return await self._store.list_events(
            business_id,
            event_type=resolved_type,
            limit=limit,
            offset=offset,
        )

    async def list_deliveries(
        self,
        event_id: str,
        *,
        limit: int | None = None,
    ) -> list[WebhookDelivery]:
        """List delivery attempts for one event, newest first."""
        _check_limit(limit)
        return await self._store.list_deliveries(event_id, limit=limit)

    async def list_recent_deliveries(
        self,
        business_id: str,
        *,
        limit: int = DEFAULT_RECENT_DELIVERIES_LIMIT,
    ) -> list[WebhookDelivery]:
        """List the most recent deliveries across a business's events.

        Resolves the business's `limit` most recent event ids first, then
        the deliveries that reference them.

        Args:
            business_id: Owning business.
            limit: Maximum events considered and deliveries returned.

        Returns:
            Deliveries ordered by created_at descending.
        """
        _check_limit(limit)
        events = await self._store.list_events(business_id, limit=limit)
        if not events:
            return []

        return await self._store.list_deliveries_for_events(
            [event.id for event in events],
            limit=limit,
        )

    async def list_events_with_deliveries(
        self,
        business_id: str,
        *,
        event_type: WebhookEventType | str | None = None,
        limit: int | None = None,
        offset: int = 0,
        deliveries_per_event: int = 5,
    ) -> list[EventWithDeliveries]:
        """List events with their most recent deliveries inline.

        Args:
            business_id: Owning business.
            event_type: Only return events of this type.
            limit: Maximum events.
            offset: Number of events to skip.
            deliveries_per_event: Deliveries included per event.

        Returns:
            Events newest first, each with up to deliveries_per_event deliveries.
        """
        _check_limit(deliveries_per_event)
        events = await self.list_events(
            business_id,
            event_type=event_type,
            limit=limit,
            offset=offset,
        )

        results = []
        for event in events:
            deliveries = await self._store.list_deliveries(event.id, limit=deliveries_per_event)
            results.append(EventWithDeliveries(event=event, deliveries=deliveries))

        self._logger.debug(
            "events_with_deliveries_listed",
            business_id=business_id,
            event_count=len(results),
        )
        return results
