"""Webhook history API endpoints.

Provides a read-only REST view of emitted events and their delivery
attempts, so merchants can debug their endpoints.
"""

from typing import Any, Literal

import structlog
from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from settlr_webhooks.errors import InvalidEventTypeError, InvalidQueryError
from settlr_webhooks.webhooks.dispatcher import get_webhook_dispatcher
from settlr_webhooks.webhooks.events import WebhookEvent, WebhookEventType
from settlr_webhooks.webhooks.models import DeliveryStatus, WebhookDelivery
from settlr_webhooks.webhooks.queries import WebhookQueryService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

MAX_PAGE_SIZE = 100


def get_query_service() -> WebhookQueryService:
    """Build a query service over the global dispatcher's store."""
    return WebhookQueryService(get_webhook_dispatcher().store)


# ============================================================================
# Response Models
# ============================================================================


class DeliverySummaryResponse(BaseModel):
    """Delivery attempt summary shown inline with an event."""

    id: str
    url: str
    status: DeliveryStatus
    http_status: int | None
    attempts: int
    last_attempt_at: str | None
    error_message: str | None

    @classmethod
    def from_delivery(cls, delivery: WebhookDelivery) -> "DeliverySummaryResponse":
        """Create response from WebhookDelivery model."""
        return cls(
            id=delivery.id,
            url=delivery.url,
            status=delivery.status,
            http_status=delivery.http_status,
            attempts=delivery.attempts,
            last_attempt_at=delivery.last_attempt_at.isoformat() if delivery.last_attempt_at else None,
            error_message=delivery.error_message,
        )


class WebhookDeliveryResponse(BaseModel):
    """Webhook delivery details response."""

    id: str
    event_id: str
    subscription_id: str
    url: str
    status: DeliveryStatus
    http_status: int | None
    attempts: int
    max_attempts: int
    last_attempt_at: str | None
    next_retry_at: str | None
    response_body: str | None
    error_message: str | None
    created_at: str

    @classmethod
    def from_delivery(cls, delivery: WebhookDelivery) -> "WebhookDeliveryResponse":
        """Create response from WebhookDelivery model."""
        return cls(
            id=delivery.id,
            event_id=delivery.event_id,
            subscription_id=delivery.subscription_id,
            url=delivery.url,
            status=delivery.status,
            http_status=delivery.http_status,
            attempts=delivery.attempts,
            max_attempts=delivery.max_attempts,
            last_attempt_at=delivery.last_attempt_at.isoformat() if delivery.last_attempt_at else None,
            next_retry_at=delivery.next_retry_at.isoformat() if delivery.next_retry_at else None,
            response_body=delivery.response_body,
            error_message=delivery.error_message,
            created_at=delivery.created_at.isoformat(),
        )


class WebhookEventResponse(BaseModel):
    """Webhook event with inline delivery summaries."""

    id: str
    type: WebhookEventType
    business_id: str
    data: dict[str, Any]
    created_at: str
    deliveries: list[DeliverySummaryResponse]

    @classmethod
    def from_event(
        cls,
        event: WebhookEvent,
        deliveries: list[WebhookDelivery],
    ) -> "WebhookEventResponse":
        """Create response from a WebhookEvent and its deliveries."""
        return cls(
            id=event.id,
            type=event.type,
            business_id=event.business_id,
            data=event.data,
            created_at=event.created_at_iso,
            deliveries=[DeliverySummaryResponse.from_delivery(d) for d in deliveries],
        )


class EventListResponse(BaseModel):
    """Paginated event list."""

    events: list[WebhookEventResponse]
    count: int
    limit: int
    offset: int


class DeliveryListResponse(BaseModel):
    """Flat list of recent deliveries."""

    deliveries: list[WebhookDeliveryResponse]
    count: int
    limit: int


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/events",
    response_model=EventListResponse | DeliveryListResponse,
    responses={
        400: {"description": "Invalid query"},
    },
)
async def list_webhook_events(
    business_id: str = Query(..., min_length=1, description="Business to query"),
    type: WebhookEventType | None = Query(default=None, description="Filter by event type"),
    limit: int = Query(default=20, ge=1, description="Page size (capped at 100)"),
    offset: int = Query(default=0, ge=0, description="Events to skip"),
    view: Literal["events", "deliveries"] = Query(default="events"),
) -> EventListResponse | DeliveryListResponse:
    """List webhook events for a business.

    Each event includes its five most recent delivery attempts. With
    `view=deliveries`, returns a flat list of recent deliveries instead.
    """
    service = get_query_service()
    page_size = min(limit, MAX_PAGE_SIZE)

    try:
        if view == "deliveries":
            deliveries = await service.list_recent_deliveries(business_id, limit=page_size)
            return DeliveryListResponse(
                deliveries=[WebhookDeliveryResponse.from_delivery(d) for d in deliveries],
                count=len(deliveries),
                limit=page_size,
            )

        events = await service.list_events_with_deliveries(
            business_id,
            event_type=type,
            limit=page_size,
            offset=offset,
        )
    except (InvalidQueryError, InvalidEventTypeError) as e:
        raise HTTPException(status_code=400, detail=e.message) from e

    logger.debug(
        "webhook_events_listed",
        business_id=business_id,
        count=len(events),
    )

    return EventListResponse(
        events=[WebhookEventResponse.from_event(e.event, e.deliveries) for e in events],
        count=len(events),
        limit=page_size,
        offset=offset,
    )


@router.get(
    "/events/{event_id}/deliveries",
    response_model=list[WebhookDeliveryResponse],
)
async def list_event_deliveries(
    event_id: str,
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
) -> list[WebhookDeliveryResponse]:
    """List delivery attempts for one event, newest first."""
    service = get_query_service()
    deliveries = await service.list_deliveries(event_id, limit=limit)
    return [WebhookDeliveryResponse.from_delivery(d) for d in deliveries]
