"""SQLite-backed webhook store.

Persistent implementation of WebhookStore using aiosqlite. Each operation
opens its own connection, so concurrent delivery tasks never share a
cursor; writes that hit a locked database are retried with exponential
backoff before surfacing as StoreError.

Rows are mapped back through the pydantic models, so a malformed row fails
loudly at the boundary instead of leaking half-typed dictionaries.
"""

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from settlr_webhooks.errors import StoreError
from settlr_webhooks.storage.base import WebhookStore
from settlr_webhooks.webhooks.events import WebhookEvent, WebhookEventType
from settlr_webhooks.webhooks.models import DeliveryStatus, Subscription, WebhookDelivery

logger = structlog.get_logger(__name__)

DEFAULT_DB_PATH = Path("data/webhooks.db")

# Attempts for an operation that hits "database is locked"
LOCK_RETRY_ATTEMPTS = 3


def _ts(value: datetime | None) -> str | None:
    """Render a datetime as a sortable UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SQLiteWebhookStore(WebhookStore):
    """SQLite-based storage for webhook events, deliveries and subscriptions."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. Uses default if not provided.
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._logger = logger.bind(component="sqlite_webhook_store")
        self._initialized = False

    async def initialize(self) -> None:
        await self._ensure_initialized()

    async def _ensure_initialized(self) -> None:
        """Ensure database tables exist."""
        if self._initialized:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS webhook_events (
                        id TEXT PRIMARY KEY,
                        type TEXT NOT NULL,
                        business_id TEXT NOT NULL,
                        data TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS webhook_deliveries (
                        id TEXT PRIMARY KEY,
                        event_id TEXT NOT NULL,
                        subscription_id TEXT NOT NULL,
                        url TEXT NOT NULL,
                        status TEXT NOT NULL,
                        http_status INTEGER,
                        attempts INTEGER NOT NULL,
                        max_attempts INTEGER NOT NULL,
                        last_attempt_at TEXT,
                        next_retry_at TEXT,
                        response_body TEXT,
                        error_message TEXT,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (event_id) REFERENCES webhook_events(id)
                    )
                """)

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS webhook_subscriptions (
                        id TEXT PRIMARY KEY,
                        business_id TEXT NOT NULL,
                        url TEXT NOT NULL,
                        secret TEXT NOT NULL,
                        events TEXT NOT NULL,
                        active INTEGER NOT NULL,
                        created_at TEXT NOT NULL,
                        last_delivery_at TEXT,
                        last_delivery_status TEXT
                    )
                """)

                # Indexes for common queries
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_events_business_created
                    ON webhook_events(business_id, created_at)
                """)

                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_deliveries_event
                    ON webhook_deliveries(event_id, created_at)
                """)

                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_deliveries_retry
                    ON webhook_deliveries(status, next_retry_at)
                """)

                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_subscriptions_business
                    ON webhook_subscriptions(business_id, active)
                """)

                await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(
                f"Failed to initialize webhook store: {e}",
                operation="initialize",
                details={"db_path": str(self.db_path)},
            ) from e

        self._initialized = True
        self._logger.info("storage_initialized", db_path=str(self.db_path))

    async def _write(self, operation: str, sql: str, params: Sequence[Any]) -> int:
        """Execute a write statement with lock retries.

        Returns:
            Number of rows affected.
        """
        await self._ensure_initialized()

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(aiosqlite.OperationalError),
                stop=stop_after_attempt(LOCK_RETRY_ATTEMPTS),
                wait=wait_exponential(multiplier=0.05, max=1),
                reraise=True,
            ):
                with attempt:
                    async with aiosqlite.connect(self.db_path) as db:
                        cursor = await db.execute(sql, params)
                        await db.commit()
                        return cursor.rowcount
        except aiosqlite.Error as e:
            self._logger.error("store_write_failed", operation=operation, error=str(e))
            raise StoreError(
                f"Webhook store {operation} failed: {e}",
                operation=operation,
            ) from e
        return 0

    async def _fetch(
        self,
        operation: str,
        sql: str,
        params: Sequence[Any],
    ) -> list[dict[str, Any]]:
        """Run a query and return rows as dictionaries."""
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(sql, params) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            self._logger.error("store_read_failed", operation=operation, error=str(e))
            raise StoreError(
                f"Webhook store {operation} failed: {e}",
                operation=operation,
            ) from e

        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def insert_event(self, event: WebhookEvent) -> None:
        await self._write(
            "insert_event",
            """
            INSERT INTO webhook_events (id, type, business_id, data, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.type.value,
                event.business_id,
                json.dumps(event.data),
                _ts(event.created_at),
            ),
        )
        self._logger.debug("event_saved", event_id=event.id, event_type=event.type.value)

    async def get_event(self, event_id: str) -> WebhookEvent | None:
        rows = await self._fetch(
            "get_event",
            "SELECT * FROM webhook_events WHERE id = ?",
            (event_id,),
        )
        return self._row_to_event(rows[0]) if rows else None

    async def list_events(
        self,
        business_id: str,
        *,
        event_type: WebhookEventType | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[WebhookEvent]:
        conditions = ["business_id = ?"]
        params: list[Any] = [business_id]

        if event_type:
            conditions.append("type = ?")
            params.append(event_type.value)

        # SQLite needs a LIMIT clause for OFFSET; -1 means unbounded
        params.extend([limit if limit is not None else -1, offset])

        rows = await self._fetch(
            "list_events",
            f"""
            SELECT * FROM webhook_events
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC, rowid DESC
            LIMIT ? OFFSET ?
            """,
            params,
        )
        return [self._row_to_event(row) for row in rows]

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    async def upsert_delivery(self, delivery: WebhookDelivery) -> None:
        await self._write(
            "upsert_delivery",
            """
            INSERT INTO webhook_deliveries (
                id, event_id, subscription_id, url, status, http_status,
                attempts, max_attempts, last_attempt_at, next_retry_at,
                response_body, error_message, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                http_status = excluded.http_status,
                attempts = excluded.attempts,
                max_attempts = excluded.max_attempts,
                last_attempt_at = excluded.last_attempt_at,
                next_retry_at = excluded.next_retry_at,
                response_body = excluded.response_body,
                error_message = excluded.error_message
            """,
            (
                delivery.id,
                delivery.event_id,
                delivery.subscription_id,
                delivery.url,
                delivery.status.value,
                delivery.http_status,
                delivery.attempts,
                delivery.max_attempts,
                _ts(delivery.last_attempt_at),
                _ts(delivery.next_retry_at),
                delivery.response_body,
                delivery.error_message,
                _ts(delivery.created_at),
            ),
        )
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
        rows = await self._fetch(
            "list_deliveries",
            """
            SELECT * FROM webhook_deliveries
            WHERE event_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (event_id, limit if limit is not None else -1),
        )
        return [self._row_to_delivery(row) for row in rows]

    async def list_deliveries_for_events(
        self,
        event_ids: Sequence[str],
        *,
        limit: int | None = None,
    ) -> list[WebhookDelivery]:
        ids = list(dict.fromkeys(event_ids))
        if not ids:
            return []

        placeholders = ", ".join("?" for _ in ids)
        rows = await self._fetch(
            "list_deliveries_for_events",
            f"""
            SELECT * FROM webhook_deliveries
            WHERE event_id IN ({placeholders})
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            [*ids, limit if limit is not None else -1],
        )
        return [self._row_to_delivery(row) for row in rows]

    async def list_due_retries(
        self,
        now: datetime,
        *,
        limit: int = 100,
    ) -> list[WebhookDelivery]:
        rows = await self._fetch(
            "list_due_retries",
            """
            SELECT * FROM webhook_deliveries
            WHERE status = ?
              AND next_retry_at IS NOT NULL
              AND next_retry_at <= ?
              AND attempts < max_attempts
            ORDER BY next_retry_at ASC
            LIMIT ?
            """,
            (DeliveryStatus.FAILED.value, _ts(now), limit),
        )
        return [self._row_to_delivery(row) for row in rows]

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        await self._write(
            "save_subscription",
            """
            INSERT OR REPLACE INTO webhook_subscriptions (
                id, business_id, url, secret, events, active, created_at,
                last_delivery_at, last_delivery_status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                subscription.id,
                subscription.business_id,
                subscription.url,
                subscription.secret,
                json.dumps(subscription.events),
                int(subscription.active),
                _ts(subscription.created_at),
                _ts(subscription.last_delivery_at),
                subscription.last_delivery_status.value
                if subscription.last_delivery_status
                else None,
            ),
        )
        self._logger.info(
            "subscription_saved",
            subscription_id=subscription.id,
            business_id=subscription.business_id,
            events=subscription.events,
        )
        return subscription

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        rows = await self._fetch(
            "get_subscription",
            "SELECT * FROM webhook_subscriptions WHERE id = ?",
            (subscription_id,),
        )
        return self._row_to_subscription(rows[0]) if rows else None

    async def list_subscriptions(
        self,
        business_id: str,
        *,
        active_only: bool = True,
    ) -> list[Subscription]:
        sql = "SELECT * FROM webhook_subscriptions WHERE business_id = ?"
        params: list[Any] = [business_id]
        if active_only:
            sql += " AND active = 1"
        sql += " ORDER BY created_at ASC"

        rows = await self._fetch("list_subscriptions", sql, params)
        return [self._row_to_subscription(row) for row in rows]

    async def record_delivery_outcome(
        self,
        subscription_id: str,
        status: DeliveryStatus,
        at: datetime,
    ) -> None:
        await self._write(
            "record_delivery_outcome",
            """
            UPDATE webhook_subscriptions
            SET last_delivery_at = ?, last_delivery_status = ?
            WHERE id = ?
            """,
            (_ts(at), status.value, subscription_id),
        )

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_event(self, row: dict[str, Any]) -> WebhookEvent:
        """Convert a database row to a WebhookEvent."""
        return WebhookEvent(
            id=row["id"],
            type=WebhookEventType(row["type"]),
            business_id=row["business_id"],
            data=json.loads(row["data"]) if row["data"] else {},
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_delivery(self, row: dict[str, Any]) -> WebhookDelivery:
        """Convert a database row to a WebhookDelivery."""
        return WebhookDelivery(
            id=row["id"],
            event_id=row["event_id"],
            subscription_id=row["subscription_id"],
            url=row["url"],
            status=DeliveryStatus(row["status"]),
            http_status=row["http_status"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            last_attempt_at=(
                datetime.fromisoformat(row["last_attempt_at"])
                if row["last_attempt_at"]
                else None
            ),
            next_retry_at=(
                datetime.fromisoformat(row["next_retry_at"])
                if row["next_retry_at"]
                else None
            ),
            response_body=row["response_body"],
            error_message=row["error_message"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_subscription(self, row: dict[str, Any]) -> Subscription:
        """Convert a database row to a Subscription."""
        return Subscription(
            id=row["id"],
            business_id=row["business_id"],
            url=row["url"],
            secret=row["secret"],
            events=json.loads(row["events"]),
            active=bool(row["active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_delivery_at=(
                datetime.fromisoformat(row["last_delivery_at"])
                if row["last_delivery_at"]
                else None
            ),
            last_delivery_status=(
                DeliveryStatus(row["last_delivery_status"])
                if row["last_delivery_status"]
                else None
            ),
        )
