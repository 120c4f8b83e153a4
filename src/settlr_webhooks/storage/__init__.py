"""Persistence for webhook events, deliveries and subscriptions.

This module provides:
- WebhookStore: Abstract store contract used by the dispatch engine
- InMemoryWebhookStore: Fallback and test double
- SQLiteWebhookStore: Persistent aiosqlite-backed store
- create_store: Pick an implementation from settings
"""

import structlog

from settlr_webhooks.config import Settings
from settlr_webhooks.config import settings as default_settings
from settlr_webhooks.storage.base import WebhookStore
from settlr_webhooks.storage.memory import InMemoryWebhookStore
from settlr_webhooks.storage.sqlite import SQLiteWebhookStore

logger = structlog.get_logger(__name__)


def create_store(config: Settings | None = None) -> WebhookStore:
    """Create the store selected by configuration.

    Args:
        config: Settings to read (uses global settings if not provided).

    Returns:
        SQLiteWebhookStore when WEBHOOK_DB_PATH is set, otherwise
        InMemoryWebhookStore.
    """
    config = config or default_settings
    if config.WEBHOOK_DB_PATH:
        logger.info("webhook_store_selected", backend="sqlite", db_path=config.WEBHOOK_DB_PATH)
        return SQLiteWebhookStore(config.WEBHOOK_DB_PATH)

    logger.info("webhook_store_selected", backend="memory")
    return InMemoryWebhookStore()


__all__ = [
    "InMemoryWebhookStore",
    "SQLiteWebhookStore",
    "WebhookStore",
    "create_store",
]
