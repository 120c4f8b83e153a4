"""HTTP API for webhook history and health checks."""

from settlr_webhooks.api.routes import create_app

__all__ = ["create_app"]
