"""FastAPI application for the Settlr webhook service.

This module provides:
- Application factory with lifespan handling
- Health check endpoints
- Webhook history routes integration
- CORS configuration
- Error handling
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException

from settlr_webhooks.config import settings
from settlr_webhooks.errors import SettlrWebhookError, StoreError
from settlr_webhooks.logging import configure_logging, is_configured
from settlr_webhooks.webhooks.dispatcher import get_webhook_dispatcher

logger = structlog.get_logger(__name__)


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    detail: str | None = Field(default=None, description="Detailed error information")


# ============================================================================
# Application Setup
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    """Application lifespan handler."""
    # Startup
    if not is_configured():
        configure_logging(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    logger.info("application_starting", environment=settings.ENVIRONMENT)

    dispatcher = get_webhook_dispatcher()
    await dispatcher.store.initialize()

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await dispatcher.shutdown()
    await dispatcher.store.close()


OPENAPI_TAGS = [
    {
        "name": "Webhooks",
        "description": "Webhook event history and delivery attempts, for debugging "
        "merchant endpoints.",
    },
    {
        "name": "Health",
        "description": "Health check endpoints for monitoring service status.",
    },
]

API_DESCRIPTION = """
## Overview

Read-only view of the webhook events emitted for a business and of every
attempt made to deliver them.

Each delivery is signed with the subscription secret. Receivers verify the
`X-Settlr-Signature` header, a hex HMAC-SHA256 of the raw request body.
"""


def create_app(
    title: str = "Settlr Webhooks API",
    version: str = "1.0.0",
    description: str | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        title: API title.
        version: API version.
        description: API description (uses default if not provided).
        cors_origins: Allowed CORS origins.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title=title,
        version=version,
        description=description or API_DESCRIPTION,
        lifespan=lifespan,
        docs_url="/docs",
        openapi_url="/openapi.json",
        openapi_tags=OPENAPI_TAGS,
    )

    # Configure CORS
    origins = cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # Add exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException  # noqa: ARG001
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
                detail=None,
            ).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError  # noqa: ARG001
    ) -> JSONResponse:
        messages = [
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error="Invalid request",
                detail="; ".join(messages) or None,
            ).model_dump(),
        )

    @app.exception_handler(StoreError)
    async def store_exception_handler(
        request: Request, exc: StoreError  # noqa: ARG001
    ) -> JSONResponse:
        logger.error("store_unavailable", **exc.to_dict())
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(
                error="Webhook store unavailable",
                detail=exc.operation,
            ).model_dump(),
        )

    @app.exception_handler(SettlrWebhookError)
    async def webhook_exception_handler(
        request: Request, exc: SettlrWebhookError  # noqa: ARG001
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error=exc.message,
                detail=exc.__class__.__name__,
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception  # noqa: ARG001
    ) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc) if app.debug else None,
            ).model_dump(),
        )

    # Register routes
    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all routes on the application.

    Args:
        app: FastAPI application.
    """
    if settings.WEBHOOK_API_ENABLED:
        from settlr_webhooks.api.webhooks import router as webhooks_router

        app.include_router(webhooks_router)

    # Health endpoints
    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, Any]:
        """Basic liveness check.

        Returns simple status to confirm service is running.
        """
        return {
            "status": "ok",
            "version": app.version,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get("/health/live", tags=["Health"])
    async def liveness() -> dict[str, Any]:
        """Kubernetes-style liveness probe.

        Alias for /health endpoint.
        """
        return await health()
