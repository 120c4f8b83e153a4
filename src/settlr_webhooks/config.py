"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults.
"""

import os
from dataclasses import dataclass


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(name: str, default: int) -> int:
    """Get a positive integer from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set or not a positive integer.

    Returns:
        Integer value from environment.
    """
    value = os.getenv(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        WEBHOOK_DB_PATH: SQLite database file. None selects the in-memory store.
        WEBHOOK_MAX_CONCURRENT_DELIVERIES: Max delivery sequences in flight.
        WEBHOOK_RETRY_BATCH_SIZE: Deliveries examined per retry sweep.
        WEBHOOK_USER_AGENT: User-Agent sent with every delivery.
        WEBHOOK_API_ENABLED: Mount the webhook history routes.
        ENVIRONMENT: Deployment environment label.
        LOG_LEVEL: Logging level.
        LOG_FORMAT: "json" for production, "text" for development.
    """

    # Storage
    WEBHOOK_DB_PATH: str | None = None

    # Delivery
    WEBHOOK_MAX_CONCURRENT_DELIVERIES: int = 10
    WEBHOOK_RETRY_BATCH_SIZE: int = 100
    WEBHOOK_USER_AGENT: str = "Settlr-Webhooks/1.0"

    # API
    WEBHOOK_API_ENABLED: bool = True

    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            WEBHOOK_DB_PATH=os.getenv("WEBHOOK_DB_PATH") or None,
            WEBHOOK_MAX_CONCURRENT_DELIVERIES=_get_int_env(
                "WEBHOOK_MAX_CONCURRENT_DELIVERIES", 10
            ),
            WEBHOOK_RETRY_BATCH_SIZE=_get_int_env("WEBHOOK_RETRY_BATCH_SIZE", 100),
            WEBHOOK_USER_AGENT=os.getenv("WEBHOOK_USER_AGENT", "Settlr-Webhooks/1.0"),
            WEBHOOK_API_ENABLED=_get_bool_env("WEBHOOK_API_ENABLED", default=True),
            ENVIRONMENT=os.getenv("ENVIRONMENT", "development"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            LOG_FORMAT=os.getenv("LOG_FORMAT", "json"),
        )


# Global settings instance
settings = Settings.from_env()
