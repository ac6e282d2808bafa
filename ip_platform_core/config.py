"""
Centralized configuration management for the IP platform core.

This module provides a unified configuration system with support for:
- Environment variables
- Gateway and webhook tuning knobs
- Validation using Pydantic
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, Limits, LogLevel, QueueName, Timeouts
from .enums import RateLimitBackend


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DATABASE_URL.value, "sqlite:///./ip_platform.db"
        ),
        description="Database connection string",
    )
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL statements")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        validate_default=True,
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )
    enable_logs_queue: bool = Field(
        default=False, description="Ship log records to an Azure Storage Queue"
    )
    logs_queue_name: str = Field(default=QueueName.LOGS.value, description="Logs queue name")

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class GatewayConfig(BaseModel):
    """API key issuance and rate limiting defaults."""

    key_prefix: str = Field(default=Limits.API_KEY_PREFIX, description="Raw API key prefix")
    key_bytes: int = Field(
        default=Limits.API_KEY_BYTES, ge=32, description="Random bytes per API key"
    )
    display_prefix_length: int = Field(
        default=Limits.API_KEY_DISPLAY_PREFIX_LENGTH, description="Characters shown in the UI"
    )
    default_rate_limit: int = Field(
        default=Limits.DEFAULT_RATE_LIMIT_PER_HOUR, gt=0, description="Requests per rolling window"
    )
    rate_limit_window_seconds: int = Field(
        default=Limits.RATE_LIMIT_WINDOW_SECONDS, gt=0, description="Sliding window length"
    )


class RateLimitConfig(BaseModel):
    """Usage counter store selection."""

    backend: RateLimitBackend = Field(
        default_factory=lambda: RateLimitBackend(
            os.getenv(EnvironmentVariable.RATE_LIMIT_BACKEND.value, RateLimitBackend.DATABASE.value)
        ),
        description="Where usage events are counted",
    )
    redis_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.REDIS_URL.value, "redis://localhost:6379/0"
        ),
        description="Redis connection URL for the redis backend",
    )
    redis_key_prefix: str = Field(default="rate_limit:api_key", description="Redis key namespace")


class WebhookConfig(BaseModel):
    """Webhook delivery behaviour."""

    delivery_timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(
                EnvironmentVariable.WEBHOOK_TIMEOUT_SECONDS.value, str(Timeouts.WEBHOOK_DELIVERY)
            )
        ),
        gt=0,
        validate_default=True,
        description="Hard timeout per delivery attempt",
    )
    test_timeout_seconds: float = Field(
        default=Timeouts.WEBHOOK_TEST, gt=0, description="Timeout for test deliveries"
    )
    failure_threshold: int = Field(
        default=Limits.WEBHOOK_FAILURE_THRESHOLD,
        gt=0,
        description="Consecutive failures before a subscription is disabled",
    )
    response_body_max_chars: int = Field(default=Limits.DELIVERY_RESPONSE_MAX_CHARS)
    error_body_max_chars: int = Field(default=Limits.DELIVERY_ERROR_BODY_MAX_CHARS)
    test_response_max_chars: int = Field(default=Limits.TEST_RESPONSE_MAX_CHARS)
    secret_bytes: int = Field(default=Limits.WEBHOOK_SECRET_BYTES, ge=32)
    user_agent: str = Field(default="IPPlatform-Webhook/1.0")


class AuditConfig(BaseModel):
    """Audit trail sinks."""

    enable_queue: bool = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.AUDIT_QUEUE_ENABLED.value, "false"
        ).lower()
        == "true",
        description="Send audit entries to an Azure Storage Queue",
    )
    queue_name: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.AUDIT_QUEUE_NAME.value, QueueName.AUDIT.value
        )
    )
    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.DEBUG.value, "false").lower()
        == "true",
        description="Debug mode",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    webhooks: WebhookConfig = Field(default_factory=WebhookConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    custom: Dict[str, Any] = Field(default_factory=dict, description="Custom configuration values")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()

    def get_custom(self, key: str, default: Any = None) -> Any:
        """Get a custom configuration value."""
        return self.custom.get(key, default)


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
