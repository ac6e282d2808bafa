"""
Unit tests for the configuration layer.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from ip_platform_core.config import AppConfig
from ip_platform_core.config import DatabaseConfig as AppDatabaseConfig
from ip_platform_core.config import (
    GatewayConfig,
    LoggingConfig,
    WebhookConfig,
    get_config,
    reset_config,
    set_config,
)
from ip_platform_core.db import (
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    initialize_db,
    set_db_manager,
)
from ip_platform_core.enums import RateLimitBackend
from ip_platform_core.exceptions import ServiceError, ValidationError


class TestAppConfig:
    """Test AppConfig defaults and the global instance."""

    def test_defaults(self, monkeypatch):
        for name in ("RATE_LIMIT_BACKEND", "WEBHOOK_TIMEOUT_SECONDS", "AUDIT_QUEUE_ENABLED"):
            monkeypatch.delenv(name, raising=False)

        config = AppConfig()

        assert config.gateway.key_prefix == "ip_"
        assert config.gateway.default_rate_limit == 1000
        assert config.gateway.rate_limit_window_seconds == 3600
        assert config.webhooks.failure_threshold == 10
        assert config.webhooks.delivery_timeout_seconds == 30
        assert config.webhooks.test_timeout_seconds == 10
        assert config.rate_limit.backend == RateLimitBackend.DATABASE
        assert config.audit.enable_queue is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_BACKEND", "redis")
        monkeypatch.setenv("WEBHOOK_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("AUDIT_QUEUE_ENABLED", "true")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = AppConfig.from_env()

        assert config.rate_limit.backend == RateLimitBackend.REDIS
        assert config.webhooks.delivery_timeout_seconds == 5.0
        assert config.audit.enable_queue is True
        assert config.logging.level == "DEBUG"

    def test_environment_values_are_validated(self, monkeypatch):
        """Test that env-sourced defaults go through the field validators."""
        monkeypatch.setenv("LOG_LEVEL", "garbage")
        with pytest.raises(PydanticValidationError):
            LoggingConfig()

        monkeypatch.setenv("LOG_LEVEL", "warning")
        assert LoggingConfig().level == "WARNING"

        monkeypatch.setenv("WEBHOOK_TIMEOUT_SECONDS", "0")
        with pytest.raises(PydanticValidationError):
            WebhookConfig()

    def test_global_instance(self):
        custom = AppConfig(custom={"feature": "on"})

        set_config(custom)
        assert get_config() is custom
        assert get_config().get_custom("feature") == "on"

        reset_config()
        assert get_config() is not custom

    def test_invalid_values(self):
        with pytest.raises(PydanticValidationError):
            LoggingConfig(level="LOUD")
        with pytest.raises(PydanticValidationError):
            GatewayConfig(key_bytes=16)
        with pytest.raises(PydanticValidationError):
            WebhookConfig(failure_threshold=0)


class TestDatabaseConfig:
    """Test DatabaseConfig and DatabaseManager setup."""

    def test_sqlite_connection_string(self):
        config = DatabaseConfig(db_type="sqlite", database=":memory:")
        assert config.is_sqlite
        assert config.get_connection_string() == "sqlite:///:memory:"

    def test_postgres_connection_string(self):
        config = DatabaseConfig(
            host="db", database="ip", username="svc", password="secret", port="5433"
        )
        assert config.get_connection_string() == "postgresql://svc:secret@db:5433/ip"
        assert "secret" not in repr(config)

    def test_url_wins(self):
        config = DatabaseConfig(url="sqlite:///./local.db")
        assert config.is_sqlite
        assert config.get_connection_string() == "sqlite:///./local.db"

    def test_incomplete_postgres_config(self):
        with pytest.raises(ValidationError):
            DatabaseConfig(host="db").get_connection_string()

    def test_development_config(self, monkeypatch):
        monkeypatch.delenv("DEV_DB_PATH", raising=False)

        config = get_development_config()

        assert config.is_sqlite
        assert config.development_mode is True
        assert config.get_connection_string() == "sqlite:///:memory:"

    def test_production_config_reads_database_url(self):
        set_config(AppConfig(database=AppDatabaseConfig(connection_string="sqlite:///./prod.db")))

        config = get_production_config()

        assert config.get_connection_string() == "sqlite:///./prod.db"
        assert config.development_mode is False

    def test_global_manager_lifecycle(self, db_manager):
        """Test swapping the global manager and closing it."""
        manager = initialize_db(DatabaseConfig(db_type="sqlite", database=":memory:"))
        try:
            assert get_db_manager() is manager
            close_db()
            with pytest.raises(ServiceError):
                get_db_manager()
        finally:
            set_db_manager(db_manager)

        assert get_db_manager() is db_manager

    def test_drop_tables_requires_development_mode(self):
        manager = DatabaseManager(DatabaseConfig(db_type="sqlite", database=":memory:"))
        try:
            with pytest.raises(ServiceError):
                manager.drop_tables()
        finally:
            manager.close()
