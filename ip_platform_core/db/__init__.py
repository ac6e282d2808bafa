from .db_api_key_models import ApiKey, ApiKeyUsage
from .db_audit_models import AuditLog
from .db_base import JSON, EncryptedBinary, TimestampMixin, UUIDMixin, ensure_utc, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    import_all_models,
    init_db,
    initialize_db,
    set_db_manager,
)
from .db_webhook_models import WebhookDelivery, WebhookSubscription

__all__ = [
    # Base and mixins
    "Base",
    "JSON",
    "EncryptedBinary",
    "TimestampMixin",
    "UUIDMixin",
    "ensure_utc",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "get_development_config",
    "get_production_config",
    "import_all_models",
    "init_db",
    "initialize_db",
    "get_db_manager",
    "set_db_manager",
    "close_db",
    # Models
    "ApiKey",
    "ApiKeyUsage",
    "AuditLog",
    "WebhookDelivery",
    "WebhookSubscription",
]
