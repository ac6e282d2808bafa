from .api_key_service import ApiKeyService
from .audit_service import (
    AuditLogService,
    AuditSink,
    DatabaseAuditSink,
    NullAuditSink,
    QueueAuditSink,
    emit_audit,
    get_audit_sink,
)
from .base_service import SessionManagedService
from .rate_limit_service import (
    DatabaseUsageCounter,
    RateLimiter,
    RedisUsageCounter,
    UsageCounter,
    get_usage_counter,
)
from .webhook_dispatcher import WebhookDispatcher, build_envelope
from .webhook_service import WebhookService

__all__ = [
    "SessionManagedService",
    # Credential gateway
    "ApiKeyService",
    "RateLimiter",
    "UsageCounter",
    "DatabaseUsageCounter",
    "RedisUsageCounter",
    "get_usage_counter",
    # Webhooks
    "WebhookService",
    "WebhookDispatcher",
    "build_envelope",
    # Audit
    "AuditSink",
    "AuditLogService",
    "DatabaseAuditSink",
    "QueueAuditSink",
    "NullAuditSink",
    "emit_audit",
    "get_audit_sink",
]
