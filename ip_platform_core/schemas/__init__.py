from .api_key_schemas import (
    ApiKeyCreate,
    ApiKeyRead,
    AuthenticatedKey,
    GatewayDecision,
    IssuedApiKey,
    RateLimited,
    RateLimitResult,
    RateLimitStatus,
)
from .audit_schemas import AuditEntry, AuditLogRead
from .webhook_schemas import (
    CreatedWebhookSubscription,
    DeliveryOutcome,
    DeliveryStats,
    TestDeliveryResult,
    WebhookDeliveryRead,
    WebhookSubscriptionCreate,
    WebhookSubscriptionRead,
    WebhookSubscriptionUpdate,
)

__all__ = [
    # API keys
    "ApiKeyCreate",
    "ApiKeyRead",
    "AuthenticatedKey",
    "GatewayDecision",
    "IssuedApiKey",
    "RateLimited",
    "RateLimitResult",
    "RateLimitStatus",
    # Audit
    "AuditEntry",
    "AuditLogRead",
    # Webhooks
    "CreatedWebhookSubscription",
    "DeliveryOutcome",
    "DeliveryStats",
    "TestDeliveryResult",
    "WebhookDeliveryRead",
    "WebhookSubscriptionCreate",
    "WebhookSubscriptionRead",
    "WebhookSubscriptionUpdate",
]
