"""Utility modules for the IP platform core."""

# Generic CRUD helpers
from .crud_helpers import (
    count_records,
    create_record,
    delete_record,
    get_record,
    get_record_by_id,
    list_records,
    update_record,
    update_where,
)

# Encryption utilities
from .encryption_utils import (
    decrypt_value,
    decrypt_webhook_secret,
    encrypt_value,
    encrypt_webhook_secret,
)

# Key material and signing
from .hash_utils import GeneratedApiKey, generate_api_key, generate_webhook_secret, hash_api_key
from .json_utils import dumps, dumps_compact, loads

# Logging utilities
from .logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    TenantContextFilter,
    configure_logging,
    get_logger,
)
from .queue_utils import send_message_to_queue_direct
from .scope_utils import ScopePattern, authorize
from .signature_utils import sign_payload, verify_signature

__all__ = [
    # Generic CRUD helpers
    "create_record",
    "get_record",
    "get_record_by_id",
    "update_record",
    "update_where",
    "delete_record",
    "list_records",
    "count_records",
    # Encryption utilities
    "encrypt_value",
    "decrypt_value",
    "encrypt_webhook_secret",
    "decrypt_webhook_secret",
    # Key material and signing
    "GeneratedApiKey",
    "generate_api_key",
    "generate_webhook_secret",
    "hash_api_key",
    "sign_payload",
    "verify_signature",
    "ScopePattern",
    "authorize",
    # JSON
    "dumps",
    "dumps_compact",
    "loads",
    # Queues
    "send_message_to_queue_direct",
    # Logging utilities
    "ContextAwareLogger",
    "AzureQueueHandler",
    "TenantContextFilter",
    "configure_logging",
    "get_logger",
]
