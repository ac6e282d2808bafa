"""
Constants and enums for the IP platform core.

This module centralizes the magic strings shared by the credential gateway
and the webhook dispatcher: event names, audit actions, scopes, header names
and numeric limits.
"""

from enum import Enum


class WebhookEvent(str, Enum):
    """Domain events a tenant may subscribe a webhook endpoint to."""

    CASE_CREATED = "case.created"
    CASE_UPDATED = "case.updated"
    CASE_DELETED = "case.deleted"
    CASE_STATUS_CHANGED = "case.status_changed"
    FORM_CREATED = "form.created"
    FORM_SUBMITTED = "form.submitted"
    FORM_APPROVED = "form.approved"
    RECORDING_TRANSCRIBED = "recording.transcribed"
    RECORDING_ANALYZED = "recording.analyzed"
    MEMBER_ADDED = "member.added"
    MEMBER_REMOVED = "member.removed"

    # Reserved for endpoint configuration checks, never dispatched
    TEST = "webhook.test"

    @classmethod
    def subscribable(cls) -> list[str]:
        """Event names a subscription may list."""
        return [event.value for event in cls if event is not cls.TEST]


class AuditAction(str, Enum):
    """Audit actions emitted by the core."""

    API_KEY_CREATED = "api_key.created"
    API_KEY_DELETED = "api_key.deleted"
    WEBHOOK_CREATED = "webhook.created"
    WEBHOOK_UPDATED = "webhook.updated"
    WEBHOOK_DELETED = "webhook.deleted"
    WEBHOOK_DISABLED = "webhook.disabled"


class ApiScope(str, Enum):
    """Scopes an API key may be issued with."""

    CASES_READ = "cases.read"
    CASES_WRITE = "cases.write"
    CASES_DELETE = "cases.delete"
    FORMS_READ = "forms.read"
    FORMS_WRITE = "forms.write"
    RECORDINGS_READ = "recordings.read"
    RECORDINGS_WRITE = "recordings.write"
    RECORDINGS_TRANSCRIBE = "recordings.transcribe"
    MEMBERS_READ = "members.read"
    WEBHOOKS_MANAGE = "webhooks.manage"
    ALL = "*"


API_SCOPE_LABELS = {
    ApiScope.CASES_READ: "Read cases",
    ApiScope.CASES_WRITE: "Create and update cases",
    ApiScope.CASES_DELETE: "Delete cases",
    ApiScope.FORMS_READ: "Read forms",
    ApiScope.FORMS_WRITE: "Create and update forms",
    ApiScope.RECORDINGS_READ: "Read recordings",
    ApiScope.RECORDINGS_WRITE: "Create recordings",
    ApiScope.RECORDINGS_TRANSCRIBE: "Transcribe recordings",
    ApiScope.MEMBERS_READ: "Read team members",
    ApiScope.WEBHOOKS_MANAGE: "Manage webhooks",
    ApiScope.ALL: "Full access (all permissions)",
}


class WebhookHeader(str, Enum):
    """Headers sent with every webhook delivery."""

    SIGNATURE = "X-Webhook-Signature"
    EVENT = "X-Webhook-Event"
    TIMESTAMP = "X-Webhook-Timestamp"


class RateLimitHeader(str, Enum):
    """Standard rate-limit response headers."""

    LIMIT = "X-RateLimit-Limit"
    REMAINING = "X-RateLimit-Remaining"
    RESET = "X-RateLimit-Reset"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    RATE_LIMIT_BACKEND = "RATE_LIMIT_BACKEND"
    REDIS_URL = "REDIS_URL"
    AUDIT_QUEUE_ENABLED = "AUDIT_QUEUE_ENABLED"
    AUDIT_QUEUE_NAME = "AUDIT_QUEUE_NAME"
    WEBHOOK_TIMEOUT_SECONDS = "WEBHOOK_TIMEOUT_SECONDS"


class QueueName(str, Enum):
    """Queue names used by the core."""

    LOGS = "logs-queue"
    AUDIT = "audit-queue"


# Numeric constants
class Limits:
    """System limits and thresholds."""

    API_KEY_PREFIX = "ip_"
    API_KEY_BYTES = 32
    API_KEY_DISPLAY_PREFIX_LENGTH = 12
    DEFAULT_RATE_LIMIT_PER_HOUR = 1000
    RATE_LIMIT_WINDOW_SECONDS = 3600
    WEBHOOK_SECRET_BYTES = 32
    WEBHOOK_FAILURE_THRESHOLD = 10
    DELIVERY_RESPONSE_MAX_CHARS = 10000
    DELIVERY_ERROR_BODY_MAX_CHARS = 500
    TEST_RESPONSE_MAX_CHARS = 1000
    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 500


# Time-related constants (in seconds)
class Timeouts:
    """Timeout values in seconds."""

    WEBHOOK_DELIVERY = 30
    WEBHOOK_TEST = 10
