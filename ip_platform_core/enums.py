"""
Enums used across the ip_platform_core package.

This module contains enum definitions that are used by multiple modules
to avoid circular import issues.
"""

import enum


class ScopeKind(enum.Enum):
    """How a granted scope string matches a required scope."""

    ANY = "ANY"  # "*"
    PREFIX = "PREFIX"  # "forms.*"
    EXACT = "EXACT"  # "forms.read"


class DeliveryFailureKind(enum.Enum):
    """Why a webhook delivery attempt did not succeed."""

    NON_SUCCESS_STATUS = "NON_SUCCESS_STATUS"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    TIMEOUT = "TIMEOUT"


class RateLimitBackend(str, enum.Enum):
    """Stores that can count API key usage inside the sliding window."""

    DATABASE = "database"
    REDIS = "redis"
