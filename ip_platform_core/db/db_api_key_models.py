"""
API key models.

Just the data structure - issuance, authentication and rate limiting live in
the services.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from ..constants import Limits
from .db_base import JSON, TimestampMixin, UUIDMixin, utc_now
from .db_config import Base


class ApiKey(Base, UUIDMixin, TimestampMixin):
    """A tenant-scoped API key. Only the SHA-256 hash of the raw key is stored."""

    __tablename__ = "api_keys"

    tenant_id = Column(String(100), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    key_hash = Column(String(64), nullable=False, unique=True)
    key_prefix = Column(String(32), nullable=False)

    # Ordered list of granted scope strings
    scopes = Column(JSON, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    rate_limit = Column(Integer, nullable=False, default=Limits.DEFAULT_RATE_LIMIT_PER_HOUR)

    created_by = Column(String(100), nullable=True)

    __table_args__ = (Index("ix_api_keys_tenant_active", "tenant_id", "is_active"),)


class ApiKeyUsage(Base, UUIDMixin):
    """One admitted request. Counted by the database-backed rate limiter."""

    __tablename__ = "api_key_usage"

    api_key_id = Column(
        String(36), ForeignKey("api_keys.id", ondelete="CASCADE"), nullable=False
    )
    tenant_id = Column(String(100), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (Index("ix_api_key_usage_window", "api_key_id", "used_at"),)
