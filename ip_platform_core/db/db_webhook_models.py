"""
Webhook subscription and delivery models.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from .db_base import JSON, EncryptedBinary, TimestampMixin, UUIDMixin
from .db_config import Base


class WebhookSubscription(Base, UUIDMixin, TimestampMixin):
    """A tenant's endpoint registration for a set of event names."""

    __tablename__ = "webhook_subscriptions"

    tenant_id = Column(String(100), nullable=False, index=True)
    url = Column(String(2048), nullable=False)
    events = Column(JSON, nullable=False)

    # Signing secret, encrypted with pgcrypto on PostgreSQL
    secret = Column(EncryptedBinary, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    failure_count = Column(Integer, nullable=False, default=0)
    last_delivery_at = Column(DateTime(timezone=True), nullable=True)

    description = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)

    # Set by delete_subscription; the row and its deliveries are kept
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_webhook_subscriptions_tenant_active", "tenant_id", "is_active"),)


class WebhookDelivery(Base, UUIDMixin, TimestampMixin):
    """One delivery attempt. Append-only."""

    __tablename__ = "webhook_deliveries"

    subscription_id = Column(String(36), ForeignKey("webhook_subscriptions.id"), nullable=False)
    tenant_id = Column(String(100), nullable=False)
    event = Column(String(100), nullable=False)

    # Full envelope snapshot as sent
    payload = Column(JSON, nullable=False)

    status_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=False)
    error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_webhook_deliveries_subscription", "subscription_id", "created_at"),
        Index("ix_webhook_deliveries_tenant", "tenant_id", "created_at"),
    )
