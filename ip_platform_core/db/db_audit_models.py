"""
Audit trail model.
"""

from sqlalchemy import Column, Index, String, Text

from .db_base import JSON, TimestampMixin, UUIDMixin
from .db_config import Base


class AuditLog(Base, UUIDMixin, TimestampMixin):
    """A record of a security-relevant change made by or for a tenant."""

    __tablename__ = "audit_logs"

    tenant_id = Column(String(100), nullable=False)
    actor_id = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)

    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    # "metadata" is reserved on declarative models
    context = Column("metadata", JSON, nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_tenant_created", "tenant_id", "created_at"),
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )
