"""
Pydantic schemas for audit entries.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import AuditAction
from ..context.request_context import RequestContext


class AuditEntry(BaseModel):
    """An audit record on its way to a sink."""

    tenant_id: str
    actor_id: Optional[str] = None
    action: AuditAction
    entity_type: str
    entity_id: Optional[str] = None
    description: Optional[str] = None
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_context(
        cls, context: RequestContext, action: AuditAction, entity_type: str, **fields: Any
    ) -> "AuditEntry":
        """Build an entry attributed to the caller described by ``context``."""
        return cls(
            tenant_id=context.tenant_id,
            actor_id=context.actor_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            action=action,
            entity_type=entity_type,
            **fields,
        )


class AuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    actor_id: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    description: Optional[str] = None
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="context")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
