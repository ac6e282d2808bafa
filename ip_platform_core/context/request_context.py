"""Explicit caller context passed into every mutating operation."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class RequestContext(BaseModel):
    """Who is acting, for which tenant, and from where."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    actor_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @field_validator("tenant_id")
    def validate_tenant_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("tenant_id must be a non-empty string")
        return v.strip()
