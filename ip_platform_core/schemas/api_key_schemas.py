"""
Pydantic schemas for API keys and gateway decisions.

None of the read schemas expose the key hash. The raw key only ever appears
on IssuedApiKey, and is excluded from its repr.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import RateLimitHeader


class ApiKeyCreate(BaseModel):
    """Validated input for issuing a key."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    scopes: List[str] = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
    rate_limit: Optional[int] = Field(None, gt=0)

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: List[str]) -> List[str]:
        cleaned = [scope.strip() for scope in v]
        if any(not scope for scope in cleaned):
            raise ValueError("scopes cannot contain blank entries")
        return cleaned

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("expires_at must be in the future")
        return v


class ApiKeyRead(BaseModel):
    """Schema for reading API key metadata."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    name: str
    key_prefix: str
    scopes: List[str]
    is_active: bool
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    usage_count: int = 0
    rate_limit: int
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class IssuedApiKey(BaseModel):
    """Result of issuance: the stored metadata plus the raw key, shown once."""

    api_key: ApiKeyRead
    key: str = Field(..., repr=False)


class AuthenticatedKey(BaseModel):
    """Identity established from a valid raw key."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    api_key_id: str
    scopes: List[str]
    rate_limit: int


class RateLimitStatus(BaseModel):
    """Outcome of a sliding-window rate-limit check."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime

    @property
    def status_code(self) -> int:
        return 200 if self.allowed else 429

    def headers(self) -> Dict[str, str]:
        """Standard rate-limit response headers."""
        return {
            RateLimitHeader.LIMIT.value: str(self.limit),
            RateLimitHeader.REMAINING.value: str(self.remaining),
            RateLimitHeader.RESET.value: str(int(self.reset_at.timestamp())),
        }


class RateLimited(RateLimitStatus):
    """A denied rate-limit check. Returned, never raised."""

    allowed: Literal[False] = False
    remaining: Literal[0] = 0


RateLimitResult = Union[RateLimited, RateLimitStatus]


class GatewayDecision(BaseModel):
    """Result of authenticating a full request at the gateway."""

    model_config = ConfigDict(frozen=True)

    auth: AuthenticatedKey
    rate_limit: RateLimitStatus

    @property
    def allowed(self) -> bool:
        return self.rate_limit.allowed
