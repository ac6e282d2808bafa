"""
Pydantic schemas for webhook subscriptions, deliveries and dispatch results.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import WebhookEvent
from ..enums import DeliveryFailureKind


def _validate_url(v: str) -> str:
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return v


def _validate_events(v: List[str]) -> List[str]:
    known = set(WebhookEvent.subscribable())
    unknown = [event for event in v if event not in known]
    if unknown:
        raise ValueError(f"Unknown events: {', '.join(unknown)}")
    # De-duplicate while keeping order
    return list(dict.fromkeys(v))


class WebhookSubscriptionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    url: str = Field(..., min_length=1, max_length=2048)
    events: List[str] = Field(..., min_length=1)
    description: Optional[str] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_url(v)

    @field_validator("events")
    @classmethod
    def validate_events(cls, v: List[str]) -> List[str]:
        return _validate_events(v)


class WebhookSubscriptionUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    url: Optional[str] = Field(None, min_length=1, max_length=2048)
    events: Optional[List[str]] = Field(None, min_length=1)
    description: Optional[str] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return _validate_url(v) if v is not None else v

    @field_validator("events")
    @classmethod
    def validate_events(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _validate_events(v) if v is not None else v


class WebhookSubscriptionRead(BaseModel):
    """Subscription metadata. The signing secret is never included."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    url: str
    events: List[str]
    is_active: bool
    failure_count: int = 0
    last_delivery_at: Optional[datetime] = None
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CreatedWebhookSubscription(BaseModel):
    """Result of creating a subscription: metadata plus the signing secret, shown once."""

    subscription: WebhookSubscriptionRead
    secret: str = Field(..., repr=False)


class WebhookDeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subscription_id: str
    tenant_id: str
    event: str
    payload: Dict[str, Any]
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    duration_ms: int
    success: bool
    error: Optional[str] = None
    created_at: Optional[datetime] = None


class DeliveryOutcome(BaseModel):
    """Per-subscriber result of one dispatch."""

    model_config = ConfigDict(frozen=True)

    subscription_id: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    failure_kind: Optional[DeliveryFailureKind] = None
    duration_ms: int = 0


class TestDeliveryResult(BaseModel):
    """Result of a test delivery. Never persisted."""

    __test__ = False

    success: bool
    status_code: Optional[int] = None
    duration_ms: int = 0
    response: Optional[str] = None
    error: Optional[str] = None


class DeliveryStats(BaseModel):
    total_subscriptions: int
    active_subscriptions: int
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    success_rate: float
