"""
Service for managing webhook subscriptions and reading their delivery history.

Delivery itself lives in webhook_dispatcher.
"""

from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..config import get_config
from ..constants import AuditAction, Limits
from ..context.operation_context import operation
from ..context.request_context import RequestContext
from ..context.tenant_context import tenant_context
from ..db.db_webhook_models import WebhookDelivery, WebhookSubscription
from ..exceptions import not_found
from ..schemas.audit_schemas import AuditEntry
from ..schemas.webhook_schemas import (
    CreatedWebhookSubscription,
    DeliveryStats,
    WebhookDeliveryRead,
    WebhookSubscriptionCreate,
    WebhookSubscriptionRead,
    WebhookSubscriptionUpdate,
)
from ..utils.crud_helpers import (
    count_records,
    create_record,
    delete_record,
    get_record_by_id,
    list_records,
    update_record,
)
from ..utils.encryption_utils import encrypt_webhook_secret
from ..utils.hash_utils import generate_webhook_secret
from .audit_service import AuditSink, emit_audit, get_audit_sink
from .base_service import SessionManagedService

ENTITY_TYPE = "webhook"


class WebhookService(SessionManagedService):
    """
    Tenant-facing subscription management.

    Reactivation is always an explicit call here; the dispatcher only ever
    disables subscriptions.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        audit_sink: Optional[AuditSink] = None,
        logger=None,
    ):
        super().__init__(session=session, logger=logger)
        self.config = get_config().webhooks
        self.audit_sink = audit_sink or get_audit_sink(self.session)

    def _get_owned(self, tenant_id: str, subscription_id: str) -> WebhookSubscription:
        subscription = get_record_by_id(
            self.session, WebhookSubscription, subscription_id, tenant_id
        )
        if subscription is None:
            raise not_found(
                "WebhookSubscription", subscription_id=subscription_id, tenant_id=tenant_id
            )
        return subscription

    def _audit(
        self, context: RequestContext, action: AuditAction, subscription_id: str, **fields
    ) -> None:
        emit_audit(
            self.audit_sink,
            AuditEntry.from_context(
                context, action, ENTITY_TYPE, entity_id=subscription_id, **fields
            ),
        )

    @operation()
    def create_subscription(
        self,
        context: RequestContext,
        url: str,
        events: List[str],
        description: Optional[str] = None,
    ) -> CreatedWebhookSubscription:
        """
        Register an endpoint for a set of events.

        A fresh signing secret is generated and returned once alongside the
        stored subscription.

        Raises:
            ValidationError: If the URL is not http(s) or an event name is unknown
        """
        try:
            data = WebhookSubscriptionCreate(url=url, events=events, description=description)
        except PydanticValidationError as e:
            raise self._validation_error(e, "webhook subscription")

        secret = generate_webhook_secret(self.config.secret_bytes)

        with tenant_context(context.tenant_id):
            subscription = create_record(
                self.session,
                WebhookSubscription,
                {
                    "url": data.url,
                    "events": data.events,
                    "secret": encrypt_webhook_secret(self.session, secret, context.tenant_id),
                    "description": data.description,
                    "is_active": True,
                    "failure_count": 0,
                    "created_by": context.actor_id,
                },
                tenant_id=context.tenant_id,
            )

            self._audit(
                context,
                AuditAction.WEBHOOK_CREATED,
                subscription.id,
                description=f"Webhook created for {data.url}",
                new_value={"url": data.url, "events": data.events},
            )

        return CreatedWebhookSubscription(
            subscription=WebhookSubscriptionRead.model_validate(subscription), secret=secret
        )

    def get_subscription(self, tenant_id: str, subscription_id: str) -> WebhookSubscriptionRead:
        return WebhookSubscriptionRead.model_validate(self._get_owned(tenant_id, subscription_id))

    def list_subscriptions(
        self, tenant_id: str, include_inactive: bool = True
    ) -> List[WebhookSubscriptionRead]:
        """List a tenant's subscriptions, newest first."""
        filters = None if include_inactive else {"is_active": True}
        return [
            WebhookSubscriptionRead.model_validate(subscription)
            for subscription in list_records(
                self.session, WebhookSubscription, filters=filters, tenant_id=tenant_id
            )
        ]

    @operation()
    def update_subscription(
        self,
        context: RequestContext,
        subscription_id: str,
        url: Optional[str] = None,
        events: Optional[List[str]] = None,
        description: Optional[str] = None,
    ) -> WebhookSubscriptionRead:
        """Change the URL, events or description of a subscription. The secret never changes."""
        try:
            data = WebhookSubscriptionUpdate(url=url, events=events, description=description)
        except PydanticValidationError as e:
            raise self._validation_error(e, "webhook subscription")

        with tenant_context(context.tenant_id):
            subscription = self._get_owned(context.tenant_id, subscription_id)
            old_value = {"url": subscription.url, "events": list(subscription.events)}

            subscription = update_record(
                self.session,
                WebhookSubscription,
                subscription_id,
                data.model_dump(exclude_none=True),
                context.tenant_id,
            )

            self._audit(
                context,
                AuditAction.WEBHOOK_UPDATED,
                subscription_id,
                description="Webhook updated",
                old_value=old_value,
                new_value={"url": subscription.url, "events": list(subscription.events)},
            )

        return WebhookSubscriptionRead.model_validate(subscription)

    @operation()
    def reactivate_subscription(
        self, context: RequestContext, subscription_id: str
    ) -> WebhookSubscriptionRead:
        """Turn a disabled subscription back on and clear its failure counter."""
        with tenant_context(context.tenant_id):
            subscription = self._get_owned(context.tenant_id, subscription_id)
            old_value = {
                "is_active": subscription.is_active,
                "failure_count": subscription.failure_count,
            }

            subscription = update_record(
                self.session,
                WebhookSubscription,
                subscription_id,
                {"is_active": True, "failure_count": 0},
                context.tenant_id,
            )

            self._audit(
                context,
                AuditAction.WEBHOOK_UPDATED,
                subscription_id,
                description="Webhook reactivated",
                old_value=old_value,
                new_value={"is_active": True, "failure_count": 0},
            )

        return WebhookSubscriptionRead.model_validate(subscription)

    @operation()
    def deactivate_subscription(
        self, context: RequestContext, subscription_id: str
    ) -> WebhookSubscriptionRead:
        """Stop deliveries to a subscription without deleting it."""
        with tenant_context(context.tenant_id):
            self._get_owned(context.tenant_id, subscription_id)

            subscription = update_record(
                self.session,
                WebhookSubscription,
                subscription_id,
                {"is_active": False},
                context.tenant_id,
            )

            self._audit(
                context,
                AuditAction.WEBHOOK_UPDATED,
                subscription_id,
                description="Webhook deactivated",
                new_value={"is_active": False},
            )

        return WebhookSubscriptionRead.model_validate(subscription)

    @operation()
    def delete_subscription(self, context: RequestContext, subscription_id: str) -> None:
        """
        Remove a subscription from the tenant's view.

        The row is deactivated and tombstoned; its delivery history stays in
        place and still counts toward ``get_delivery_stats``.
        """
        with tenant_context(context.tenant_id):
            subscription = self._get_owned(context.tenant_id, subscription_id)
            url = subscription.url

            update_record(
                self.session,
                WebhookSubscription,
                subscription_id,
                {"is_active": False},
                context.tenant_id,
            )
            delete_record(self.session, WebhookSubscription, subscription_id, context.tenant_id)

            self._audit(
                context,
                AuditAction.WEBHOOK_DELETED,
                subscription_id,
                description=f"Webhook for {url} deleted",
            )

    def list_deliveries(
        self,
        tenant_id: str,
        subscription_id: str,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
    ) -> List[WebhookDeliveryRead]:
        """Most recent delivery attempts for one of the tenant's subscriptions."""
        self._get_owned(tenant_id, subscription_id)
        limit = max(1, min(limit, Limits.MAX_PAGE_SIZE))

        deliveries = list_records(
            self.session,
            WebhookDelivery,
            filters={"subscription_id": subscription_id},
            tenant_id=tenant_id,
            limit=limit,
        )
        return [WebhookDeliveryRead.model_validate(delivery) for delivery in deliveries]

    def get_delivery_stats(self, tenant_id: str) -> DeliveryStats:
        """Subscription and delivery totals for a tenant."""
        total_subscriptions = count_records(self.session, WebhookSubscription, tenant_id=tenant_id)
        active_subscriptions = count_records(
            self.session, WebhookSubscription, {"is_active": True}, tenant_id
        )

        total, successful = (
            self.session.query(
                func.count(WebhookDelivery.id),
                func.coalesce(func.sum(case((WebhookDelivery.success.is_(True), 1), else_=0)), 0),
            )
            .filter(WebhookDelivery.tenant_id == tenant_id)
            .one()
        )
        total = int(total)
        successful = int(successful)

        return DeliveryStats(
            total_subscriptions=total_subscriptions,
            active_subscriptions=active_subscriptions,
            total_deliveries=total,
            successful_deliveries=successful,
            failed_deliveries=total - successful,
            success_rate=round(successful / total * 100, 2) if total else 0.0,
        )
