"""
Webhook event dispatcher.

Fans one domain event out to every active subscription of a tenant that
listens for it. Deliveries run concurrently over a shared httpx.AsyncClient;
each attempt is signed with its subscription's secret, bounded by a hard
timeout, recorded as one WebhookDelivery row, and folded into the
subscription's consecutive-failure counter.

Database work runs in a worker thread so the event loop keeps serving other
deliveries. Calls on one dispatcher take turns on its session.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, NamedTuple, Optional, Tuple

import httpx
from sqlalchemy import case, false
from sqlalchemy.orm import Session

from ..config import get_config
from ..constants import AuditAction, WebhookEvent, WebhookHeader
from ..context.operation_context import operation
from ..context.tenant_context import tenant_context
from ..db.db_webhook_models import WebhookDelivery, WebhookSubscription
from ..enums import DeliveryFailureKind
from ..exceptions import ErrorCode, ServiceError, not_found
from ..schemas.audit_schemas import AuditEntry
from ..schemas.webhook_schemas import DeliveryOutcome, TestDeliveryResult
from ..utils.crud_helpers import create_record, get_record_by_id, list_records, update_where
from ..utils.encryption_utils import decrypt_webhook_secret
from ..utils.json_utils import dumps_compact, loads
from ..utils.signature_utils import sign_payload
from .audit_service import AuditSink, emit_audit, get_audit_sink
from .base_service import SessionManagedService

TEST_DELIVERY_DATA = {"test": True, "message": "This is a test webhook delivery"}


class _Target(NamedTuple):
    subscription_id: str
    url: str
    secret: str


class _Attempt(NamedTuple):
    subscription_id: str
    success: bool
    status_code: Optional[int]
    response_body: Optional[str]
    error: Optional[str]
    failure_kind: Optional[DeliveryFailureKind]
    duration_ms: int


def _iso_timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_envelope(tenant_id: str, event: str, data: Any, timestamp: str) -> Dict[str, Any]:
    """The JSON document every subscriber receives for an event."""
    return {"event": event, "timestamp": timestamp, "data": data, "tenantId": tenant_id}


class WebhookDispatcher(SessionManagedService):
    """
    Delivers events to webhook subscriptions.

    Pass ``http_client`` to reuse an existing client (or a client built on
    ``httpx.MockTransport`` in tests); otherwise one client is opened per
    dispatch.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        audit_sink: Optional[AuditSink] = None,
        logger=None,
    ):
        super().__init__(session=session, logger=logger)
        self.config = get_config().webhooks
        self.http_client = http_client
        self.audit_sink = audit_sink or get_audit_sink(self.session)
        self._session_lock: Optional[asyncio.Lock] = None
        self._session_lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _session_guard(self) -> asyncio.Lock:
        # dispatch_sync runs each call on a fresh loop; a lock belongs to one loop
        loop = asyncio.get_running_loop()
        if self._session_lock is None or self._session_lock_loop is not loop:
            self._session_lock = asyncio.Lock()
            self._session_lock_loop = loop
        return self._session_lock

    async def _in_session(self, func: Callable[..., Any], *args) -> Any:
        """Run blocking session work in a worker thread, one call at a time."""
        async with self._session_guard():
            return await asyncio.to_thread(func, *args)

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
            return
        async with httpx.AsyncClient() as client:
            yield client

    def _targets(self, tenant_id: str, event: str) -> List[_Target]:
        subscriptions = list_records(
            self.session,
            WebhookSubscription,
            filters={"is_active": True},
            tenant_id=tenant_id,
            order_by="created_at",
        )
        return [
            _Target(
                subscription_id=subscription.id,
                url=subscription.url,
                secret=decrypt_webhook_secret(self.session, subscription.secret, tenant_id),
            )
            for subscription in subscriptions
            if event in (subscription.events or [])
        ]

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        target: _Target,
        event: str,
        timestamp: str,
        body: bytes,
        timeout: float,
    ) -> _Attempt:
        """POST one signed body. Never raises: every failure becomes an _Attempt."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.config.user_agent,
            WebhookHeader.SIGNATURE.value: sign_payload(body, target.secret),
            WebhookHeader.EVENT.value: event,
            WebhookHeader.TIMESTAMP.value: timestamp,
        }

        start = time.monotonic()
        status_code = None
        response_body = None
        failure_kind = None
        error = None

        try:
            response = await asyncio.wait_for(
                client.post(target.url, content=body, headers=headers, timeout=timeout),
                timeout=timeout,
            )
            status_code = response.status_code
            response_body = response.text
            if not response.is_success:
                failure_kind = DeliveryFailureKind.NON_SUCCESS_STATUS
                error = f"HTTP {status_code}: {response_body[: self.config.error_body_max_chars]}"
        except (asyncio.TimeoutError, httpx.TimeoutException):
            failure_kind = DeliveryFailureKind.TIMEOUT
            error = f"Request timed out after {timeout:g}s"
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            failure_kind = DeliveryFailureKind.TRANSPORT_FAILURE
            error = str(e) or type(e).__name__
        except Exception as e:
            # One subscriber must never abort the others
            self.logger.exception(
                "Unexpected webhook delivery error",
                extra={"subscription_id": target.subscription_id, "error_type": type(e).__name__},
            )
            failure_kind = DeliveryFailureKind.TRANSPORT_FAILURE
            error = str(e) or type(e).__name__

        duration_ms = int((time.monotonic() - start) * 1000)

        return _Attempt(
            subscription_id=target.subscription_id,
            success=failure_kind is None,
            status_code=status_code,
            response_body=response_body,
            error=error,
            failure_kind=failure_kind,
            duration_ms=duration_ms,
        )

    def _record(self, tenant_id: str, event: str, snapshot: Any, attempt: _Attempt):
        """
        Store the attempt and fold it into the subscription's failure counter.

        ``snapshot`` is the signed body parsed back, so the stored payload is
        exactly what subscribers received.
        """
        response_body = attempt.response_body
        if response_body is not None:
            response_body = response_body[: self.config.response_body_max_chars]

        create_record(
            self.session,
            WebhookDelivery,
            {
                "subscription_id": attempt.subscription_id,
                "event": event,
                "payload": snapshot,
                "status_code": attempt.status_code,
                "response_body": response_body,
                "duration_ms": attempt.duration_ms,
                "success": attempt.success,
                "error": attempt.error,
            },
            tenant_id=tenant_id,
        )

        now = datetime.now(timezone.utc)
        if attempt.success:
            values = {"failure_count": 0, "last_delivery_at": now}
        else:
            # Right-hand sides see the pre-update row, so both columns use the old count
            new_count = WebhookSubscription.failure_count + 1
            values = {
                "failure_count": new_count,
                "is_active": case(
                    (new_count >= self.config.failure_threshold, false()),
                    else_=WebhookSubscription.is_active,
                ),
                "last_delivery_at": now,
            }

        update_where(
            self.session,
            WebhookSubscription,
            [WebhookSubscription.id == attempt.subscription_id],
            values,
        )

        if not attempt.success:
            self._audit_if_disabled(tenant_id, attempt.subscription_id)

    def _record_all(
        self, tenant_id: str, event: str, snapshot: Any, attempts: List[_Attempt]
    ) -> List[Exception]:
        """Record every attempt; a failure to store one never skips the rest."""
        errors = []
        for attempt in attempts:
            try:
                self._record(tenant_id, event, snapshot, attempt)
            except Exception as e:
                errors.append(e)
        return errors

    def _audit_if_disabled(self, tenant_id: str, subscription_id: str) -> None:
        subscription = get_record_by_id(self.session, WebhookSubscription, subscription_id)
        if subscription is None or subscription.is_active:
            return
        if subscription.failure_count != self.config.failure_threshold:
            return

        self.logger.warning(
            "Webhook disabled after consecutive failures",
            extra={
                "subscription_id": subscription_id,
                "failure_count": subscription.failure_count,
            },
        )
        emit_audit(
            self.audit_sink,
            AuditEntry(
                tenant_id=tenant_id,
                action=AuditAction.WEBHOOK_DISABLED,
                entity_type="webhook",
                entity_id=subscription_id,
                description=(
                    f"Webhook disabled after {subscription.failure_count} consecutive failures"
                ),
                new_value={"is_active": False},
                metadata={"failure_count": subscription.failure_count},
            ),
        )

    @operation()
    async def dispatch(
        self, tenant_id: str, event: str, payload: Dict[str, Any]
    ) -> List[DeliveryOutcome]:
        """
        Deliver ``event`` to every active subscription of ``tenant_id`` that lists it.

        Every subscriber receives byte-identical bodies. Subscriber failures are
        reported in the outcomes, never raised.

        Returns:
            One DeliveryOutcome per attempted subscription (empty when none match)

        Raises:
            ServiceError: If a delivery record or counter update could not be
                stored; raised only after every attempt has finished
        """
        with tenant_context(tenant_id):
            targets = await self._in_session(self._targets, tenant_id, event)
            if not targets:
                self.logger.debug(
                    "No webhook subscriptions for event", extra={"webhook_event": event}
                )
                return []

            timestamp = _iso_timestamp(datetime.now(timezone.utc))
            envelope = build_envelope(tenant_id, event, payload, timestamp)
            body = dumps_compact(envelope).encode("utf-8")
            timeout = self.config.delivery_timeout_seconds

            async with self._client() as client:
                attempts = await asyncio.gather(
                    *(
                        self._deliver(client, target, event, timestamp, body, timeout)
                        for target in targets
                    )
                )

            persistence_errors = await self._in_session(
                self._record_all, tenant_id, event, loads(body), list(attempts)
            )

            if persistence_errors:
                raise ServiceError(
                    f"Failed to record {len(persistence_errors)} webhook deliveries",
                    error_code=ErrorCode.DATABASE_ERROR,
                    operation="dispatch",
                    cause=persistence_errors[0],
                    webhook_event=event,
                )

            self.logger.info(
                "Webhook event dispatched",
                extra={
                    "webhook_event": event,
                    "subscribers": len(attempts),
                    "succeeded": sum(1 for attempt in attempts if attempt.success),
                },
            )

            return [
                DeliveryOutcome(
                    subscription_id=attempt.subscription_id,
                    success=attempt.success,
                    status_code=attempt.status_code,
                    error=attempt.error,
                    failure_kind=attempt.failure_kind,
                    duration_ms=attempt.duration_ms,
                )
                for attempt in attempts
            ]

    def dispatch_sync(
        self, tenant_id: str, event: str, payload: Dict[str, Any]
    ) -> List[DeliveryOutcome]:
        """Run ``dispatch`` to completion from code that is not inside an event loop."""
        return asyncio.run(self.dispatch(tenant_id, event, payload))

    def _test_target(
        self, subscription_id: str, tenant_id: Optional[str]
    ) -> Tuple[str, _Target]:
        subscription = get_record_by_id(
            self.session, WebhookSubscription, subscription_id, tenant_id
        )
        if subscription is None:
            raise not_found(
                "WebhookSubscription", subscription_id=subscription_id, tenant_id=tenant_id
            )

        return subscription.tenant_id, _Target(
            subscription_id=subscription.id,
            url=subscription.url,
            secret=decrypt_webhook_secret(
                self.session, subscription.secret, subscription.tenant_id
            ),
        )

    @operation()
    async def test_delivery(
        self, subscription_id: str, tenant_id: Optional[str] = None
    ) -> TestDeliveryResult:
        """
        Send a signed ``webhook.test`` event to one subscription.

        Nothing is persisted: no delivery record, no counter change. Works on
        inactive subscriptions so tenants can check an endpoint before
        reactivating it.

        Raises:
            RepositoryError: 404 if the subscription does not exist (for ``tenant_id``)
        """
        owner, target = await self._in_session(self._test_target, subscription_id, tenant_id)
        event = WebhookEvent.TEST.value
        timestamp = _iso_timestamp(datetime.now(timezone.utc))
        envelope = build_envelope(owner, event, TEST_DELIVERY_DATA, timestamp)
        body = dumps_compact(envelope).encode("utf-8")

        async with self._client() as client:
            attempt = await self._deliver(
                client, target, event, timestamp, body, self.config.test_timeout_seconds
            )

        response = attempt.response_body
        if response is not None:
            response = response[: self.config.test_response_max_chars]

        return TestDeliveryResult(
            success=attempt.success,
            status_code=attempt.status_code,
            duration_ms=attempt.duration_ms,
            response=response,
            error=attempt.error,
        )
