"""
Unit tests for WebhookDispatcher.

HTTP traffic is served by httpx.MockTransport; persistence uses the
in-memory test database.
"""

import asyncio
import json
import re
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.orm import Session

from ip_platform_core.config import AppConfig, WebhookConfig, set_config
from ip_platform_core.context import TenantContext
from ip_platform_core.db import WebhookDelivery, WebhookSubscription
from ip_platform_core.enums import DeliveryFailureKind
from ip_platform_core.exceptions import RepositoryError
from ip_platform_core.utils.crud_helpers import update_where
from ip_platform_core.utils.signature_utils import verify_signature

CASE_PAYLOAD = {"caseId": "case-1", "title": "Trademark filing"}


def ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="ok")


def server_error(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, text="boom " * 200)


def _deliveries(session: Session, subscription_id: str):
    return (
        session.query(WebhookDelivery)
        .filter(WebhookDelivery.subscription_id == subscription_id)
        .all()
    )


def _set_failure_count(session: Session, subscription_id: str, value: int) -> None:
    update_where(
        session,
        WebhookSubscription,
        [WebhookSubscription.id == subscription_id],
        {"failure_count": value},
    )


@pytest.fixture
def subscribe(webhook_service, request_context):
    """Create a subscription for the test tenant and return (read model, secret)."""

    def factory(url="https://hooks.example.com/ip", events=("case.created",)):
        created = webhook_service.create_subscription(request_context, url, list(events))
        return created.subscription, created.secret

    return factory


class TestDispatch:
    """Test dispatch."""

    @pytest.mark.asyncio
    async def test_no_subscribers(self, make_dispatcher, db_session, sample_tenant_id):
        """Test that an event nobody listens for makes no requests and no records."""
        dispatcher, transport = make_dispatcher(ok)

        outcomes = await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        assert outcomes == []
        assert transport.requests == []
        assert db_session.query(WebhookDelivery).count() == 0

    @pytest.mark.asyncio
    async def test_signed_envelope(self, make_dispatcher, subscribe, sample_tenant_id):
        """Test the envelope, headers and signature of a delivery."""
        subscription, secret = subscribe()
        dispatcher, transport = make_dispatcher(ok)

        outcomes = await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        assert len(outcomes) == 1
        assert outcomes[0].success is True
        assert outcomes[0].status_code == 200
        assert outcomes[0].subscription_id == subscription.id

        request = transport.requests[0]
        body = request.content
        envelope = json.loads(body)
        assert list(envelope) == ["event", "timestamp", "data", "tenantId"]
        assert envelope["event"] == "case.created"
        assert envelope["data"] == CASE_PAYLOAD
        assert envelope["tenantId"] == sample_tenant_id
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", envelope["timestamp"])

        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Webhook-Event"] == "case.created"
        assert request.headers["X-Webhook-Timestamp"] == envelope["timestamp"]
        assert request.headers["User-Agent"] == "IPPlatform-Webhook/1.0"
        assert verify_signature(body, request.headers["X-Webhook-Signature"], secret)

    @pytest.mark.asyncio
    async def test_subscribers_receive_identical_bodies(
        self, make_dispatcher, subscribe, sample_tenant_id
    ):
        """Test that every subscriber gets the same bytes, signed with its own secret."""
        (first, first_secret) = subscribe("https://a.example.com/hook")
        (second, second_secret) = subscribe("https://b.example.com/hook")
        dispatcher, transport = make_dispatcher(ok)

        await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        by_host = {request.url.host: request for request in transport.requests}
        body_a = by_host["a.example.com"].content
        body_b = by_host["b.example.com"].content
        assert body_a == body_b
        assert verify_signature(
            body_a, by_host["a.example.com"].headers["X-Webhook-Signature"], first_secret
        )
        assert verify_signature(
            body_b, by_host["b.example.com"].headers["X-Webhook-Signature"], second_secret
        )
        assert not verify_signature(
            body_b, by_host["b.example.com"].headers["X-Webhook-Signature"], first_secret
        )

    @pytest.mark.asyncio
    async def test_only_matching_active_subscriptions(
        self, make_dispatcher, subscribe, webhook_service, request_context, sample_tenant_id
    ):
        """Test that other events, inactive subscriptions and other tenants are skipped."""
        matching, _ = subscribe("https://match.example.com/hook")
        subscribe("https://forms.example.com/hook", events=("form.submitted",))
        inactive, _ = subscribe("https://inactive.example.com/hook")
        webhook_service.deactivate_subscription(request_context, inactive.id)
        dispatcher, transport = make_dispatcher(ok)

        outcomes = await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)
        other = await dispatcher.dispatch("someone-else", "case.created", CASE_PAYLOAD)

        assert [outcome.subscription_id for outcome in outcomes] == [matching.id]
        assert [request.url.host for request in transport.requests] == ["match.example.com"]
        assert other == []

    @pytest.mark.asyncio
    async def test_mixed_outcomes(self, make_dispatcher, subscribe, db_session, sample_tenant_id):
        """Test that success, error status and timeout each produce an outcome and a record."""
        good, _ = subscribe("https://good.example.com/hook")
        bad, _ = subscribe("https://bad.example.com/hook")
        slow, _ = subscribe("https://slow.example.com/hook")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "good.example.com":
                return httpx.Response(204)
            if request.url.host == "bad.example.com":
                return server_error(request)
            raise httpx.ReadTimeout("timed out", request=request)

        dispatcher, _ = make_dispatcher(handler)

        outcomes = await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        by_id = {outcome.subscription_id: outcome for outcome in outcomes}
        assert len(outcomes) == 3

        assert by_id[good.id].success is True
        assert by_id[good.id].failure_kind is None

        assert by_id[bad.id].success is False
        assert by_id[bad.id].status_code == 500
        assert by_id[bad.id].failure_kind == DeliveryFailureKind.NON_SUCCESS_STATUS
        assert by_id[bad.id].error.startswith("HTTP 500: ")
        assert len(by_id[bad.id].error) == len("HTTP 500: ") + 500

        assert by_id[slow.id].success is False
        assert by_id[slow.id].status_code is None
        assert by_id[slow.id].failure_kind == DeliveryFailureKind.TIMEOUT
        assert by_id[slow.id].error == "Request timed out after 30s"

        assert db_session.query(WebhookDelivery).count() == 3
        [bad_record] = _deliveries(db_session, bad.id)
        assert bad_record.success is False
        assert bad_record.status_code == 500
        assert bad_record.payload["data"] == CASE_PAYLOAD
        assert bad_record.response_body == "boom " * 200

    @pytest.mark.asyncio
    async def test_transport_failure(self, make_dispatcher, subscribe, sample_tenant_id):
        subscription, _ = subscribe()

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher, _ = make_dispatcher(refuse)

        [outcome] = await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        assert outcome.success is False
        assert outcome.failure_kind == DeliveryFailureKind.TRANSPORT_FAILURE
        assert outcome.error == "connection refused"

    @pytest.mark.asyncio
    async def test_response_body_is_truncated(
        self, make_dispatcher, subscribe, db_session, sample_tenant_id
    ):
        subscription, _ = subscribe()
        dispatcher, _ = make_dispatcher(lambda request: httpx.Response(200, text="x" * 20000))

        await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        [record] = _deliveries(db_session, subscription.id)
        assert len(record.response_body) == 10000

    @pytest.mark.asyncio
    async def test_stored_payload_matches_sent_body(
        self, make_dispatcher, subscribe, db_session, sample_tenant_id
    ):
        """Test that the delivery record holds exactly the JSON that was signed and sent."""
        subscription, _ = subscribe()
        dispatcher, transport = make_dispatcher(ok)
        payload = {"fee": Decimal("1.50"), "filedAt": datetime(2024, 1, 1, tzinfo=timezone.utc)}

        await dispatcher.dispatch(sample_tenant_id, "case.created", payload)

        [request] = transport.requests
        [record] = _deliveries(db_session, subscription.id)
        assert record.payload == json.loads(request.content)
        assert record.payload["data"] == {"fee": 1.5, "filedAt": "2024-01-01T00:00:00+00:00"}

    @pytest.mark.asyncio
    async def test_hanging_subscribers_are_cut_off(
        self, make_dispatcher, subscribe, db_session, sample_tenant_id
    ):
        """Test that stalled requests are cancelled and waited on in parallel."""
        set_config(AppConfig(webhooks=WebhookConfig(delivery_timeout_seconds=0.3)))
        subscriptions = [subscribe(f"https://slow{i}.example.com/hook")[0] for i in range(4)]

        async def hang(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        dispatcher, transport = make_dispatcher(hang)

        start = time.monotonic()
        outcomes = await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)
        elapsed = time.monotonic() - start

        # Four sequential timeouts would take 1.2s
        assert elapsed < 1.0
        assert len(transport.requests) == 4
        assert len(outcomes) == 4
        for outcome in outcomes:
            assert outcome.success is False
            assert outcome.status_code is None
            assert outcome.failure_kind == DeliveryFailureKind.TIMEOUT
            assert outcome.error == "Request timed out after 0.3s"
        for subscription in subscriptions:
            [record] = _deliveries(db_session, subscription.id)
            assert record.success is False

    @pytest.mark.asyncio
    async def test_overlapping_dispatches_keep_tenants_apart(
        self,
        make_dispatcher,
        subscribe,
        webhook_service,
        other_request_context,
        db_session,
        sample_tenant_id,
        other_tenant_id,
    ):
        mine, _ = subscribe("https://mine.example.com/hook")
        theirs = webhook_service.create_subscription(
            other_request_context, "https://theirs.example.com/hook", ["case.created"]
        ).subscription

        async def slow_for_mine(request: httpx.Request) -> httpx.Response:
            if request.url.host == "mine.example.com":
                await asyncio.sleep(0.05)
            return httpx.Response(200)

        dispatcher, _ = make_dispatcher(slow_for_mine)

        first, second = await asyncio.gather(
            dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD),
            dispatcher.dispatch(other_tenant_id, "case.created", CASE_PAYLOAD),
        )

        assert [outcome.subscription_id for outcome in first] == [mine.id]
        assert [outcome.subscription_id for outcome in second] == [theirs.id]
        assert TenantContext.get_current_tenant_id() is None
        [record] = _deliveries(db_session, theirs.id)
        assert record.tenant_id == other_tenant_id
        assert record.payload["tenantId"] == other_tenant_id

    @pytest.mark.asyncio
    async def test_database_work_runs_off_the_event_loop(
        self, make_dispatcher, subscribe, sample_tenant_id, monkeypatch
    ):
        subscribe()
        dispatcher, _ = make_dispatcher(ok)
        threads = []

        for name in ("_targets", "_record_all"):
            original = getattr(dispatcher, name)

            def tracking(*args, _original=original):
                threads.append(threading.get_ident())
                return _original(*args)

            monkeypatch.setattr(dispatcher, name, tracking)

        outcomes = await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        assert len(outcomes) == 1
        assert len(threads) == 2
        assert threading.get_ident() not in threads


class TestFailureCounter:
    """Test consecutive-failure tracking and auto-disable."""

    @pytest.mark.asyncio
    async def test_failure_increments(
        self, make_dispatcher, subscribe, db_session, sample_tenant_id
    ):
        subscription, _ = subscribe()
        dispatcher, _ = make_dispatcher(server_error)

        await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)
        await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        stored = db_session.get(WebhookSubscription, subscription.id)
        assert stored.failure_count == 2
        assert stored.is_active is True
        assert stored.last_delivery_at is not None

    @pytest.mark.asyncio
    async def test_success_resets_counter(
        self, make_dispatcher, subscribe, db_session, sample_tenant_id
    ):
        subscription, _ = subscribe()
        _set_failure_count(db_session, subscription.id, 3)
        dispatcher, _ = make_dispatcher(ok)

        await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        assert db_session.get(WebhookSubscription, subscription.id).failure_count == 0

    @pytest.mark.asyncio
    async def test_tenth_failure_disables(
        self, make_dispatcher, subscribe, db_session, audit_sink, sample_tenant_id
    ):
        """Test that the failure bringing the count to 10 disables the subscription."""
        subscription, _ = subscribe()
        _set_failure_count(db_session, subscription.id, 9)
        dispatcher, transport = make_dispatcher(server_error)

        await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        stored = db_session.get(WebhookSubscription, subscription.id)
        assert stored.failure_count == 10
        assert stored.is_active is False
        assert audit_sink.actions()[-1] == "webhook.disabled"
        assert audit_sink.entries[-1].entity_id == subscription.id

        # Disabled subscriptions receive nothing further
        await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_ninth_failure_keeps_subscription_active(
        self, make_dispatcher, subscribe, db_session, audit_sink, sample_tenant_id
    ):
        subscription, _ = subscribe()
        _set_failure_count(db_session, subscription.id, 8)
        dispatcher, _ = make_dispatcher(server_error)

        await dispatcher.dispatch(sample_tenant_id, "case.created", CASE_PAYLOAD)

        stored = db_session.get(WebhookSubscription, subscription.id)
        assert stored.failure_count == 9
        assert stored.is_active is True
        assert "webhook.disabled" not in audit_sink.actions()


class TestDispatchSync:
    def test_dispatch_sync(self, make_dispatcher, subscribe, sample_tenant_id):
        """Test running a dispatch from synchronous code."""
        subscription, _ = subscribe()
        dispatcher, transport = make_dispatcher(ok)

        outcomes = dispatcher.dispatch_sync(sample_tenant_id, "case.created", CASE_PAYLOAD)

        assert [outcome.subscription_id for outcome in outcomes] == [subscription.id]
        assert len(transport.requests) == 1


class TestTestDelivery:
    """Test test_delivery."""

    @pytest.mark.asyncio
    async def test_sends_signed_test_event(self, make_dispatcher, subscribe, sample_tenant_id):
        subscription, secret = subscribe()
        dispatcher, transport = make_dispatcher(lambda request: httpx.Response(200, text="y" * 5000))

        result = await dispatcher.test_delivery(subscription.id, sample_tenant_id)

        assert result.success is True
        assert result.status_code == 200
        assert len(result.response) == 1000

        request = transport.requests[0]
        envelope = json.loads(request.content)
        assert envelope["event"] == "webhook.test"
        assert envelope["data"] == {"test": True, "message": "This is a test webhook delivery"}
        assert request.headers["X-Webhook-Event"] == "webhook.test"
        assert verify_signature(request.content, request.headers["X-Webhook-Signature"], secret)

    @pytest.mark.asyncio
    async def test_persists_nothing(
        self, make_dispatcher, subscribe, db_session, sample_tenant_id
    ):
        """Test that a failed test delivery leaves records and counters untouched."""
        subscription, _ = subscribe()
        _set_failure_count(db_session, subscription.id, 4)
        dispatcher, _ = make_dispatcher(server_error)

        result = await dispatcher.test_delivery(subscription.id, sample_tenant_id)

        assert result.success is False
        assert result.error.startswith("HTTP 500: ")
        assert db_session.query(WebhookDelivery).count() == 0
        stored = db_session.get(WebhookSubscription, subscription.id)
        assert stored.failure_count == 4
        assert stored.is_active is True

    @pytest.mark.asyncio
    async def test_unknown_subscription(self, make_dispatcher, sample_tenant_id):
        dispatcher, transport = make_dispatcher(ok)

        with pytest.raises(RepositoryError) as exc_info:
            await dispatcher.test_delivery("missing-id", sample_tenant_id)

        assert exc_info.value.status_code == 404
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_test(self, make_dispatcher, subscribe, other_tenant_id):
        subscription, _ = subscribe()
        dispatcher, _ = make_dispatcher(ok)

        with pytest.raises(RepositoryError):
            await dispatcher.test_delivery(subscription.id, other_tenant_id)
