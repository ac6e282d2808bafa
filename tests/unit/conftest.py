"""
Unit test conftest.py - Service fixtures.

Services share the test session and record audit entries in memory.
"""

import httpx
import pytest

from ip_platform_core.services.api_key_service import ApiKeyService
from ip_platform_core.services.audit_service import AuditLogService
from ip_platform_core.services.rate_limit_service import DatabaseUsageCounter
from ip_platform_core.services.webhook_dispatcher import WebhookDispatcher
from ip_platform_core.services.webhook_service import WebhookService


class RecordingTransport(httpx.MockTransport):
    """MockTransport that also keeps every request it handled."""

    def __init__(self, handler):
        self.requests = []

        def recording_handler(request: httpx.Request):
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)


@pytest.fixture(scope="function")
def api_key_service(db_session, audit_sink):
    """API key service with test session."""
    return ApiKeyService(
        session=db_session,
        audit_sink=audit_sink,
        usage_counter=DatabaseUsageCounter(db_session),
    )


@pytest.fixture(scope="function")
def webhook_service(db_session, audit_sink):
    """Webhook subscription service with test session."""
    return WebhookService(session=db_session, audit_sink=audit_sink)


@pytest.fixture(scope="function")
def audit_log_service(db_session):
    return AuditLogService(session=db_session)


@pytest.fixture
def make_dispatcher(db_session, audit_sink):
    """
    Build a dispatcher whose HTTP client is served by ``handler``.

    Returns the dispatcher and the transport so tests can inspect the
    requests that were sent.
    """

    def factory(handler):
        transport = RecordingTransport(handler)
        client = httpx.AsyncClient(transport=transport)
        dispatcher = WebhookDispatcher(
            session=db_session, http_client=client, audit_sink=audit_sink
        )
        return dispatcher, transport

    return factory
