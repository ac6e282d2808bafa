"""
Test fixtures for the platform core.

This module provides shared test fixtures including database setup,
request contexts, and audit sinks that record what they receive.
"""

from typing import List

import pytest
from sqlalchemy.orm import Session

from ip_platform_core.config import reset_config
from ip_platform_core.context.request_context import RequestContext
from ip_platform_core.context.tenant_context import TenantContext
from ip_platform_core.db import DatabaseConfig, DatabaseManager, import_all_models
from ip_platform_core.db.db_config import Base, initialize_db
from ip_platform_core.exceptions import clear_correlation_id
from ip_platform_core.schemas.audit_schemas import AuditEntry


class RecordingAuditSink:
    """Audit sink that keeps entries in memory."""

    def __init__(self):
        self.entries: List[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self) -> List[str]:
        return [entry.action.value for entry in self.entries]


class FailingAuditSink:
    """Audit sink whose store is unavailable."""

    def record(self, entry: AuditEntry) -> None:
        raise RuntimeError("audit store unavailable")


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(
        db_type="sqlite",
        database=":memory:",
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create and initialize database manager with all models."""
    import_all_models()
    return initialize_db(db_config)


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Create a database session for each test.

    Tables are created before and dropped after every test so each test
    starts from an empty database.
    """
    session = db_manager.get_session()

    Base.metadata.create_all(db_manager.engine)

    yield session

    session.rollback()
    session.close()

    Base.metadata.drop_all(db_manager.engine)


@pytest.fixture(autouse=True)
def clean_global_state():
    """Reset process-wide configuration, tenant and correlation id between tests."""
    reset_config()
    yield
    reset_config()
    TenantContext.clear_current_tenant()
    clear_correlation_id()


@pytest.fixture
def sample_tenant_id() -> str:
    """Standard tenant ID for testing."""
    return "test-tenant-123"


@pytest.fixture
def other_tenant_id() -> str:
    """A second tenant for isolation checks."""
    return "other-tenant-456"


@pytest.fixture
def request_context(sample_tenant_id: str) -> RequestContext:
    """Caller context for mutating operations."""
    return RequestContext(
        tenant_id=sample_tenant_id,
        actor_id="user-789",
        ip_address="203.0.113.7",
        user_agent="pytest",
    )


@pytest.fixture
def other_request_context(other_tenant_id: str) -> RequestContext:
    return RequestContext(tenant_id=other_tenant_id, actor_id="user-999")


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def failing_audit_sink() -> FailingAuditSink:
    return FailingAuditSink()
