"""
Unit tests for audit sinks and AuditLogService.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.orm import Session

from ip_platform_core.config import AppConfig, AuditConfig, set_config
from ip_platform_core.constants import AuditAction
from ip_platform_core.db import AuditLog
from ip_platform_core.schemas.audit_schemas import AuditEntry
from ip_platform_core.services.audit_service import (
    DatabaseAuditSink,
    NullAuditSink,
    QueueAuditSink,
    emit_audit,
    get_audit_sink,
)
from ip_platform_core.utils.crud_helpers import update_where


def _entry(tenant_id: str, action=AuditAction.API_KEY_CREATED, **fields) -> AuditEntry:
    return AuditEntry(
        tenant_id=tenant_id,
        actor_id=fields.pop("actor_id", "user-1"),
        action=action,
        entity_type=fields.pop("entity_type", "api_key"),
        entity_id=fields.pop("entity_id", "key-1"),
        **fields,
    )


class TestSinks:
    """Test the audit sinks and emit_audit."""

    def test_database_sink_stores_entry(self, db_session: Session, sample_tenant_id):
        sink = DatabaseAuditSink(db_session)

        sink.record(
            _entry(
                sample_tenant_id,
                description='API key "CI" created',
                new_value={"name": "CI"},
                metadata={"source": "test"},
                ip_address="203.0.113.7",
            )
        )

        [log] = db_session.query(AuditLog).all()
        assert log.tenant_id == sample_tenant_id
        assert log.action == "api_key.created"
        assert log.new_value == {"name": "CI"}
        assert log.context == {"source": "test"}
        assert log.ip_address == "203.0.113.7"

    def test_queue_sink_sends_json(self, sample_tenant_id):
        sink = QueueAuditSink(queue_name="audit-queue", connection_string="UseDevelopmentStorage=true")

        with patch("ip_platform_core.services.audit_service.send_message_to_queue_direct") as send:
            sink.record(_entry(sample_tenant_id))

        connection_string, queue_name, message = send.call_args[0]
        assert connection_string == "UseDevelopmentStorage=true"
        assert queue_name == "audit-queue"
        assert message["action"] == "api_key.created"
        assert message["tenant_id"] == sample_tenant_id

    def test_emit_audit_swallows_errors(self, failing_audit_sink, sample_tenant_id):
        assert emit_audit(failing_audit_sink, _entry(sample_tenant_id)) is False

    def test_emit_audit_success(self, audit_sink, sample_tenant_id):
        assert emit_audit(audit_sink, _entry(sample_tenant_id)) is True
        assert audit_sink.actions() == ["api_key.created"]

    def test_null_sink(self, sample_tenant_id):
        assert emit_audit(NullAuditSink(), _entry(sample_tenant_id)) is True

    def test_get_audit_sink(self, db_session):
        assert isinstance(get_audit_sink(db_session), DatabaseAuditSink)

        set_config(AppConfig(audit=AuditConfig(enable_queue=True, connection_string="conn")))
        sink = get_audit_sink(db_session)

        assert isinstance(sink, QueueAuditSink)
        assert sink.connection_string == "conn"


class TestAuditLogService:
    """Test list_audit_logs and export_audit_logs_csv."""

    def _seed(self, session: Session, tenant_id: str, other_tenant_id: str):
        sink = DatabaseAuditSink(session)
        sink.record(_entry(tenant_id, actor_id="alice"))
        sink.record(_entry(tenant_id, action=AuditAction.API_KEY_DELETED, actor_id="bob"))
        sink.record(
            _entry(
                tenant_id,
                action=AuditAction.WEBHOOK_CREATED,
                entity_type="webhook",
                entity_id="wh-1",
                description="Webhook created, for docketing",
            )
        )
        sink.record(_entry(other_tenant_id))

    def test_list_is_tenant_scoped(
        self, audit_log_service, db_session, sample_tenant_id, other_tenant_id
    ):
        self._seed(db_session, sample_tenant_id, other_tenant_id)

        result = audit_log_service.list_audit_logs(sample_tenant_id)

        assert result["pagination"]["total_count"] == 3
        assert {log.tenant_id for log in result["data"]} == {sample_tenant_id}

    def test_list_filters(self, audit_log_service, db_session, sample_tenant_id, other_tenant_id):
        self._seed(db_session, sample_tenant_id, other_tenant_id)

        by_actor = audit_log_service.list_audit_logs(sample_tenant_id, actor_id="bob")
        by_type = audit_log_service.list_audit_logs(sample_tenant_id, entity_type="webhook")
        by_action = audit_log_service.list_audit_logs(
            sample_tenant_id, action="api_key.created"
        )

        assert [log.action for log in by_actor["data"]] == ["api_key.deleted"]
        assert [log.entity_id for log in by_type["data"]] == ["wh-1"]
        assert by_action["pagination"]["total_count"] == 1

    def test_list_pagination(self, audit_log_service, db_session, sample_tenant_id, other_tenant_id):
        self._seed(db_session, sample_tenant_id, other_tenant_id)

        first = audit_log_service.list_audit_logs(sample_tenant_id, page=1, limit=2)
        second = audit_log_service.list_audit_logs(sample_tenant_id, page=2, limit=2)

        assert len(first["data"]) == 2
        assert len(second["data"]) == 1
        assert first["pagination"]["total_pages"] == 2
        assert first["pagination"]["has_next"] is True
        assert second["pagination"]["has_previous"] is True

    def test_list_date_range(self, audit_log_service, db_session, sample_tenant_id, other_tenant_id):
        self._seed(db_session, sample_tenant_id, other_tenant_id)
        old = datetime.now(timezone.utc) - timedelta(days=10)
        update_where(db_session, AuditLog, [AuditLog.actor_id == "alice"], {"created_at": old})

        recent = audit_log_service.list_audit_logs(
            sample_tenant_id, start_date=datetime.now(timezone.utc) - timedelta(days=1)
        )

        assert recent["pagination"]["total_count"] == 2
        assert "alice" not in {log.actor_id for log in recent["data"]}

    def test_export_csv(self, audit_log_service, db_session, sample_tenant_id, other_tenant_id):
        self._seed(db_session, sample_tenant_id, other_tenant_id)
        now = datetime.now(timezone.utc)

        csv_text = audit_log_service.export_audit_logs_csv(
            sample_tenant_id, now - timedelta(days=1), now + timedelta(days=1)
        )

        lines = csv_text.strip().split("\n")
        assert lines[0] == (
            "Timestamp,Actor ID,Action,Entity Type,Entity ID,Description,IP Address"
        )
        assert len(lines) == 4
        assert '"Webhook created, for docketing"' in csv_text
