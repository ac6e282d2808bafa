"""
Audit trail: pluggable sinks and read access to stored entries.

Writing an audit entry must never fail the operation being audited, so every
write goes through ``emit_audit``, which logs and swallows sink errors.
"""

import csv
import io
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from ..config import get_config
from ..constants import Limits
from ..context.operation_context import operation
from ..db.db_audit_models import AuditLog
from ..schemas.audit_schemas import AuditEntry, AuditLogRead
from ..utils.crud_helpers import create_record
from ..utils.logger import get_logger
from ..utils.queue_utils import send_message_to_queue_direct
from .base_service import SessionManagedService


@runtime_checkable
class AuditSink(Protocol):
    """Destination for audit entries."""

    def record(self, entry: AuditEntry) -> None: ...


class DatabaseAuditSink:
    """Writes entries to the ``audit_logs`` table."""

    def __init__(self, session: Session):
        self.session = session

    def record(self, entry: AuditEntry) -> None:
        data = entry.model_dump(mode="json", exclude={"metadata"})
        data["context"] = entry.metadata
        create_record(self.session, AuditLog, data)


class QueueAuditSink:
    """Sends entries as JSON to an Azure Storage Queue for out-of-band storage."""

    def __init__(self, queue_name: Optional[str] = None, connection_string: Optional[str] = None):
        audit_config = get_config().audit
        self.queue_name = queue_name or audit_config.queue_name
        self.connection_string = connection_string or audit_config.connection_string

    def record(self, entry: AuditEntry) -> None:
        send_message_to_queue_direct(
            self.connection_string, self.queue_name, entry.model_dump(mode="json")
        )


class NullAuditSink:
    """Discards entries."""

    def record(self, entry: AuditEntry) -> None:
        return None


def get_audit_sink(session: Session) -> AuditSink:
    """Pick the configured sink: the Azure queue when enabled, otherwise the database."""
    if get_config().audit.enable_queue:
        return QueueAuditSink()
    return DatabaseAuditSink(session)


def emit_audit(sink: AuditSink, entry: AuditEntry) -> bool:
    """
    Record an audit entry, logging instead of raising on failure.

    Returns:
        True if the sink accepted the entry
    """
    try:
        sink.record(entry)
        return True
    except Exception as e:
        get_logger().exception(
            f"Failed to record audit entry: {str(e)}",
            extra={
                "audit_action": entry.action.value,
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "tenant_id": entry.tenant_id,
            },
        )
        return False


class AuditLogService(SessionManagedService):
    """Read access to stored audit entries."""

    def _query(
        self,
        tenant_id: str,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ):
        query = self.session.query(AuditLog).filter(AuditLog.tenant_id == tenant_id)
        if actor_id:
            query = query.filter(AuditLog.actor_id == actor_id)
        if action:
            query = query.filter(AuditLog.action == action)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id:
            query = query.filter(AuditLog.entity_id == entity_id)
        if start_date:
            query = query.filter(AuditLog.created_at >= start_date)
        if end_date:
            query = query.filter(AuditLog.created_at <= end_date)
        return query

    @operation()
    def list_audit_logs(
        self,
        tenant_id: str,
        page: int = 1,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
        **filters: Any,
    ) -> Dict[str, Any]:
        """
        List a tenant's audit entries, newest first.

        Args:
            tenant_id: Tenant whose entries are listed
            page: 1-based page number
            limit: Page size, capped at Limits.MAX_PAGE_SIZE
            **filters: actor_id, action, entity_type, entity_id, start_date, end_date

        Returns:
            Paginated response with AuditLogRead items
        """
        page = max(page, 1)
        limit = max(1, min(limit, Limits.MAX_PAGE_SIZE))

        query = self._query(tenant_id, **filters)
        total = query.count()
        logs = (
            query.order_by(AuditLog.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return self.paginate_results(
            [AuditLogRead.model_validate(log) for log in logs], total, page, limit
        )

    @operation()
    def export_audit_logs_csv(
        self, tenant_id: str, start_date: datetime, end_date: datetime
    ) -> str:
        """Export a tenant's audit entries in a date range as CSV text."""
        logs = (
            self._query(tenant_id, start_date=start_date, end_date=end_date)
            .order_by(AuditLog.created_at.desc())
            .all()
        )

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(
            ["Timestamp", "Actor ID", "Action", "Entity Type", "Entity ID", "Description", "IP Address"]
        )
        for log in logs:
            writer.writerow(
                [
                    log.created_at.isoformat(),
                    log.actor_id or "",
                    log.action,
                    log.entity_type,
                    log.entity_id or "",
                    log.description or "",
                    log.ip_address or "",
                ]
            )
        return buffer.getvalue()
