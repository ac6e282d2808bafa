"""
Generic CRUD helpers shared by the gateway and webhook services.

These functions work with any SQLAlchemy model that follows the package
conventions (string ``id``, optional ``tenant_id``, ``created_at`` and
``updated_at`` columns).
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..exceptions import BaseError, ErrorCode, not_found
from ..utils.logger import get_logger

T = TypeVar("T")


def _apply_filters(query, model_class, filters: Optional[Dict[str, Any]], tenant_id: Optional[str]):
    if tenant_id and hasattr(model_class, "tenant_id"):
        query = query.filter(model_class.tenant_id == tenant_id)  # type: ignore[attr-defined]

    # Soft-deleted rows are invisible to every helper
    if hasattr(model_class, "deleted_at"):
        query = query.filter(model_class.deleted_at.is_(None))  # type: ignore[attr-defined]

    if filters:
        for key, value in filters.items():
            if hasattr(model_class, key) and value is not None:
                query = query.filter(getattr(model_class, key) == value)

    return query


def create_record(
    session: Session, model_class: Type[T], data: Dict[str, Any], tenant_id: Optional[str] = None
) -> T:
    """
    Generic create operation for any model.

    Args:
        session: Database session
        model_class: SQLAlchemy model class
        data: Data dictionary
        tenant_id: Optional tenant ID to add

    Returns:
        Created record instance

    Raises:
        BaseError: If creation fails
    """
    logger = get_logger()

    try:
        if tenant_id and hasattr(model_class, "tenant_id") and "tenant_id" not in data:
            data["tenant_id"] = tenant_id

        now = datetime.now(timezone.utc)
        if hasattr(model_class, "created_at"):
            data.setdefault("created_at", now)
        if hasattr(model_class, "updated_at"):
            data.setdefault("updated_at", now)

        record = model_class(**data)
        session.add(record)
        session.commit()

        logger.info(
            f"Created {model_class.__name__}",
            extra={
                "model": model_class.__name__,
                "record_id": getattr(record, "id", None),
                "tenant_id": tenant_id,
            },
        )

        return record

    except Exception as e:
        session.rollback()
        raise BaseError(
            f"Failed to create {model_class.__name__}: {str(e)}",
            error_code=ErrorCode.DATABASE_ERROR,
            cause=e,
            model=model_class.__name__,
            tenant_id=tenant_id,
        )


def get_record(
    session: Session, model_class: Type[T], filters: Dict[str, Any], tenant_id: Optional[str] = None
) -> Optional[T]:
    """
    Generic get operation for any model.

    Args:
        session: Database session
        model_class: SQLAlchemy model class
        filters: Filter conditions
        tenant_id: Optional tenant ID filter

    Returns:
        Record instance or None
    """
    return _apply_filters(session.query(model_class), model_class, filters, tenant_id).first()


def get_record_by_id(
    session: Session, model_class: Type[T], record_id: str, tenant_id: Optional[str] = None
) -> Optional[T]:
    """Generic get by ID operation."""
    return get_record(session, model_class, {"id": record_id}, tenant_id)


def update_record(
    session: Session,
    model_class: Type[T],
    record_id: str,
    data: Dict[str, Any],
    tenant_id: Optional[str] = None,
) -> T:
    """
    Generic update operation for any model.

    ``None`` values in ``data`` are skipped, so callers can pass optional
    fields straight through.

    Raises:
        RepositoryError: 404 if the record does not exist (or belongs to another tenant)
        BaseError: If the update fails
    """
    logger = get_logger()

    record = get_record_by_id(session, model_class, record_id, tenant_id)
    if not record:
        raise not_found(model_class.__name__, record_id=record_id, tenant_id=tenant_id)

    try:
        for key, value in data.items():
            if hasattr(record, key) and value is not None:
                setattr(record, key, value)

        if hasattr(record, "updated_at"):
            record.updated_at = datetime.now(timezone.utc)

        session.commit()

        logger.info(
            f"Updated {model_class.__name__}",
            extra={"model": model_class.__name__, "record_id": record_id, "tenant_id": tenant_id},
        )

        return record

    except Exception as e:
        session.rollback()
        raise BaseError(
            f"Failed to update {model_class.__name__}: {str(e)}",
            error_code=ErrorCode.DATABASE_ERROR,
            cause=e,
            model=model_class.__name__,
            record_id=record_id,
        )


def update_where(
    session: Session,
    model_class: Type[T],
    criteria: List[Any],
    values: Dict[str, Any],
) -> int:
    """
    Apply a single UPDATE statement and commit.

    ``values`` may hold SQL expressions (e.g. ``Model.counter + 1``) so the
    new value is computed by the database, not read back into Python first.

    Returns:
        Number of rows matched
    """
    try:
        result = session.execute(
            update(model_class).where(*criteria).values(**values).execution_options(
                synchronize_session="fetch"
            )
        )
        session.commit()
        return result.rowcount
    except Exception as e:
        session.rollback()
        raise BaseError(
            f"Failed to update {model_class.__name__}: {str(e)}",
            error_code=ErrorCode.DATABASE_ERROR,
            cause=e,
            model=model_class.__name__,
        )


def delete_record(
    session: Session,
    model_class: Type[T],
    record_id: str,
    tenant_id: Optional[str] = None,
    soft_delete: bool = True,
) -> bool:
    """
    Generic delete operation for any model.

    Models with a ``deleted_at`` column are tombstoned unless ``soft_delete``
    is False; everything else is removed.

    Returns:
        True if deleted, False if not found

    Raises:
        BaseError: If delete fails
    """
    logger = get_logger()

    record = get_record_by_id(session, model_class, record_id, tenant_id)
    if not record:
        return False

    soft = soft_delete and hasattr(record, "deleted_at")
    try:
        if soft:
            record.deleted_at = datetime.now(timezone.utc)
        else:
            session.delete(record)
        session.commit()

        logger.info(
            f"{'Soft' if soft else 'Hard'} deleted {model_class.__name__}",
            extra={"model": model_class.__name__, "record_id": record_id, "tenant_id": tenant_id},
        )

        return True

    except Exception as e:
        session.rollback()
        raise BaseError(
            f"Failed to delete {model_class.__name__}: {str(e)}",
            error_code=ErrorCode.DATABASE_ERROR,
            cause=e,
            model=model_class.__name__,
            record_id=record_id,
        )


def list_records(
    session: Session,
    model_class: Type[T],
    filters: Optional[Dict[str, Any]] = None,
    tenant_id: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    order_by: Optional[str] = None,
) -> List[T]:
    """
    Generic list operation for any model.

    Ordered by ``order_by`` when given, otherwise newest first.
    """
    query = _apply_filters(session.query(model_class), model_class, filters, tenant_id)

    if order_by and hasattr(model_class, order_by):
        query = query.order_by(getattr(model_class, order_by))
    elif hasattr(model_class, "created_at"):
        query = query.order_by(model_class.created_at.desc())  # type: ignore[attr-defined]

    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)

    return query.all()


def count_records(
    session: Session,
    model_class: Type[T],
    filters: Optional[Dict[str, Any]] = None,
    tenant_id: Optional[str] = None,
) -> int:
    """Generic count operation for any model."""
    return _apply_filters(session.query(model_class), model_class, filters, tenant_id).count()
