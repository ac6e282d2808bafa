"""
Base service implementation with session ownership shared by all services.
"""

from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..db.db_config import get_db_manager
from ..exceptions import ErrorCode, ValidationError
from ..utils.logger import get_logger


class SessionManagedService:
    """
    Service that owns and manages its own database session.

    Pass ``session`` to share one session between services (tests, or a
    request that touches several services); otherwise a session is taken
    from the global DatabaseManager and owned by this service.
    """

    def __init__(self, session: Optional[Session] = None, logger=None):
        if session is not None:
            self.session = session
            self._owns_session = False
        else:
            self.session = self._create_session()
            self._owns_session = True

        self.logger = logger or get_logger()

    def _create_session(self) -> Session:
        """Create a new database session from the global database manager."""
        return get_db_manager().session_factory()

    @contextmanager
    def transaction(self):
        """
        Context manager for transactional operations.

        Usage:
            with service.transaction():
                service.create_something()
                service.update_something()
                # Auto-commits on success, rollback on exception
        """
        try:
            yield self.session
            if self._owns_session:
                self.session.commit()
        except Exception:
            if self._owns_session:
                self.session.rollback()
            raise

    def commit(self):
        """Manually commit the current transaction."""
        if self._owns_session:
            self.session.commit()

    def rollback(self):
        """Manually rollback the current transaction."""
        if self._owns_session:
            self.session.rollback()

    def close(self):
        """Close the session if we own it."""
        if self._owns_session and self.session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Auto-close session on exit."""
        if exc_type:
            self.rollback()
        else:
            self.commit()
        self.close()

    def _validation_error(self, error: PydanticValidationError, subject: str) -> ValidationError:
        """Convert the first pydantic validation failure into a ValidationError."""
        first = error.errors()[0]
        return ValidationError(
            f"Invalid {subject}: {first['msg']}",
            field=".".join(str(loc) for loc in first["loc"]),
            error_code=ErrorCode.VALIDATION_FAILED,
            cause=error,
        )

    @staticmethod
    def paginate_results(
        results: List[Any], total_count: int, page: int, page_size: int
    ) -> Dict[str, Any]:
        """
        Create a standardized pagination response.

        Args:
            results: Results for current page
            total_count: Total number of records
            page: Current page number
            page_size: Size of each page

        Returns:
            Paginated response with metadata
        """
        total_pages = (total_count + page_size - 1) // page_size if page_size > 0 else 0

        return {
            "data": results,
            "pagination": {
                "page": page,
                "page_size": page_size,
                "total_count": total_count,
                "total_pages": total_pages,
                "has_previous": page > 1,
                "has_next": page < total_pages,
            },
        }
