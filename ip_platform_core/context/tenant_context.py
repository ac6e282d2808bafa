"""
Tenant context management.

Holds the tenant being served by the current thread or asyncio task so log
records can be tagged with it. Services never read authorization data from
here: the tenant for a mutating call always comes from an explicit
RequestContext.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

from ..exceptions import ErrorCode, ValidationError
from ..utils.logger import get_logger

_current_tenant: ContextVar[Optional[str]] = ContextVar("current_tenant", default=None)


class TenantContext:
    """Context-local holder for the current tenant id."""

    _logger = get_logger()

    @staticmethod
    def _validated(tenant_id: str) -> str:
        if not tenant_id or not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ValidationError(
                "tenant_id must be a non-empty string",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="tenant_id",
                value=tenant_id,
            )
        return tenant_id.strip()

    @classmethod
    def set_current_tenant(cls, tenant_id: str) -> None:
        """
        Set the current tenant ID for the execution context.

        Raises:
            ValidationError: If tenant_id is empty or not a string
        """
        _current_tenant.set(cls._validated(tenant_id))
        cls._logger.debug(f"Current tenant set to: {tenant_id}")

    @classmethod
    def get_current_tenant_id(cls) -> Optional[str]:
        """Get the current tenant ID, or None if not set."""
        return _current_tenant.get()

    @classmethod
    def clear_current_tenant(cls) -> None:
        """Clear the current tenant ID from the execution context."""
        _current_tenant.set(None)
        cls._logger.debug("Current tenant cleared")


@contextmanager
def tenant_context(tenant_id: str) -> Generator[None, None, None]:
    """
    Set the current tenant for the duration of the block, then restore the previous one.

    Each asyncio task works on its own copy of the context, so overlapping
    blocks in concurrent tasks never see each other's tenant.
    """
    token = _current_tenant.set(TenantContext._validated(tenant_id))
    try:
        yield
    finally:
        _current_tenant.reset(token)
