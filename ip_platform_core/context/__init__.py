"""Context management for the IP platform core."""

from .operation_context import OperationContext, OperationHandler, operation
from .request_context import RequestContext
from .tenant_context import TenantContext, tenant_context

__all__ = [
    "OperationContext",
    "OperationHandler",
    "operation",
    "RequestContext",
    "TenantContext",
    "tenant_context",
]
