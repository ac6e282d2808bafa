"""
Operation context for handling cross-cutting concerns.

The ``@operation()`` decorator wraps service methods (sync or async) with
ENTER/EXIT/ERROR log lines carrying an operation id, the correlation id and
the duration. Call arguments are never logged because they can carry raw API
keys and webhook secrets.
"""

import asyncio
import time
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar, Union, cast

from ..exceptions import BaseError, get_correlation_id, reset_correlation_id, set_correlation_id
from ..utils.logger import get_logger
from .tenant_context import TenantContext


class OperationContext:
    """Context for a specific operation."""

    def __init__(self, operation_name: str, correlation_id: Optional[str] = None, **context):
        self.operation_name = operation_name
        self.operation_id = str(uuid.uuid4())

        # Nested operations inherit the caller's correlation id
        self.correlation_id = correlation_id or get_correlation_id() or str(uuid.uuid4())

        self.context = context
        self.context["operation_id"] = self.operation_id
        self.context["correlation_id"] = self.correlation_id

        self.start_time = time.monotonic()
        self.metrics: Dict[str, Union[int, float]] = {}

    @property
    def duration_ms(self) -> float:
        """Get the operation duration in milliseconds."""
        return (time.monotonic() - self.start_time) * 1000

    def add_context(self, **kwargs) -> None:
        self.context.update(kwargs)

    def add_metric(self, name: str, value: Union[int, float]) -> None:
        self.metrics[name] = value


class OperationHandler:
    """Handles operation logging and error enrichment."""

    def __init__(self, logger=None):
        self.logger = logger if logger is not None else get_logger()

    @contextmanager
    def operation(self, name: str, **context):
        """Context manager for operations."""
        tenant_id = TenantContext.get_current_tenant_id()
        if tenant_id and "tenant_id" not in context:
            context["tenant_id"] = tenant_id

        op_ctx = OperationContext(name, **context)
        ids = {"operation_id": op_ctx.operation_id, "correlation_id": op_ctx.correlation_id}
        token = set_correlation_id(op_ctx.correlation_id)

        self.logger.info(f"ENTER: {name}", extra={**context, **ids})

        try:
            yield op_ctx

            self.logger.info(
                f"EXIT: {name}",
                extra={
                    **context,
                    **ids,
                    "duration_ms": round(op_ctx.duration_ms, 2),
                    "status": "success",
                    **op_ctx.metrics,
                },
            )

        except BaseError as e:
            e.add_context(
                operation_name=name,
                operation_id=op_ctx.operation_id,
                operation_duration_ms=op_ctx.duration_ms,
            )

            # BaseError already logged itself on construction
            self.logger.error(
                f"ERROR: {name} -> {e.error_code.value}: {e.message}",
                extra={
                    **context,
                    **ids,
                    "duration_ms": round(op_ctx.duration_ms, 2),
                    "error_id": e.error_id,
                    "error_code": e.error_code.value,
                    "status": "error",
                },
            )
            raise

        except Exception as e:
            self.logger.exception(
                f"ERROR: {name} -> {type(e).__name__}: {str(e)}",
                extra={
                    **context,
                    **ids,
                    "duration_ms": round(op_ctx.duration_ms, 2),
                    "error_type": type(e).__name__,
                    "status": "error",
                },
            )
            raise

        finally:
            reset_correlation_id(token)


F = TypeVar("F", bound=Callable[..., Any])


def _operation_name(func: Callable, args: tuple, name: Optional[str]) -> str:
    if name is not None:
        return name

    op_name = func.__name__
    if args and hasattr(args[0], func.__name__):
        op_name = f"{args[0].__class__.__name__}.{op_name}"

    module_name = func.__module__.split(".")[-1]
    return f"{module_name}.{op_name}"


def _operation_context(func: Callable, args: tuple) -> Dict[str, Any]:
    context: Dict[str, Any] = {"source_module": func.__module__}
    if args and hasattr(args[0], func.__name__):
        context["class"] = args[0].__class__.__name__
    return context


def operation(name: Union[Optional[str], Callable] = None):
    """
    Decorator for operations.

    Args:
        name: Optional operation name. If not provided, one is generated from
             the module, class and function names.
    """

    def decorator(func: F) -> F:
        if asyncio.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args, **kwargs) -> Any:
                handler = OperationHandler()
                with handler.operation(
                    _operation_name(func, args, name), **_operation_context(func, args)
                ):
                    return await func(*args, **kwargs)

            return cast(F, async_wrapper)

        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            handler = OperationHandler()
            with handler.operation(
                _operation_name(func, args, name), **_operation_context(func, args)
            ):
                return func(*args, **kwargs)

        return cast(F, wrapper)

    # Handle case where decorator is used without parentheses
    if callable(name):
        func, name = name, None
        return decorator(func)

    return decorator
