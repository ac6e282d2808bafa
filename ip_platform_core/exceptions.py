"""
Error hierarchy for the gateway and the webhook dispatcher.

Every error carries a stable ErrorCode, the HTTP status the outer surface
should answer with, free-form context and the correlation id of the
operation that raised it. Errors log themselves once, when constructed.
"""

import traceback
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# Logger is imported lazily in _log_error to avoid a circular dependency

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class ErrorCode(str, Enum):
    """Error codes returned to API clients. The leading digit is the family."""

    # 1xxx platform
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONFIGURATION_ERROR = "1003"

    # 2xxx input
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"

    # 3xxx resources
    NOT_FOUND = "3000"
    DUPLICATE = "3001"

    # 4xxx access
    PERMISSION_DENIED = "4003"
    INVALID_CREDENTIAL = "4005"


class BaseError(Exception):
    """Root of every error raised by ip_platform_core."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Args:
            message: Client-safe description; never include secrets or raw keys
            error_code: Code reported to API clients
            status_code: HTTP status the outer surface should use
            cause: Underlying exception, kept for logs and error_chain
            **context: Identifiers that help locate the failure
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.context = context
        self.error_id = str(uuid.uuid4())
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.correlation_id = get_correlation_id()

        self.cause_details: Optional[Dict[str, Any]] = None
        if cause is not None:
            self.cause_details = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

    def _log_error(self) -> None:
        from .utils.logger import get_logger

        extra: Dict[str, Any] = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "timestamp": self.timestamp,
            "context": dict(self.context),
        }
        if self.correlation_id:
            extra["correlation_id"] = self.correlation_id

        logger = get_logger()
        summary = f"{self.error_code.value}: {self.message}"
        if self.status_code >= 500:
            logger.error(f"Error {summary}", extra=extra, exc_info=self.cause)
        elif self.status_code >= 400:
            logger.warning(f"Client error {summary}", extra=extra)
        else:
            logger.info(f"Error {summary}", extra=extra)

    def to_dict(
        self, include_cause: bool = False, include_traceback: bool = False
    ) -> Dict[str, Any]:
        """
        Response body for this error.

        The cause is omitted unless asked for, and its traceback only when
        ``include_traceback`` is also set (debug mode).
        """
        body: Dict[str, Any] = {
            "id": self.error_id,
            "code": self.error_code.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "context": dict(self.context),
        }
        if self.correlation_id:
            body["correlation_id"] = self.correlation_id

        if include_cause and self.cause_details:
            cause = {k: self.cause_details[k] for k in ("type", "message")}
            if include_traceback:
                cause["traceback"] = self.cause_details["traceback"]
            body["cause"] = cause

        return {"error": body}

    def add_context(self, **kwargs: Any) -> "BaseError":
        """Attach more identifiers; returns self so calls can be chained."""
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        """This error followed by each ``cause`` it wraps, innermost last."""
        chain: List[Exception] = []
        current: Optional[Exception] = self
        while current is not None:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


class RepositoryError(BaseError):
    """Persistence failures and missing or conflicting rows."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Failures inside a service operation; always a 500."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Rejected input; always a 400."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class InvalidCredentialError(BaseError):
    """Raised when an API key is missing, malformed, unknown, revoked or expired."""

    def __init__(self, message: str = "Invalid API key", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.INVALID_CREDENTIAL, status_code=401, **kwargs
        )


def _with_identifiers(message: str, identifiers: Dict[str, Any]) -> str:
    if not identifiers:
        return message
    return f"{message}: " + ", ".join(f"{k}={v}" for k, v in identifiers.items())


def not_found(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> RepositoryError:
    """
    404 for a missing row, e.g. ``not_found("ApiKey", api_key_id=...)``.

    Rows owned by another tenant are reported the same way.
    """
    return RepositoryError(
        _with_identifiers(f"{resource_type} not found", identifiers),
        error_code=ErrorCode.NOT_FOUND,
        status_code=404,
        cause=cause,
        resource_type=resource_type,
        **identifiers,
    )


def duplicate(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> RepositoryError:
    """409 for a unique-constraint conflict."""
    return RepositoryError(
        _with_identifiers(f"Duplicate {resource_type}", identifiers),
        error_code=ErrorCode.DUPLICATE,
        status_code=409,
        cause=cause,
        resource_type=resource_type,
        **identifiers,
    )


def validation_failed(
    field: str, value: Any, reason: str, cause: Optional[Exception] = None
) -> ValidationError:
    """400 naming the offending field; ``value`` is stringified into the context."""
    return ValidationError(
        f"Validation failed for {field}: {reason}",
        field=field,
        error_code=ErrorCode.VALIDATION_FAILED,
        cause=cause,
        value=str(value),
        reason=reason,
    )


def permission_denied(
    action: str, resource: str, cause: Optional[Exception] = None, **context
) -> BaseError:
    """403 for a key that lacks ``action`` (usually a scope) on ``resource``."""
    return BaseError(
        f"Permission denied: {action} on {resource}",
        error_code=ErrorCode.PERMISSION_DENIED,
        status_code=403,
        cause=cause,
        action=action,
        resource=resource,
        **context,
    )


# Correlation id of the running operation; each thread and asyncio task has its own
def set_correlation_id(correlation_id: Optional[str]) -> Token:
    """
    Set the correlation ID for the current context.

    Returns:
        Token for reset_correlation_id
    """
    return _correlation_id.set(correlation_id)


def reset_correlation_id(token: Token) -> None:
    """Restore the correlation ID that was current before set_correlation_id."""
    _correlation_id.reset(token)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)
