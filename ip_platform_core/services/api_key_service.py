"""
Credential gateway: API key issuance, authentication, authorization,
rate limiting and revocation.

The raw key is returned once from ``issue_api_key`` and never stored or
logged; lookups go through its SHA-256 hash.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..config import get_config
from ..constants import API_SCOPE_LABELS, AuditAction
from ..context.operation_context import operation
from ..context.request_context import RequestContext
from ..context.tenant_context import tenant_context
from ..db.db_api_key_models import ApiKey
from ..db.db_base import ensure_utc
from ..exceptions import InvalidCredentialError, not_found, permission_denied
from ..schemas.api_key_schemas import (
    ApiKeyCreate,
    ApiKeyRead,
    AuthenticatedKey,
    GatewayDecision,
    IssuedApiKey,
    RateLimitResult,
)
from ..schemas.audit_schemas import AuditEntry
from ..utils.crud_helpers import (
    create_record,
    get_record,
    get_record_by_id,
    list_records,
    update_record,
    update_where,
)
from ..utils.hash_utils import generate_api_key, hash_api_key
from ..utils.scope_utils import authorize
from .audit_service import AuditSink, emit_audit, get_audit_sink
from .base_service import SessionManagedService
from .rate_limit_service import RateLimiter, UsageCounter, get_usage_counter

BEARER_PREFIX = "Bearer "


class ApiKeyService(SessionManagedService):
    """
    Service for tenant API keys.

    Every mutating call takes an explicit RequestContext; the tenant it names
    is the only tenant the call can touch.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        audit_sink: Optional[AuditSink] = None,
        usage_counter: Optional[UsageCounter] = None,
        logger=None,
    ):
        super().__init__(session=session, logger=logger)
        self.config = get_config().gateway
        self.audit_sink = audit_sink or get_audit_sink(self.session)
        self.rate_limiter = RateLimiter(
            usage_counter or get_usage_counter(self.session),
            window_seconds=self.config.rate_limit_window_seconds,
        )

    @operation()
    def issue_api_key(
        self,
        context: RequestContext,
        name: str,
        scopes: List[str],
        expires_at: Optional[datetime] = None,
        rate_limit: Optional[int] = None,
    ) -> IssuedApiKey:
        """
        Create a new API key for the caller's tenant.

        Args:
            context: Caller context (tenant, actor, origin)
            name: Human-readable key name
            scopes: Granted scopes, e.g. ``["forms.*", "cases.read"]``
            expires_at: Optional expiry, must be in the future
            rate_limit: Requests per window (defaults to the gateway default)

        Returns:
            IssuedApiKey holding the stored metadata and the raw key

        Raises:
            ValidationError: If name is blank, scopes are empty or blank,
                expires_at is in the past, or rate_limit is not positive
        """
        try:
            data = ApiKeyCreate(
                name=name, scopes=scopes, expires_at=expires_at, rate_limit=rate_limit
            )
        except PydanticValidationError as e:
            raise self._validation_error(e, "API key request")

        generated = generate_api_key(
            prefix=self.config.key_prefix,
            num_bytes=self.config.key_bytes,
            display_prefix_length=self.config.display_prefix_length,
        )

        with tenant_context(context.tenant_id):
            api_key = create_record(
                self.session,
                ApiKey,
                {
                    "name": data.name,
                    "key_hash": generated.key_hash,
                    "key_prefix": generated.key_prefix,
                    "scopes": data.scopes,
                    "expires_at": data.expires_at,
                    "rate_limit": data.rate_limit or self.config.default_rate_limit,
                    "is_active": True,
                    "usage_count": 0,
                    "created_by": context.actor_id,
                },
                tenant_id=context.tenant_id,
            )

            emit_audit(
                self.audit_sink,
                AuditEntry.from_context(
                    context,
                    AuditAction.API_KEY_CREATED,
                    "api_key",
                    entity_id=api_key.id,
                    description=f'API key "{data.name}" created',
                    new_value={
                        "name": data.name,
                        "scopes": data.scopes,
                        "expires_at": data.expires_at.isoformat() if data.expires_at else None,
                    },
                ),
            )

        return IssuedApiKey(api_key=ApiKeyRead.model_validate(api_key), key=generated.key)

    @operation()
    def authenticate(self, raw_key: str) -> AuthenticatedKey:
        """
        Resolve a raw API key to its tenant and scopes.

        On success the key's usage counter and last-used time are updated in a
        single UPDATE statement.

        Raises:
            InvalidCredentialError: For a missing, malformed, unknown, revoked
                or expired key. The message is the same in every case.
        """
        if not isinstance(raw_key, str) or not raw_key.startswith(self.config.key_prefix):
            raise InvalidCredentialError(reason="malformed")

        try:
            key_hash = hash_api_key(raw_key)
        except UnicodeEncodeError:
            # Lone surrogates, e.g. from a header decoded with surrogateescape
            raise InvalidCredentialError(reason="malformed")

        api_key = get_record(self.session, ApiKey, {"key_hash": key_hash})
        if api_key is None:
            raise InvalidCredentialError(reason="unknown")
        if not api_key.is_active:
            raise InvalidCredentialError(reason="revoked", api_key_id=api_key.id)

        now = datetime.now(timezone.utc)
        expires_at = ensure_utc(api_key.expires_at)
        if expires_at is not None and expires_at <= now:
            raise InvalidCredentialError(reason="expired", api_key_id=api_key.id)

        update_where(
            self.session,
            ApiKey,
            [ApiKey.id == api_key.id],
            {"usage_count": ApiKey.usage_count + 1, "last_used_at": now},
        )

        return AuthenticatedKey(
            tenant_id=api_key.tenant_id,
            api_key_id=api_key.id,
            scopes=list(api_key.scopes),
            rate_limit=api_key.rate_limit,
        )

    @staticmethod
    def available_scopes() -> Dict[str, str]:
        """Scopes a key can be issued with, mapped to display labels."""
        return {scope.value: label for scope, label in API_SCOPE_LABELS.items()}

    @staticmethod
    def authorize(scopes: List[str], required_scope: str) -> bool:
        """Return True if the granted scopes cover ``required_scope``."""
        return authorize(scopes, required_scope)

    def require_scope(self, auth: AuthenticatedKey, required_scope: str) -> None:
        """
        Raises:
            BaseError: 403 permission denied if the key lacks ``required_scope``
        """
        if not authorize(auth.scopes, required_scope):
            raise permission_denied(
                required_scope, "api", api_key_id=auth.api_key_id, tenant_id=auth.tenant_id
            )

    def check_rate_limit(
        self, api_key_id: str, limit: int, now: Optional[datetime] = None
    ) -> RateLimitResult:
        """Sliding-window check; see RateLimiter.check_rate_limit."""
        return self.rate_limiter.check_rate_limit(api_key_id, limit, now=now)

    @operation()
    def authenticate_request(
        self,
        authorization_header: Optional[str],
        required_scope: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GatewayDecision:
        """
        Run the full gateway for one request.

        Parses ``Authorization: Bearer <key>``, authenticates, checks the
        required scope (if any) and the rate limit, and counts the request
        when it is admitted.

        Returns:
            GatewayDecision; ``decision.allowed`` is False when rate limited

        Raises:
            InvalidCredentialError: Missing header or invalid key (401)
            BaseError: Missing scope (403)
        """
        if not isinstance(authorization_header, str) or not authorization_header.startswith(
            BEARER_PREFIX
        ):
            raise InvalidCredentialError(
                "Missing or invalid Authorization header", reason="missing_bearer"
            )

        auth = self.authenticate(authorization_header[len(BEARER_PREFIX):].strip())

        if required_scope:
            self.require_scope(auth, required_scope)

        status = self.rate_limiter.consume(
            auth.api_key_id, auth.tenant_id, auth.rate_limit, now=now
        )
        return GatewayDecision(auth=auth, rate_limit=status)

    @operation()
    def revoke_api_key(self, context: RequestContext, api_key_id: str) -> ApiKeyRead:
        """
        Deactivate one of the caller's tenant's keys.

        Raises:
            RepositoryError: 404 if the key does not exist or belongs to another tenant
        """
        with tenant_context(context.tenant_id):
            api_key = get_record_by_id(self.session, ApiKey, api_key_id, context.tenant_id)
            if api_key is None:
                raise not_found("ApiKey", api_key_id=api_key_id, tenant_id=context.tenant_id)

            api_key = update_record(
                self.session, ApiKey, api_key_id, {"is_active": False}, context.tenant_id
            )

            emit_audit(
                self.audit_sink,
                AuditEntry.from_context(
                    context,
                    AuditAction.API_KEY_DELETED,
                    "api_key",
                    entity_id=api_key_id,
                    description=f'API key "{api_key.name}" revoked',
                ),
            )

        return ApiKeyRead.model_validate(api_key)

    def list_api_keys(self, tenant_id: str) -> List[ApiKeyRead]:
        """List a tenant's keys, newest first."""
        return [
            ApiKeyRead.model_validate(api_key)
            for api_key in list_records(self.session, ApiKey, tenant_id=tenant_id)
        ]
