"""
Sliding-window rate limiting for API keys.

Usage events are counted by a pluggable store: the ``api_key_usage`` table
(default) or a Redis sorted set per key. The window is always the trailing
``rate_limit_window_seconds`` ending at ``now``.

``RateLimiter.consume`` decides and records in one atomic step per store, so
concurrent requests for the same key can never push it past its limit.
``check_rate_limit`` is a read-only peek.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional, Protocol, Tuple

import redis
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import get_config
from ..db.db_api_key_models import ApiKey, ApiKeyUsage
from ..db.db_base import ensure_utc
from ..enums import RateLimitBackend
from ..exceptions import BaseError, ErrorCode, validation_failed
from ..schemas.api_key_schemas import RateLimited, RateLimitResult, RateLimitStatus
from ..utils.logger import get_logger


class Acquired(NamedTuple):
    """Result of an atomic check-and-record."""

    admitted: bool
    count: int  # events in the window before this request
    oldest: Optional[datetime]


class UsageCounter(Protocol):
    """Store of admitted-request timestamps per API key."""

    def count_since(
        self, api_key_id: str, window_start: datetime
    ) -> Tuple[int, Optional[datetime]]:
        """Return the number of events after ``window_start`` and the oldest of them."""
        ...

    def record(self, api_key_id: str, tenant_id: str, used_at: datetime) -> None: ...

    def acquire(
        self,
        api_key_id: str,
        tenant_id: str,
        limit: int,
        used_at: datetime,
        window_start: datetime,
    ) -> Acquired:
        """Record ``used_at`` if fewer than ``limit`` events are in the window, atomically."""
        ...


class DatabaseUsageCounter:
    """Counts rows of ``api_key_usage``."""

    def __init__(self, session: Session):
        self.session = session

    def count_since(
        self, api_key_id: str, window_start: datetime
    ) -> Tuple[int, Optional[datetime]]:
        count, oldest = (
            self.session.query(func.count(ApiKeyUsage.id), func.min(ApiKeyUsage.used_at))
            .filter(ApiKeyUsage.api_key_id == api_key_id, ApiKeyUsage.used_at > window_start)
            .one()
        )
        return count, ensure_utc(oldest)

    def record(self, api_key_id: str, tenant_id: str, used_at: datetime) -> None:
        try:
            self.session.add(ApiKeyUsage(api_key_id=api_key_id, tenant_id=tenant_id, used_at=used_at))
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise BaseError(
                "Failed to record API key usage",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                api_key_id=api_key_id,
            )

    def acquire(
        self,
        api_key_id: str,
        tenant_id: str,
        limit: int,
        used_at: datetime,
        window_start: datetime,
    ) -> Acquired:
        """
        Count and insert in one transaction.

        The key's row is locked (``SELECT ... FOR UPDATE``) first, so
        concurrent acquirers for the same key run one after another until
        commit.
        """
        try:
            self.session.execute(select(ApiKey.id).where(ApiKey.id == api_key_id).with_for_update())
            count, oldest = self.count_since(api_key_id, window_start)
            admitted = count < limit
            if admitted:
                self.session.add(
                    ApiKeyUsage(api_key_id=api_key_id, tenant_id=tenant_id, used_at=used_at)
                )
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise BaseError(
                "Failed to record API key usage",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                api_key_id=api_key_id,
            )
        return Acquired(admitted=admitted, count=count, oldest=oldest)


class RedisUsageCounter:
    """
    Counts members of a sorted set per API key, scored by epoch seconds.

    Expired members are trimmed in the same pipeline as the count, and the
    key expires one window after its newest event.
    """

    def __init__(self, client: "redis.Redis", key_prefix: str, window_seconds: int):
        self.client = client
        self.key_prefix = key_prefix
        self.window_seconds = window_seconds

    def _key(self, api_key_id: str) -> str:
        return f"{self.key_prefix}:{api_key_id}"

    @staticmethod
    def _member(used_at: datetime) -> Tuple[str, float]:
        score = used_at.timestamp()
        return f"{score}:{uuid.uuid4().hex}", score

    @staticmethod
    def _oldest(entries) -> Optional[datetime]:
        if not entries:
            return None
        return datetime.fromtimestamp(entries[0][1], tz=timezone.utc)

    def count_since(
        self, api_key_id: str, window_start: datetime
    ) -> Tuple[int, Optional[datetime]]:
        key = self._key(api_key_id)

        pipe = self.client.pipeline()
        pipe.zremrangebyscore(key, "-inf", window_start.timestamp())
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        _, count, oldest_entries = pipe.execute()

        return int(count), self._oldest(oldest_entries)

    def record(self, api_key_id: str, tenant_id: str, used_at: datetime) -> None:
        key = self._key(api_key_id)
        member, score = self._member(used_at)

        pipe = self.client.pipeline()
        pipe.zadd(key, {member: score})
        pipe.expire(key, self.window_seconds)
        pipe.execute()

    def acquire(
        self,
        api_key_id: str,
        tenant_id: str,
        limit: int,
        used_at: datetime,
        window_start: datetime,
    ) -> Acquired:
        """
        Insert-then-count inside one MULTI/EXEC transaction.

        Each request's own member is part of the count it sees, so two
        concurrent requests can never both observe the last free slot. A
        denied request removes its member again.
        """
        key = self._key(api_key_id)
        member, score = self._member(used_at)

        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, "-inf", window_start.timestamp())
        pipe.zadd(key, {member: score})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, self.window_seconds)
        _, _, count_with_request, oldest_entries, _ = pipe.execute()

        count = int(count_with_request) - 1
        admitted = count < limit
        if not admitted:
            self.client.zrem(key, member)

        return Acquired(admitted=admitted, count=count, oldest=self._oldest(oldest_entries))


def get_usage_counter(session: Session) -> UsageCounter:
    """Build the usage counter selected by ``RateLimitConfig.backend``."""
    app_config = get_config()
    if app_config.rate_limit.backend == RateLimitBackend.REDIS:
        return RedisUsageCounter(
            client=redis.Redis.from_url(app_config.rate_limit.redis_url),
            key_prefix=app_config.rate_limit.redis_key_prefix,
            window_seconds=app_config.gateway.rate_limit_window_seconds,
        )
    return DatabaseUsageCounter(session)


class RateLimiter:
    """Applies a per-key request limit over a sliding window."""

    def __init__(self, counter: UsageCounter, window_seconds: Optional[int] = None):
        self.counter = counter
        self.window = timedelta(
            seconds=window_seconds or get_config().gateway.rate_limit_window_seconds
        )
        self.logger = get_logger()

    @staticmethod
    def _validate_limit(limit) -> None:
        if not isinstance(limit, int) or limit <= 0:
            raise validation_failed("limit", limit, "rate limit must be a positive integer")

    def _result(
        self,
        api_key_id: str,
        limit: int,
        count: int,
        oldest: Optional[datetime],
        now: datetime,
        allowed: bool,
    ) -> RateLimitResult:
        reset_at = (oldest or now) + self.window

        if allowed:
            return RateLimitStatus(
                allowed=True, limit=limit, remaining=max(0, limit - count), reset_at=reset_at
            )

        self.logger.warning(
            "API key rate limited",
            extra={"api_key_id": api_key_id, "limit": limit, "count": count},
        )
        return RateLimited(limit=limit, reset_at=reset_at)

    def check_rate_limit(
        self, api_key_id: str, limit: int, now: Optional[datetime] = None
    ) -> RateLimitResult:
        """
        Check whether one more request fits in the window, without counting it.

        Args:
            api_key_id: Key being checked
            limit: Maximum admitted requests per window; must be positive
            now: Evaluation time (defaults to the current UTC time)

        Returns:
            RateLimitStatus when allowed, RateLimited otherwise. ``reset_at`` is
            when the oldest counted event leaves the window.

        Raises:
            ValidationError: If limit is not positive
        """
        self._validate_limit(limit)

        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        count, oldest = self.counter.count_since(api_key_id, now - self.window)
        return self._result(api_key_id, limit, count, oldest, now, count < limit)

    def consume(
        self, api_key_id: str, tenant_id: str, limit: int, now: Optional[datetime] = None
    ) -> RateLimitResult:
        """
        Admit and count one request if it fits in the window.

        Same result as ``check_rate_limit``, but the decision and the usage
        record are one atomic step in the counter.

        Raises:
            ValidationError: If limit is not positive
        """
        self._validate_limit(limit)

        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        acquired = self.counter.acquire(api_key_id, tenant_id, limit, now, now - self.window)
        return self._result(
            api_key_id, limit, acquired.count, acquired.oldest, now, acquired.admitted
        )

    def record_usage(
        self, api_key_id: str, tenant_id: str, now: Optional[datetime] = None
    ) -> None:
        """Count one request unconditionally."""
        used_at = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        self.counter.record(api_key_id, tenant_id, used_at)
