"""Per-user, per-feature, per-day quota for AI-backed operations.

Counters live in one document per ``(user, day)`` with one field per feature
type.  The limit check and the increment are a single store primitive
(``increment_if_below``) so concurrent requests can never push a counter past
the configured quota.

The limiter fails closed: if the counter store is unreachable the request is
refused with :class:`RateLimiterUnavailable`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from intelligence import config as cfg
from intelligence.adapter.document_store import DocumentStore
from intelligence.errors import RateLimiterUnavailable, RateLimitExceeded, StoreUnavailable
from intelligence.models import FeatureType, utc_now
from intelligence.observability.tracing import record_metric

logger = logging.getLogger(__name__)

# Old days are never queried again; two days covers any timezone skew.
COUNTER_TTL_SECONDS = 2 * 24 * 3600


def _resolve_zone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown rate limit timezone %r; using UTC", name)
        return timezone.utc


class RateLimiter:
    def __init__(
        self,
        store: DocumentStore,
        *,
        tz_name: str | None = None,
        clock: Callable[[], datetime] = utc_now,
        default_limit: int | None = None,
    ) -> None:
        self._store = store
        self._zone = _resolve_zone(tz_name or cfg.RATE_LIMIT_TIMEZONE)
        self._clock = clock
        self._default_limit = default_limit if default_limit is not None else cfg.DEFAULT_DAILY_LIMIT

    def day(self, now: datetime | None = None) -> str:
        """Calendar date (``YYYY-MM-DD``) of *now* in the reference timezone."""
        return (now or self._clock()).astimezone(self._zone).strftime("%Y-%m-%d")

    def counter_key(self, user_id: str, now: datetime | None = None) -> str:
        return f"rate_limits:{user_id}:{self.day(now)}"

    async def check_and_increment(
        self,
        user_id: str,
        feature_type: FeatureType,
        daily_limit: int | None = None,
    ) -> int:
        """Consume one unit of quota and return the new count.

        Raises
        ------
        RateLimitExceeded
            The counter already reached *daily_limit*; nothing was incremented.
        RateLimiterUnavailable
            The counter store failed.
        """
        limit = self._default_limit if daily_limit is None else daily_limit
        key = self.counter_key(user_id)
        try:
            count = await self._store.increment_if_below(
                key, feature_type.value, limit, ttl_seconds=COUNTER_TTL_SECONDS
            )
        except StoreUnavailable as exc:
            record_metric("rate_limiter_unavailable")
            logger.error("Rate limiter store failed for %s (%s)", user_id, feature_type.value)
            raise RateLimiterUnavailable(str(exc)) from exc

        if count is None:
            record_metric("rate_limit_exceeded")
            logger.info("Rate limit exceeded: user=%s feature=%s limit=%d", user_id, feature_type.value, limit)
            raise RateLimitExceeded(limit)

        logger.debug("Rate limit usage: user=%s feature=%s count=%d/%d", user_id, feature_type.value, count, limit)
        return count

    async def remaining(
        self,
        user_id: str,
        feature_type: FeatureType,
        daily_limit: int | None = None,
    ) -> int:
        """Quota left today; ``0`` when the counter store cannot be read."""
        limit = self._default_limit if daily_limit is None else daily_limit
        try:
            doc = await self._store.get(self.counter_key(user_id))
        except StoreUnavailable:
            logger.warning("Rate limiter store failed reading quota for %s", user_id, exc_info=True)
            return 0
        current = int((doc or {}).get(feature_type.value, 0))
        return max(0, limit - current)
