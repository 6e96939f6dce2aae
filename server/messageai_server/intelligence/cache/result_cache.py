"""Result cache for AI computations.

Entries are addressed by a deterministic key built from the feature type,
the conversation and an identifier of the input (latest message ID or a
query hash).  Expiry is lazy: an entry found expired during ``lookup`` is
reported absent and deleted as a side effect.

The cache is miss-safe: any store failure is logged and reported as a miss
(on read) or as ``False`` (on write), never as an error to the caller.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import quote

from intelligence.adapter.document_store import DocumentStore
from intelligence.errors import CacheUnavailable, StoreUnavailable
from intelligence.models import CacheEntry, FeatureType, ResultPayload, parse_timestamp, utc_now
from intelligence.observability.tracing import record_metric

logger = logging.getLogger(__name__)

KEY_SEPARATOR = ":"
CACHE_NAMESPACE = "ai_cache"
# Physical TTL slack so the store never evicts before the logical expiry.
_STORE_TTL_GRACE_SECONDS = 60


def _component(value: str) -> str:
    # Percent-encoding leaves no raw separator inside a component.
    return quote(str(value), safe="")


def make_cache_key(
    feature_type: FeatureType, conversation_id: str, *identifiers: str
) -> str:
    """Build a cache key that is deterministic and collision-free across features."""
    if not identifiers:
        raise ValueError("at least one input identifier is required")
    parts = [feature_type.value, conversation_id, *identifiers]
    return KEY_SEPARATOR.join(_component(p) for p in parts)


def query_hash(text: str) -> str:
    """Stable identifier for free-text queries (whitespace and case folded)."""
    normalised = " ".join(text.split()).lower()
    return hashlib.sha256(normalised.encode()).hexdigest()[:16]


class ResultCache:
    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        namespace: str = CACHE_NAMESPACE,
    ) -> None:
        self._store = store
        self._clock = clock
        self._namespace = namespace

    def _doc_key(self, key: str) -> str:
        return f"{self._namespace}/{key}"

    async def _read(self, key: str) -> Optional[dict]:
        try:
            return await self._store.get(self._doc_key(key))
        except StoreUnavailable as exc:
            raise CacheUnavailable(str(exc)) from exc

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for *key*, or ``None`` on miss, expiry or store error."""
        try:
            doc = await self._read(key)
        except CacheUnavailable:
            logger.warning("Cache unavailable on lookup %s; treating as miss", key, exc_info=True)
            record_metric("cache_unavailable")
            return None

        if doc is None:
            logger.debug("Cache miss: %s", key)
            record_metric("cache_miss")
            return None

        try:
            entry = CacheEntry.from_document(key, doc)
        except (KeyError, TypeError, ValueError):
            logger.warning("Unreadable cache entry %s; treating as miss", key, exc_info=True)
            record_metric("cache_miss")
            return None

        if entry.is_expired(self._clock()):
            logger.info("Cache expired: %s", key)
            record_metric("cache_expired")
            try:
                await self._store.delete(self._doc_key(key))
            except StoreUnavailable:
                logger.warning("Failed to delete expired cache entry %s", key, exc_info=True)
            return None

        logger.debug("Cache hit: %s", key)
        record_metric("cache_hit")
        return entry

    async def store(
        self,
        key: str,
        result: ResultPayload,
        feature_type: FeatureType,
        source_message_count: int,
        ttl_hours: float,
    ) -> bool:
        """Write *result* under *key*, replacing any existing entry."""
        if source_message_count < 0:
            raise ValueError("source_message_count must be >= 0")

        now = self._clock()
        entry = CacheEntry(
            key=key,
            feature_type=feature_type,
            result=result,
            source_message_count=source_message_count,
            created_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
        )
        try:
            await self._store.set(
                self._doc_key(key),
                entry.to_document(),
                ttl_seconds=ttl_hours * 3600 + _STORE_TTL_GRACE_SECONDS,
            )
        except StoreUnavailable:
            logger.warning("Cache unavailable on store %s", key, exc_info=True)
            record_metric("cache_store_failure")
            return False

        logger.info("Stored in cache: %s, expires: %s", key, entry.expires_at.isoformat())
        return True

    async def sweep_expired(self) -> int:
        """Delete expired entries.  Optional housekeeping; reads never depend on it."""
        removed = 0
        try:
            doc_keys = await self._store.keys(f"{self._namespace}/")
        except StoreUnavailable:
            logger.warning("Cache sweep skipped; store unavailable", exc_info=True)
            return 0

        now = self._clock()
        for doc_key in doc_keys:
            # Raw reads: the sweep never touches the hit/miss counters.
            try:
                doc = await self._store.get(doc_key)
                if doc is None:
                    continue
                expires_at = parse_timestamp(doc["expiresAt"])
                if now < expires_at:
                    continue
                await self._store.delete(doc_key)
            except StoreUnavailable:
                logger.warning("Cache sweep stopped; store unavailable", exc_info=True)
                break
            except (KeyError, TypeError, ValueError):
                logger.warning("Unreadable cache entry %s left in place", doc_key)
                continue
            removed += 1
        logger.info("Cache sweep removed=%d scanned=%d", removed, len(doc_keys))
        return removed
