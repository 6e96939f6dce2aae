"""Staleness evaluation for cached AI results.

A cached result can be present and unexpired yet no longer trustworthy
because the conversation has moved on.  It is stale when either enough new
messages arrived since it was computed, or it is old enough; one dimension
alone is sufficient.
"""

from __future__ import annotations

from datetime import datetime

from intelligence import config as cfg
from intelligence.models import CacheEntry, StalenessVerdict, utc_now


def evaluate(
    entry: CacheEntry,
    current_message_count: int,
    message_delta_threshold: int | None = None,
    age_hours_threshold: float | None = None,
    *,
    now: datetime | None = None,
) -> StalenessVerdict:
    """Return the staleness verdict for *entry*.  Pure; performs no I/O."""
    if message_delta_threshold is None:
        message_delta_threshold = cfg.STALENESS_MESSAGE_THRESHOLD
    if age_hours_threshold is None:
        age_hours_threshold = cfg.STALENESS_HOURS_THRESHOLD
    now = now or utc_now()

    messages_since_cache = current_message_count - entry.source_message_count
    hours_since_cache = (now - entry.created_at).total_seconds() / 3600.0

    is_stale = (
        messages_since_cache >= message_delta_threshold
        or hours_since_cache >= age_hours_threshold
    )
    return StalenessVerdict(
        is_stale=is_stale,
        messages_since_cache=messages_since_cache,
        hours_since_cache=hours_since_cache,
    )
