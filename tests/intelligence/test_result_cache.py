"""Unit tests for cache keys and the miss-safe result cache."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "messageai_server"))

import pytest

from fakes import FailingStore, FakeClock
from intelligence.adapter.document_store import InMemoryDocumentStore
from intelligence.cache.result_cache import ResultCache, make_cache_key, query_hash
from intelligence.models import FeatureType, NotificationDecision, Priority, SummaryResult
from intelligence.observability.tracing import get_metrics


def _decision():
    return NotificationDecision(True, "Direct @mention", "Alice: @bob ping", Priority.HIGH)


# ── Keys ─────────────────────────────────────────────────────────────

def test_key_is_deterministic():
    k1 = make_cache_key(FeatureType.SUMMARY, "c1", "m9")
    k2 = make_cache_key(FeatureType.SUMMARY, "c1", "m9")
    assert k1 == k2


def test_key_differs_across_features():
    summary = make_cache_key(FeatureType.SUMMARY, "c1", "m9")
    items = make_cache_key(FeatureType.ACTION_ITEMS, "c1", "m9")
    assert summary != items


def test_key_components_cannot_collide_through_separator():
    """IDs containing the separator must not alias another tuple."""
    a = make_cache_key(FeatureType.SUMMARY, "c:1", "m")
    b = make_cache_key(FeatureType.SUMMARY, "c", "1:m")
    assert a != b
    assert a.count(":") == 2


def test_key_requires_an_identifier():
    with pytest.raises(ValueError):
        make_cache_key(FeatureType.SEARCH, "u1")


def test_query_hash_folds_case_and_whitespace():
    assert query_hash("Deploy  Plan") == query_hash("deploy plan")
    assert query_hash("deploy plan") != query_hash("deploy plans")
    assert len(query_hash("anything")) == 16


# ── Lookup / store ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_store_then_lookup_round_trip():
    clock = FakeClock()
    cache = ResultCache(InMemoryDocumentStore(), clock=clock)
    key = make_cache_key(FeatureType.NOTIFICATION_DECISION, "c1", "m1", "bob")

    assert await cache.store(key, _decision(), FeatureType.NOTIFICATION_DECISION, 5, 1.0)
    entry = await cache.lookup(key)

    assert entry is not None
    assert entry.result == _decision()
    assert entry.source_message_count == 5
    assert entry.created_at == clock.now
    assert get_metrics()["cache_hit"] == 1


@pytest.mark.asyncio
async def test_lookup_missing_key_is_a_miss():
    cache = ResultCache(InMemoryDocumentStore(), clock=FakeClock())
    assert await cache.lookup("summary:c1:nothing") is None
    assert get_metrics()["cache_miss"] == 1


@pytest.mark.asyncio
async def test_expired_entry_is_absent_and_not_resurrected():
    clock = FakeClock()
    store = InMemoryDocumentStore()
    cache = ResultCache(store, clock=clock)
    key = make_cache_key(FeatureType.SUMMARY, "c1", "m1")
    await cache.store(key, SummaryResult("s"), FeatureType.SUMMARY, 3, 1.0)

    original = clock.now
    clock.advance(hours=2)
    assert await cache.lookup(key) is None
    assert get_metrics()["cache_expired"] == 1

    # The expired entry was deleted, so rewinding the clock does not bring it back.
    clock.now = original
    assert await cache.lookup(key) is None
    assert await store.get(f"ai_cache/{key}") is None


@pytest.mark.asyncio
async def test_store_replaces_existing_entry():
    cache = ResultCache(InMemoryDocumentStore(), clock=FakeClock())
    key = make_cache_key(FeatureType.SUMMARY, "c1", "m1")
    await cache.store(key, SummaryResult("first"), FeatureType.SUMMARY, 1, 1.0)
    await cache.store(key, SummaryResult("second"), FeatureType.SUMMARY, 2, 1.0)

    entry = await cache.lookup(key)
    assert entry.result.summary == "second"
    assert entry.source_message_count == 2


@pytest.mark.asyncio
async def test_store_rejects_negative_message_count():
    cache = ResultCache(InMemoryDocumentStore(), clock=FakeClock())
    with pytest.raises(ValueError):
        await cache.store("k", _decision(), FeatureType.NOTIFICATION_DECISION, -1, 1.0)


@pytest.mark.asyncio
async def test_store_rejects_payload_of_the_wrong_feature():
    cache = ResultCache(InMemoryDocumentStore(), clock=FakeClock())
    with pytest.raises(TypeError):
        await cache.store("k", SummaryResult("s"), FeatureType.NOTIFICATION_DECISION, 0, 1.0)


@pytest.mark.asyncio
async def test_unreadable_document_is_a_miss():
    store = InMemoryDocumentStore()
    await store.set("ai_cache/broken", {"featureType": "summary"})
    cache = ResultCache(store, clock=FakeClock())
    assert await cache.lookup("broken") is None


@pytest.mark.asyncio
async def test_store_failure_is_a_miss_never_an_error():
    cache = ResultCache(FailingStore(), clock=FakeClock())

    assert await cache.lookup("summary:c1:m1") is None
    assert await cache.store("summary:c1:m1", SummaryResult("s"), FeatureType.SUMMARY, 1, 1.0) is False

    metrics = get_metrics()
    assert metrics["cache_unavailable"] == 1
    assert metrics["cache_store_failure"] == 1


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_entries():
    clock = FakeClock()
    cache = ResultCache(InMemoryDocumentStore(), clock=clock)
    await cache.store("short", SummaryResult("s"), FeatureType.SUMMARY, 1, 1.0)
    await cache.store("long", SummaryResult("l"), FeatureType.SUMMARY, 1, 48.0)

    clock.advance(hours=2)
    assert await cache.sweep_expired() == 1
    assert await cache.lookup("long") is not None


@pytest.mark.asyncio
async def test_sweep_does_not_count_as_cache_traffic():
    clock = FakeClock()
    cache = ResultCache(InMemoryDocumentStore(), clock=clock)
    await cache.store("short", SummaryResult("s"), FeatureType.SUMMARY, 1, 1.0)
    await cache.store("long", SummaryResult("l"), FeatureType.SUMMARY, 1, 48.0)
    clock.advance(hours=2)

    assert await cache.sweep_expired() == 1

    metrics = get_metrics()
    for counter in ("cache_hit", "cache_miss", "cache_expired"):
        assert metrics.get(counter, 0) == 0
