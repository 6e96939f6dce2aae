"""Tests for thread summary, action items and semantic search."""

import sys
import os
import json

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "messageai_server"))

import pytest

from fakes import FakeProvider, Pipeline, keyword_vector, seed_conversation
from intelligence.errors import (
    ContextUnavailable,
    ModelFailureCause,
    ModelInvocationFailed,
    NotFound,
    PermissionDenied,
    RateLimitExceeded,
)
from intelligence.features.ai_features import AIFeatures
from intelligence.models import FeatureType, Message, MessageEmbedding

THREAD = [
    "Deploy is scheduled for Friday morning",
    "Bob will write the release notes",
    "Lunch is on the team this week",
    "Budget review moved to next Tuesday",
]

SUMMARY_REPLY = json.dumps(
    {"summary": "The team planned Friday's deploy.", "keyPoints": ["Deploy Friday", "Bob writes notes"]}
)
ACTION_ITEMS_REPLY = json.dumps(
    {"actionItems": [{"description": "Write the release notes", "assignee": "Bob", "dueDate": "Friday"}]}
)


async def _index_thread(pipeline, messages):
    await pipeline.embeddings.upsert(
        [
            MessageEmbedding(m.message_id, m.conversation_id, keyword_vector(m.text), ["alice", "bob"], m.text, m.timestamp)
            for m in messages
        ]
    )


# ── Summary ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_summary_is_computed_once_then_cached():
    pipeline = Pipeline(FakeProvider(SUMMARY_REPLY))
    seed_conversation(pipeline.source, pipeline.clock, THREAD)

    first = await pipeline.features.summarize_thread("c1", "bob")
    assert not first.cached
    assert first.result.summary == "The team planned Friday's deploy."
    assert first.result.participants == ["Alice"]

    second = await pipeline.features.summarize_thread("c1", "bob")
    assert second.cached
    assert second.result == first.result
    assert pipeline.provider.generate_calls == 1
    assert await pipeline.rate_limiter.remaining("bob", FeatureType.SUMMARY, 100) == 99


@pytest.mark.asyncio
async def test_summary_recomputed_after_new_message():
    pipeline = Pipeline(FakeProvider(SUMMARY_REPLY))
    seed_conversation(pipeline.source, pipeline.clock, THREAD)
    await pipeline.features.summarize_thread("c1", "bob")

    pipeline.clock.advance(minutes=1)
    pipeline.source.add_message(Message("c1-m5", "c1", "bob", "Sounds like a plan", pipeline.clock.now, "Bob"))
    outcome = await pipeline.features.summarize_thread("c1", "bob")

    assert not outcome.cached
    assert outcome.result.participants == ["Alice", "Bob"]
    assert pipeline.provider.generate_calls == 2


@pytest.mark.asyncio
async def test_summary_input_errors():
    pipeline = Pipeline(FakeProvider(SUMMARY_REPLY))
    seed_conversation(pipeline.source, pipeline.clock, THREAD)
    seed_conversation(pipeline.source, pipeline.clock, [], conversation_id="empty")

    with pytest.raises(NotFound):
        await pipeline.features.summarize_thread("missing", "bob")
    with pytest.raises(PermissionDenied):
        await pipeline.features.summarize_thread("c1", "mallory")
    with pytest.raises(NotFound):
        await pipeline.features.summarize_thread("empty", "bob")
    assert pipeline.provider.generate_calls == 0


@pytest.mark.asyncio
async def test_summary_quota_and_model_failures_propagate():
    pipeline = Pipeline(FakeProvider(SUMMARY_REPLY), daily_limit=0)
    seed_conversation(pipeline.source, pipeline.clock, THREAD)
    with pytest.raises(RateLimitExceeded):
        await pipeline.features.summarize_thread("c1", "bob")
    assert pipeline.provider.generate_calls == 0

    pipeline = Pipeline(FakeProvider("no json here"))
    seed_conversation(pipeline.source, pipeline.clock, THREAD)
    with pytest.raises(ModelInvocationFailed) as excinfo:
        await pipeline.features.summarize_thread("c1", "bob")
    assert excinfo.value.cause is ModelFailureCause.MALFORMED_RESPONSE
    assert await pipeline.cache.lookup("summary:c1:c1-m4") is None


# ── Action items ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_action_items():
    pipeline = Pipeline(FakeProvider(ACTION_ITEMS_REPLY))
    seed_conversation(pipeline.source, pipeline.clock, THREAD)

    outcome = await pipeline.features.extract_action_items("c1", "bob")
    assert not outcome.cached
    item = outcome.result.action_items[0]
    assert (item.description, item.assignee, item.due_date) == ("Write the release notes", "Bob", "Friday")

    again = await pipeline.features.extract_action_items("c1", "bob")
    assert again.cached
    assert pipeline.provider.generate_calls == 1


@pytest.mark.asyncio
async def test_summary_and_action_items_do_not_share_entries():
    pipeline = Pipeline(FakeProvider(SUMMARY_REPLY))
    seed_conversation(pipeline.source, pipeline.clock, THREAD)
    await pipeline.features.summarize_thread("c1", "bob")

    pipeline.provider.reply = ACTION_ITEMS_REPLY
    outcome = await pipeline.features.extract_action_items("c1", "bob")
    assert not outcome.cached
    assert outcome.result.action_items


# ── Search ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_search_ranks_by_similarity_and_caches():
    pipeline = Pipeline()
    messages = seed_conversation(pipeline.source, pipeline.clock, THREAD)
    await _index_thread(pipeline, messages)

    outcome = await pipeline.features.smart_search("bob", "deploy", limit=2)
    assert not outcome.cached
    assert outcome.result.results[0].text == THREAD[0]
    assert len(outcome.result.results) == 2

    again = await pipeline.features.smart_search("bob", "  DEPLOY ", limit=2)
    assert again.cached
    assert pipeline.provider.embed_calls == 1


@pytest.mark.asyncio
async def test_search_is_scoped_to_the_users_conversations():
    pipeline = Pipeline()
    messages = seed_conversation(pipeline.source, pipeline.clock, THREAD)
    await _index_thread(pipeline, messages)
    seed_conversation(pipeline.source, pipeline.clock, ["Deploy notes for the other team"],
                      conversation_id="other", sender="carol", recipient="dave")

    outcome = await pipeline.features.smart_search("dave", "deploy")
    assert outcome.result.results == []

    # Dave's query does not reuse Bob's cached results.
    bob = await pipeline.features.smart_search("bob", "deploy")
    assert not bob.cached
    assert bob.result.results


@pytest.mark.asyncio
async def test_search_validates_query():
    pipeline = Pipeline()
    seed_conversation(pipeline.source, pipeline.clock, THREAD)

    with pytest.raises(ValueError):
        await pipeline.features.smart_search("bob", "   ")
    with pytest.raises(ValueError):
        await pipeline.features.smart_search("bob", "x" * 201)


@pytest.mark.asyncio
async def test_search_without_conversations_is_empty():
    pipeline = Pipeline()
    outcome = await pipeline.features.smart_search("nobody", "deploy")
    assert outcome.result.results == []
    assert pipeline.provider.embed_calls == 0


@pytest.mark.asyncio
async def test_search_without_embedding_store_keeps_quota():
    pipeline = Pipeline()
    seed_conversation(pipeline.source, pipeline.clock, THREAD)
    features = AIFeatures(pipeline.source, pipeline.cache, pipeline.rate_limiter, pipeline.provider, None,
                          clock=pipeline.clock, daily_limit=5)

    with pytest.raises(ContextUnavailable):
        await features.smart_search("bob", "deploy")
    assert await pipeline.rate_limiter.remaining("bob", FeatureType.SEARCH, 5) == 5
