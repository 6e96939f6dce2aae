"""Tests for the decision log, feedback storage and profile learning."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "messageai_server"))

import pytest

from fakes import FailingStore, Pipeline, seed_conversation
from intelligence.adapter.conversation_source import InMemoryConversationSource
from intelligence.errors import NotFound, PermissionDenied
from intelligence.feedback.notification_feedback import (
    NotificationFeedback,
    extract_keywords,
    rate_for_accuracy,
)
from intelligence.models import (
    FeedbackRating,
    NotificationAnalytics,
    NotificationDecision,
    NotificationRate,
    Priority,
    ReasonCount,
)
from intelligence.observability.tracing import get_metrics

HELPFUL = FeedbackRating.HELPFUL
NOT_HELPFUL = FeedbackRating.NOT_HELPFUL


def _decision(notify, reason, text=""):
    return NotificationDecision(should_notify=notify, reason=reason, notification_text=text, priority=Priority.MEDIUM)


def _pipeline(texts=("one", "two", "three", "four")):
    pipeline = Pipeline()
    seed_conversation(pipeline.source, pipeline.clock, list(texts))
    return pipeline


# -- Keyword extraction -----------------------------------------------

def test_extract_keywords_drops_stop_words_and_short_words():
    assert extract_keywords(["The invoice is due", "Invoice for the launch!"]) == ["invoice", "launch"]


def test_extract_keywords_keeps_first_seen_order_on_ties():
    assert extract_keywords(["budget review", "review budget deploy"], limit=2) == ["budget", "review"]


@pytest.mark.parametrize(
    "accuracy, rate",
    [
        (1.0, NotificationRate.HIGH),
        (0.8, NotificationRate.HIGH),
        (0.79, NotificationRate.MEDIUM),
        (0.5, NotificationRate.MEDIUM),
        (0.49, NotificationRate.LOW),
        (0.0, NotificationRate.LOW),
    ],
)
def test_rate_for_accuracy(accuracy, rate):
    assert rate_for_accuracy(accuracy) is rate


# -- Decision log -----------------------------------------------------

@pytest.mark.asyncio
async def test_log_failure_is_absorbed():
    feedback = NotificationFeedback(FailingStore(), InMemoryConversationSource())

    logged = await feedback.log_decision("bob", "c1", "m1", _decision(True, "Asked"), "model", 1)

    assert logged is False
    assert get_metrics()["decision_log_failure"] == 1
    assert await feedback.get_profile("bob") is None


# -- Feedback ---------------------------------------------------------

@pytest.mark.asyncio
async def test_feedback_requires_a_participant_and_a_decision():
    pipeline = _pipeline()
    feedback = pipeline.feedback

    with pytest.raises(NotFound):
        await feedback.submit_feedback("bob", "missing", "m1", HELPFUL, _decision(True, "Asked"))
    with pytest.raises(PermissionDenied):
        await feedback.submit_feedback("mallory", "c1", "c1-m1", HELPFUL, _decision(True, "Asked"))
    with pytest.raises(NotFound):
        await feedback.submit_feedback("bob", "c1", "c1-m1", HELPFUL)


@pytest.mark.asyncio
async def test_feedback_rates_the_logged_decision():
    pipeline = _pipeline()
    logged = _decision(True, "Budget approval needed", "Alice: budget sign-off")
    await pipeline.feedback.log_decision("bob", "c1", "c1-m4", logged, "model", 4)

    record = await pipeline.feedback.submit_feedback("bob", "c1", "c1-m4", NOT_HELPFUL)

    assert record.decision == logged
    assert record.feedback_id == "bob_c1_c1-m4"
    entry = await pipeline.feedback.get_logged_decision("bob", "c1", "c1-m4")
    assert entry.feedback is NOT_HELPFUL
    assert entry.unread_count == 4
    assert get_metrics()["feedback_not_helpful"] == 1


@pytest.mark.asyncio
async def test_resubmitting_replaces_the_rating():
    pipeline = _pipeline()
    decision = _decision(True, "Asked")

    await pipeline.feedback.submit_feedback("bob", "c1", "c1-m1", HELPFUL, decision)
    await pipeline.feedback.submit_feedback("bob", "c1", "c1-m1", NOT_HELPFUL, decision)

    records = await pipeline.feedback.feedback_for("bob")
    assert [r.rating for r in records] == [NOT_HELPFUL]


@pytest.mark.asyncio
async def test_feedback_outside_the_window_is_ignored():
    pipeline = _pipeline()
    await pipeline.feedback.submit_feedback("bob", "c1", "c1-m1", HELPFUL, _decision(True, "Asked"))

    pipeline.clock.advance(days=31)

    assert await pipeline.feedback.feedback_for("bob") == []
    assert await pipeline.feedback.update_profile("bob") is None
    assert await pipeline.feedback.get_profile("bob") is None


# -- Profile learning -------------------------------------------------

@pytest.mark.asyncio
async def test_update_profile_learns_rate_and_topics():
    pipeline = _pipeline()
    useful = _decision(True, "Invoice approval", "Alice: invoice approval needed")
    for message_id in ("c1-m1", "c1-m2", "c1-m3"):
        await pipeline.feedback.submit_feedback("bob", "c1", message_id, HELPFUL, useful)
    await pipeline.feedback.submit_feedback("bob", "c1", "c1-m4", NOT_HELPFUL, _decision(True, "Lunch plans chatter"))

    profile = await pipeline.feedback.update_profile("bob")

    assert profile.preferred_notification_rate is NotificationRate.MEDIUM
    assert profile.accuracy == 0.75
    assert profile.learned_keywords[:2] == ["invoice", "approval"]
    assert profile.suppressed_topics == ["lunch", "plans", "chatter"]
    assert (profile.total_feedback, profile.helpful_count, profile.not_helpful_count) == (4, 3, 1)
    assert profile.last_updated == pipeline.clock.now
    assert await pipeline.feedback.get_profile("bob") == profile


@pytest.mark.asyncio
async def test_update_all_profiles_counts_users_with_recent_feedback():
    pipeline = _pipeline()
    seed_conversation(pipeline.source, pipeline.clock, ["hello"], conversation_id="c2", recipient="carol")
    await pipeline.feedback.submit_feedback("carol", "c2", "c2-m1", HELPFUL, _decision(True, "Asked"))
    pipeline.clock.advance(days=31)
    await pipeline.feedback.submit_feedback("bob", "c1", "c1-m1", HELPFUL, _decision(True, "Asked"))

    summary = await pipeline.feedback.update_all_profiles()

    assert summary == {"usersUpdated": 1, "totalUsers": 2}
    assert (await pipeline.feedback.get_profile("bob")).preferred_notification_rate is NotificationRate.HIGH
    assert await pipeline.feedback.get_profile("carol") is None


# -- Analytics --------------------------------------------------------

@pytest.mark.asyncio
async def test_analytics_split_false_positives_and_negatives():
    pipeline = _pipeline()
    rate = pipeline.feedback.submit_feedback
    await rate("bob", "c1", "c1-m1", NOT_HELPFUL, _decision(True, "Lunch plans"))
    await rate("bob", "c1", "c1-m2", NOT_HELPFUL, _decision(True, "Lunch plans"))
    await rate("bob", "c1", "c1-m3", NOT_HELPFUL, _decision(False, "Missed deadline"))
    await rate("bob", "c1", "c1-m4", HELPFUL, _decision(True, "Asked"))

    analytics = await pipeline.feedback.generate_analytics("bob")

    assert analytics.total_notifications == 4
    assert (analytics.helpful_count, analytics.not_helpful_count) == (1, 3)
    assert analytics.accuracy == 25.0
    assert analytics.common_false_positives == [ReasonCount("Lunch plans", 2)]
    assert analytics.common_false_negatives == [ReasonCount("Missed deadline", 1)]


@pytest.mark.asyncio
async def test_analytics_without_feedback_are_empty():
    pipeline = _pipeline()
    assert await pipeline.feedback.generate_analytics("bob") == NotificationAnalytics()
