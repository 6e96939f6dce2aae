"""Notification feedback loop.

WRITE path:
    The decision engine logs every decision it produces (cache hits repeat an
    earlier decision and are not logged again).  Recipients then rate a logged
    decision as ``helpful`` or ``not_helpful``.

LEARN path:
    Ratings from the last ``FEEDBACK_WINDOW_DAYS`` are aggregated into a
    :class:`NotificationProfile` (preferred notification rate, learned
    keywords, suppressed topics).  The engine adds that profile to the model
    prompt, so the model adapts to what the user found useful.

Analytics summarise the same window: accuracy plus the most common reasons
behind unhelpful notifications (false positives) and unhelpful silences
(false negatives).
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import quote, unquote

from intelligence import config as cfg
from intelligence.adapter.conversation_source import ConversationSource
from intelligence.adapter.document_store import DocumentStore
from intelligence.errors import IntelligenceError, NotFound, PermissionDenied, StoreUnavailable
from intelligence.models import (
    DecisionLogEntry,
    FeedbackRating,
    FeedbackRecord,
    NotificationAnalytics,
    NotificationDecision,
    NotificationProfile,
    NotificationRate,
    ReasonCount,
    utc_now,
)
from intelligence.observability.tracing import record_metric

logger = logging.getLogger(__name__)

DECISIONS_NAMESPACE = "notification_decisions"
FEEDBACK_NAMESPACE = "notification_feedback"
PROFILE_NAMESPACE = "ai_notification_profile"

# Accuracy at or above a threshold earns that rate; anything lower is LOW.
HIGH_RATE_ACCURACY = 0.8
MEDIUM_RATE_ACCURACY = 0.5

MAX_COMMON_REASONS = 5
MIN_KEYWORD_LENGTH = 4

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "is", "are", "was", "were",
    "to", "from", "in", "on", "at", "for", "with", "of", "by", "this",
    "that", "it", "you", "your", "has", "have", "had", "be", "been",
    "message", "messages", "notification", "notified", "notify",
})

_NON_WORD = re.compile(r"[^a-z0-9\s]")


def extract_keywords(texts: Iterable[str], limit: int | None = None) -> List[str]:
    """Most frequent meaningful words across *texts*, most frequent first.

    Ties keep first-seen order.
    """
    limit = cfg.LEARNED_KEYWORD_LIMIT if limit is None else limit
    counts: Counter = Counter()
    for text in texts:
        words = _NON_WORD.sub(" ", text.lower()).split()
        counts.update(w for w in words if len(w) >= MIN_KEYWORD_LENGTH and w not in STOP_WORDS)
    return [word for word, _ in counts.most_common(limit)]


def rate_for_accuracy(accuracy: float) -> NotificationRate:
    if accuracy >= HIGH_RATE_ACCURACY:
        return NotificationRate.HIGH
    if accuracy >= MEDIUM_RATE_ACCURACY:
        return NotificationRate.MEDIUM
    return NotificationRate.LOW


def _decision_texts(records: List[FeedbackRecord]) -> List[str]:
    texts = [r.decision.notification_text for r in records if r.decision.notification_text]
    reasons = [r.decision.reason for r in records if r.decision.reason]
    return texts + reasons


def _common_reasons(decisions: Iterable[NotificationDecision]) -> List[ReasonCount]:
    counts = Counter(d.reason or "Unknown" for d in decisions)
    return [ReasonCount(reason, count) for reason, count in counts.most_common(MAX_COMMON_REASONS)]


def _key(namespace: str, *parts: str) -> str:
    return "/".join([namespace] + [quote(p, safe="") for p in parts])


class NotificationFeedback:
    """Decision log, feedback store and profile learner over one document store."""

    def __init__(
        self,
        store: DocumentStore,
        source: ConversationSource,
        *,
        clock: Callable[[], datetime] = utc_now,
        window_days: int | None = None,
    ) -> None:
        self._store = store
        self._source = source
        self._clock = clock
        self._window = timedelta(days=cfg.FEEDBACK_WINDOW_DAYS if window_days is None else window_days)

    # -- Decision log --------------------------------------------------

    async def log_decision(
        self,
        user_id: str,
        conversation_id: str,
        message_id: str,
        decision: NotificationDecision,
        path: str,
        unread_count: int,
    ) -> bool:
        """Record *decision*; a store failure is logged and never raised."""
        entry = DecisionLogEntry(
            user_id=user_id,
            conversation_id=conversation_id,
            message_id=message_id,
            decision=decision,
            path=path,
            unread_count=unread_count,
            timestamp=self._clock(),
        )
        try:
            await self._store.set(
                _key(DECISIONS_NAMESPACE, user_id, conversation_id, message_id),
                entry.to_document(),
                ttl_seconds=self._window.total_seconds(),
            )
        except StoreUnavailable:
            logger.warning("Failed to log decision for %s/%s", user_id, message_id, exc_info=True)
            record_metric("decision_log_failure")
            return False
        record_metric("decision_logged")
        return True

    async def get_logged_decision(
        self, user_id: str, conversation_id: str, message_id: str
    ) -> Optional[DecisionLogEntry]:
        doc = await self._store.get(_key(DECISIONS_NAMESPACE, user_id, conversation_id, message_id))
        return DecisionLogEntry.from_document(doc) if doc else None

    # -- Feedback ------------------------------------------------------

    async def submit_feedback(
        self,
        user_id: str,
        conversation_id: str,
        message_id: str,
        rating: FeedbackRating,
        decision: Optional[NotificationDecision] = None,
    ) -> FeedbackRecord:
        """Store *rating* for the decision made about *message_id*.

        The rated decision defaults to the logged one; raises ``NotFound``
        when neither is available.  Resubmitting replaces the earlier rating.
        """
        conversation = await self._source.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        if user_id not in conversation.participant_ids:
            raise PermissionDenied("User not a participant in conversation")

        logged = await self.get_logged_decision(user_id, conversation_id, message_id)
        if decision is None:
            if logged is None:
                raise NotFound(f"No logged decision for message {message_id}")
            decision = logged.decision

        record = FeedbackRecord(
            user_id=user_id,
            conversation_id=conversation_id,
            message_id=message_id,
            decision=decision,
            rating=rating,
            timestamp=self._clock(),
        )
        ttl = self._window.total_seconds()
        await self._store.set(
            _key(FEEDBACK_NAMESPACE, user_id, conversation_id, message_id),
            record.to_document(),
            ttl_seconds=ttl,
        )
        if logged is not None:
            logged.feedback = rating
            await self._store.set(
                _key(DECISIONS_NAMESPACE, user_id, conversation_id, message_id),
                logged.to_document(),
                ttl_seconds=ttl,
            )

        record_metric(f"feedback_{rating.value}")
        logger.info("Feedback stored: %s (%s)", record.feedback_id, rating.value)
        return record

    async def feedback_for(self, user_id: str) -> List[FeedbackRecord]:
        """Ratings by *user_id* inside the learning window, newest first."""
        cutoff = self._clock() - self._window
        records: List[FeedbackRecord] = []
        for key in await self._store.keys(_key(FEEDBACK_NAMESPACE, user_id) + "/"):
            doc = await self._store.get(key)
            if doc is None:
                continue
            try:
                record = FeedbackRecord.from_document(doc)
            except (KeyError, TypeError, ValueError):
                logger.warning("Unreadable feedback document %s", key)
                continue
            if record.timestamp > cutoff:
                records.append(record)
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    async def users_with_feedback(self) -> List[str]:
        users: List[str] = []
        for key in await self._store.keys(f"{FEEDBACK_NAMESPACE}/"):
            user_id = unquote(key.split("/")[1])
            if user_id not in users:
                users.append(user_id)
        return users

    # -- Profile learning ----------------------------------------------

    async def update_profile(self, user_id: str) -> Optional[NotificationProfile]:
        """Relearn *user_id*'s profile; ``None`` (profile untouched) without recent feedback."""
        records = await self.feedback_for(user_id)
        if not records:
            logger.info("No recent feedback for %s; profile unchanged", user_id)
            return None

        helpful = [r for r in records if r.rating is FeedbackRating.HELPFUL]
        not_helpful = [r for r in records if r.rating is FeedbackRating.NOT_HELPFUL]
        accuracy = len(helpful) / len(records)

        profile = NotificationProfile(
            preferred_notification_rate=rate_for_accuracy(accuracy),
            learned_keywords=extract_keywords(_decision_texts(helpful)),
            suppressed_topics=extract_keywords(_decision_texts(not_helpful)),
            accuracy=round(accuracy, 2),
            total_feedback=len(records),
            helpful_count=len(helpful),
            not_helpful_count=len(not_helpful),
            last_updated=self._clock(),
        )
        await self._store.set(_key(PROFILE_NAMESPACE, user_id), profile.to_dict())
        logger.info(
            "Updated notification profile for %s: rate=%s accuracy=%.2f",
            user_id,
            profile.preferred_notification_rate.value,
            accuracy,
        )
        return profile

    async def update_all_profiles(self) -> Dict[str, int]:
        """Relearn every user with stored feedback; one failure does not stop the rest."""
        user_ids = await self.users_with_feedback()
        updated = 0
        for user_id in user_ids:
            try:
                if await self.update_profile(user_id) is not None:
                    updated += 1
            except IntelligenceError:
                logger.exception("Error updating notification profile for %s", user_id)
        logger.info("Updated %d of %d notification profiles", updated, len(user_ids))
        return {"usersUpdated": updated, "totalUsers": len(user_ids)}

    async def get_profile(self, user_id: str) -> Optional[NotificationProfile]:
        """The learned profile, or ``None`` when absent or unreadable."""
        try:
            doc = await self._store.get(_key(PROFILE_NAMESPACE, user_id))
        except StoreUnavailable:
            logger.warning("Profile store unavailable; continuing without profile", exc_info=True)
            return None
        if doc is None:
            return None
        try:
            return NotificationProfile.from_dict(doc)
        except (KeyError, TypeError, ValueError):
            logger.warning("Unreadable notification profile for %s", user_id, exc_info=True)
            return None

    # -- Analytics -----------------------------------------------------

    async def generate_analytics(self, user_id: str) -> NotificationAnalytics:
        records = await self.feedback_for(user_id)
        if not records:
            return NotificationAnalytics()

        helpful = sum(1 for r in records if r.rating is FeedbackRating.HELPFUL)
        unhelpful = [r.decision for r in records if r.rating is FeedbackRating.NOT_HELPFUL]
        return NotificationAnalytics(
            total_notifications=len(records),
            helpful_count=helpful,
            not_helpful_count=len(unhelpful),
            accuracy=round(helpful / len(records) * 100, 2),
            common_false_positives=_common_reasons(d for d in unhelpful if d.should_notify),
            common_false_negatives=_common_reasons(d for d in unhelpful if not d.should_notify),
        )
