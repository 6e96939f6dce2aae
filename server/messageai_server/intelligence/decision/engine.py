"""Notification decision engine.

Per request the engine walks a fixed sequence, stopping at the first step
that produces a decision:

1. **Cache**: a fresh entry for (conversation, latest message, recipient) is
   returned as is.  Cache hits never consume quota.
2. **Heuristics**: definite outcomes are synthesised, cached and returned
   without touching the rate limiter or the model.
3. **Rate limit**: the model path consumes one unit of the recipient's
   daily quota.  If it is exhausted, or the counter store is down, the
   recipient's fallback strategy decides.
4. **Model**: bounded context is built, the model is invoked under a
   timeout and its JSON reply parsed.  The result is cached with the
   current message count.  Any model failure routes to the fallback
   strategy.

Fallback decisions are not cached, so a later request for the same message
retries the model path.

Every decision except a cache hit is written to the feedback decision log,
and the model path reads the recipient's learned notification profile.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, List

from intelligence import config as cfg
from intelligence.adapter.conversation_source import ConversationSource
from intelligence.cache import staleness
from intelligence.cache.result_cache import ResultCache, make_cache_key
from intelligence.decision.fallback import apply_fallback, notification_text
from intelligence.feedback.notification_feedback import NotificationFeedback
from intelligence.errors import (
    ModelFailureCause,
    ModelInvocationFailed,
    NotFound,
    PermissionDenied,
    RateLimiterUnavailable,
    RateLimitExceeded,
)
from intelligence.gating import heuristic_filter
from intelligence.gating.heuristic_filter import HeuristicOutcome
from intelligence.gating.rate_limiter import RateLimiter
from intelligence.llm import prompts
from intelligence.llm.provider import ModelProvider
from intelligence.models import (
    Conversation,
    FeatureType,
    Message,
    NotificationDecision,
    NotificationPreferences,
    Priority,
    UserProfile,
    utc_now,
)
from intelligence.observability.tracing import log_with_context, record_metric
from intelligence.retrieval.context_retriever import (
    ContextBounds,
    ContextRetriever,
    format_context_for_prompt,
)

logger = logging.getLogger(__name__)

# Messages considered for the prompt; the newest one is the trigger.
RECENT_WINDOW = 30


async def invoke_model(
    provider: ModelProvider,
    system_prompt: str,
    user_prompt: str,
    timeout_seconds: float,
) -> str:
    """Call ``provider.generate`` under a timeout; every failure is ``ModelInvocationFailed``."""
    try:
        return await asyncio.wait_for(
            provider.generate(system_prompt, user_prompt), timeout=timeout_seconds
        )
    except asyncio.TimeoutError as exc:
        raise ModelInvocationFailed(
            ModelFailureCause.TIMEOUT, f"no reply within {timeout_seconds}s"
        ) from exc
    except ModelInvocationFailed:
        raise
    except Exception as exc:
        raise ModelInvocationFailed(ModelFailureCause.PROVIDER_ERROR, str(exc)) from exc


class DecisionEngine:
    def __init__(
        self,
        source: ConversationSource,
        cache: ResultCache,
        rate_limiter: RateLimiter,
        retriever: ContextRetriever,
        provider: ModelProvider,
        *,
        clock: Callable[[], datetime] = utc_now,
        daily_limit: int | None = None,
        cache_ttl_hours: float | None = None,
        model_timeout_seconds: float | None = None,
        context_bounds: ContextBounds | None = None,
        feedback: NotificationFeedback | None = None,
    ) -> None:
        self._source = source
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._retriever = retriever
        self._provider = provider
        self._clock = clock
        self._daily_limit = cfg.NOTIFICATION_DAILY_LIMIT if daily_limit is None else daily_limit
        self._ttl_hours = cfg.NOTIFICATION_CACHE_TTL_HOURS if cache_ttl_hours is None else cache_ttl_hours
        self._timeout = model_timeout_seconds or cfg.MODEL_TIMEOUT_SECONDS
        self._bounds = context_bounds or ContextBounds()
        self._feedback = feedback

    # -- Caller contract -----------------------------------------------

    async def analyze_for_notification(
        self, conversation_id: str, user_id: str
    ) -> NotificationDecision:
        """Decide whether *user_id* should be notified about the newest message.

        Raises ``NotFound`` / ``PermissionDenied`` for bad input only; quota
        and model problems are always absorbed by the fallback strategy.
        """
        start = time.monotonic()
        conversation = await self._source.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        if user_id not in conversation.participant_ids:
            raise PermissionDenied("User not a participant in conversation")

        messages = await self._source.list_messages(conversation_id, RECENT_WINDOW)
        if not messages:
            return NotificationDecision(should_notify=False, reason="No messages")
        latest = messages[0]

        decision, path = await self._decide(conversation, user_id, messages)
        if self._feedback is not None and cfg.DECISION_LOG_ENABLED and path != "cache_hit":
            await self._feedback.log_decision(
                user_id,
                conversation_id,
                latest.message_id,
                decision,
                path,
                sum(1 for m in messages if m.is_unread_by(user_id)),
            )

        elapsed_ms = (time.monotonic() - start) * 1000
        record_metric("decision_count")
        record_metric("decision_latency_ms_total", elapsed_ms)
        record_metric(f"decision_{path.split(':')[0]}")
        log_with_context(
            logging.INFO,
            "notification decision",
            user_id=user_id,
            conversation_id=conversation_id,
            message_id=latest.message_id,
            path=path,
            should_notify=decision.should_notify,
            priority=decision.priority.value,
            latency_ms=round(elapsed_ms, 1),
        )
        return decision

    async def get_remaining_quota(self, user_id: str, feature_type: FeatureType) -> int:
        limit = (
            self._daily_limit
            if feature_type is FeatureType.NOTIFICATION_DECISION
            else cfg.DEFAULT_DAILY_LIMIT
        )
        return await self._rate_limiter.remaining(user_id, feature_type, limit)

    # -- Pipeline ------------------------------------------------------

    async def _decide(
        self, conversation: Conversation, user_id: str, messages: List[Message]
    ) -> tuple[NotificationDecision, str]:
        latest = messages[0]
        key = make_cache_key(
            FeatureType.NOTIFICATION_DECISION,
            conversation.conversation_id,
            latest.message_id,
            user_id,
        )
        current_count = await self._source.count_messages(conversation.conversation_id)
        now = self._clock()

        entry = await self._cache.lookup(key)
        if entry is not None:
            verdict = staleness.evaluate(entry, current_count, now=now)
            if not verdict.is_stale:
                return entry.result, "cache_hit"
            logger.info(
                "Stale notification decision %s (messages=%d, hours=%.1f)",
                key,
                verdict.messages_since_cache,
                verdict.hours_since_cache,
            )

        recipient = await self._source.get_user(user_id) or UserProfile(user_id, "")
        preferences = await self._source.get_preferences(user_id) or NotificationPreferences()

        # ── Heuristics ──
        heuristic = heuristic_filter.evaluate(latest, recipient, preferences, conversation, now)
        if heuristic.outcome is not HeuristicOutcome.NEED_MODEL:
            notify = heuristic.outcome is HeuristicOutcome.DEFINITELY_NOTIFY
            decision = NotificationDecision(
                should_notify=notify,
                reason=heuristic.reason,
                notification_text=notification_text(latest) if notify else "",
                priority=heuristic.priority or Priority.LOW,
            )
            await self._cache.store(
                key, decision, FeatureType.NOTIFICATION_DECISION, current_count, self._ttl_hours
            )
            return decision, "heuristic"

        # ── Rate limit ──
        try:
            await self._rate_limiter.check_and_increment(
                user_id, FeatureType.NOTIFICATION_DECISION, self._daily_limit
            )
        except RateLimitExceeded:
            return apply_fallback(latest, recipient, preferences, cause="rate_limited"), "fallback:rate_limited"
        except RateLimiterUnavailable:
            return (
                apply_fallback(latest, recipient, preferences, cause="rate_limiter_unavailable"),
                "fallback:rate_limiter_unavailable",
            )

        # ── Model ──
        try:
            decision = await self._model_decision(conversation, user_id, messages, preferences, now)
        except ModelInvocationFailed as exc:
            record_metric("model_failure_count")
            logger.warning("Model invocation failed for %s: %s", user_id, exc)
            cause = exc.cause.value
            return apply_fallback(latest, recipient, preferences, cause=cause), f"fallback:{cause}"

        await self._cache.store(
            key, decision, FeatureType.NOTIFICATION_DECISION, current_count, self._ttl_hours
        )
        return decision, "model"

    async def _model_decision(
        self,
        conversation: Conversation,
        user_id: str,
        messages: List[Message],
        preferences: NotificationPreferences,
        now: datetime,
    ) -> NotificationDecision:
        context = await self._retriever.build_context(
            user_id,
            conversation.conversation_id,
            self._bounds,
            trigger_message_id=messages[0].message_id,
        )
        profile = await self._feedback.get_profile(user_id) if self._feedback is not None else None
        unread = [m for m in messages if m.is_unread_by(user_id)]
        user_prompt = prompts.build_notification_user_prompt(
            format_context_for_prompt(context),
            prompts.format_messages(unread),
            preferences,
            now,
            profile,
        )
        raw = await invoke_model(
            self._provider, prompts.NOTIFICATION_SYSTEM_PROMPT, user_prompt, self._timeout
        )
        return prompts.parse_notification_decision(raw)
