"""On-demand AI features: thread summary, action items and semantic search.

They share the result cache, staleness evaluator and rate limiter with the
notification path.  Unlike notifications there is no fallback: quota and
model failures propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from intelligence import config as cfg
from intelligence.adapter.azure_search_adapter import EmbeddingStore
from intelligence.adapter.conversation_source import ConversationSource
from intelligence.cache import staleness
from intelligence.cache.result_cache import ResultCache, make_cache_key, query_hash
from intelligence.decision.engine import invoke_model
from intelligence.errors import (
    ContextUnavailable,
    ModelFailureCause,
    ModelInvocationFailed,
    NotFound,
    PermissionDenied,
)
from intelligence.gating.rate_limiter import RateLimiter
from intelligence.llm import prompts
from intelligence.llm.provider import ModelProvider
from intelligence.models import (
    Conversation,
    FeatureType,
    Message,
    ResultPayload,
    SearchResult,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 200


@dataclass
class FeatureOutcome:
    result: ResultPayload
    cached: bool


def _participants(messages: List[Message]) -> List[str]:
    names: List[str] = []
    for m in sorted(messages, key=lambda m: m.timestamp):
        if m.sender_name not in names:
            names.append(m.sender_name)
    return names


def _date_range(messages: List[Message]) -> str:
    oldest = min(m.timestamp for m in messages)
    newest = max(m.timestamp for m in messages)
    return f"{oldest.date().isoformat()} - {newest.date().isoformat()}"


class AIFeatures:
    def __init__(
        self,
        source: ConversationSource,
        cache: ResultCache,
        rate_limiter: RateLimiter,
        provider: ModelProvider,
        embeddings: Optional[EmbeddingStore] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        daily_limit: int | None = None,
        model_timeout_seconds: float | None = None,
    ) -> None:
        self._source = source
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._provider = provider
        self._embeddings = embeddings
        self._clock = clock
        self._daily_limit = cfg.DEFAULT_DAILY_LIMIT if daily_limit is None else daily_limit
        self._timeout = model_timeout_seconds or cfg.MODEL_TIMEOUT_SECONDS

    # -- Shared steps --------------------------------------------------

    async def _authorize(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self._source.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        if user_id not in conversation.participant_ids:
            raise PermissionDenied("User not a participant in conversation")
        return conversation

    async def _thread(self, conversation_id: str) -> List[Message]:
        messages = await self._source.list_messages(conversation_id, cfg.FEATURE_MAX_MESSAGES)
        if not messages:
            raise NotFound("No messages found in this conversation")
        return messages

    async def _fresh_entry(self, key: str, current_count: int) -> Optional[ResultPayload]:
        entry = await self._cache.lookup(key)
        if entry is None:
            return None
        verdict = staleness.evaluate(entry, current_count, now=self._clock())
        if verdict.is_stale:
            logger.info(
                "Cached result %s is stale (messages=%d, hours=%.1f)",
                key,
                verdict.messages_since_cache,
                verdict.hours_since_cache,
            )
            return None
        return entry.result

    # -- Features ------------------------------------------------------

    async def summarize_thread(self, conversation_id: str, user_id: str) -> FeatureOutcome:
        await self._authorize(conversation_id, user_id)
        messages = await self._thread(conversation_id)
        key = make_cache_key(FeatureType.SUMMARY, conversation_id, messages[0].message_id)
        current_count = await self._source.count_messages(conversation_id)

        cached = await self._fresh_entry(key, current_count)
        if cached is not None:
            logger.info("Returning cached summary for %s", conversation_id)
            return FeatureOutcome(cached, cached=True)

        await self._rate_limiter.check_and_increment(user_id, FeatureType.SUMMARY, self._daily_limit)

        participants = _participants(messages)
        raw = await invoke_model(
            self._provider,
            prompts.SUMMARY_SYSTEM_PROMPT,
            prompts.build_summary_user_prompt(prompts.format_messages(messages), participants),
            self._timeout,
        )
        result = prompts.parse_summary(raw, participants, _date_range(messages))

        await self._cache.store(
            key, result, FeatureType.SUMMARY, current_count, cfg.FEATURE_CACHE_TTL_HOURS
        )
        return FeatureOutcome(result, cached=False)

    async def extract_action_items(self, conversation_id: str, user_id: str) -> FeatureOutcome:
        await self._authorize(conversation_id, user_id)
        messages = await self._thread(conversation_id)
        key = make_cache_key(FeatureType.ACTION_ITEMS, conversation_id, messages[0].message_id)
        current_count = await self._source.count_messages(conversation_id)

        cached = await self._fresh_entry(key, current_count)
        if cached is not None:
            logger.info("Returning cached action items for %s", conversation_id)
            return FeatureOutcome(cached, cached=True)

        await self._rate_limiter.check_and_increment(
            user_id, FeatureType.ACTION_ITEMS, self._daily_limit
        )

        raw = await invoke_model(
            self._provider,
            prompts.ACTION_ITEMS_SYSTEM_PROMPT,
            prompts.build_action_items_user_prompt(prompts.format_messages(messages)),
            self._timeout,
        )
        result = prompts.parse_action_items(raw)

        await self._cache.store(
            key, result, FeatureType.ACTION_ITEMS, current_count, cfg.FEATURE_CACHE_TTL_HOURS
        )
        return FeatureOutcome(result, cached=False)

    async def smart_search(
        self, user_id: str, query: str, limit: int | None = None
    ) -> FeatureOutcome:
        query = (query or "").strip()
        if not query:
            raise ValueError("query must be a non-empty string")
        if len(query) > MAX_QUERY_LENGTH:
            raise ValueError(f"query must be {MAX_QUERY_LENGTH} characters or less")
        limit = limit or cfg.SEARCH_DEFAULT_LIMIT

        conversation_ids = [
            c.conversation_id for c in await self._source.conversations_for_user(user_id)
        ]
        if not conversation_ids:
            return FeatureOutcome(SearchResult(query=query), cached=False)

        # Scoped by user: two users never share search results.
        key = make_cache_key(FeatureType.SEARCH, user_id, query_hash(query), str(limit))
        entry = await self._cache.lookup(key)
        if entry is not None:
            logger.info("Returning cached search results for %s", user_id)
            return FeatureOutcome(entry.result, cached=True)

        if self._embeddings is None:
            raise ContextUnavailable("Semantic search is not configured")
        await self._rate_limiter.check_and_increment(user_id, FeatureType.SEARCH, self._daily_limit)

        vector = await self._embed_query(query)
        hits = await self._embeddings.search(vector, conversation_ids, limit)
        result = SearchResult(query=query, results=hits)

        await self._cache.store(key, result, FeatureType.SEARCH, 0, cfg.SEARCH_CACHE_TTL_HOURS)
        logger.info("Search user=%s hits=%d", user_id, len(hits))
        return FeatureOutcome(result, cached=False)

    async def _embed_query(self, query: str) -> List[float]:
        try:
            vector = await asyncio.wait_for(self._provider.embed(query), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ModelInvocationFailed(ModelFailureCause.TIMEOUT, "query embedding") from exc
        except ModelInvocationFailed:
            raise
        except Exception as exc:
            raise ModelInvocationFailed(ModelFailureCause.PROVIDER_ERROR, str(exc)) from exc
        if not vector:
            raise ModelInvocationFailed(ModelFailureCause.MALFORMED_RESPONSE, "empty query embedding")
        return vector
