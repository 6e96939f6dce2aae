"""Bounded context assembly for model-backed notification analysis.

Gathers, for one user:

1. Recent messages across conversations active in the lookback window
   (most-recent-first, capped).
2. One summary per active conversation with the user's unread count.
3. The user's notification preferences (defaults when none are stored).
4. Semantically similar past messages, when the trigger message already has
   a materialised embedding.

Step 4 is a soft dependency: if the embedding store fails, the rest of the
context is still returned with an empty ``semantic_context``.  The retriever
never computes embeddings itself.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from intelligence import config as cfg
from intelligence.adapter.azure_search_adapter import EmbeddingStore
from intelligence.adapter.conversation_source import ConversationSource
from intelligence.errors import ContextUnavailable
from intelligence.models import (
    Conversation,
    ConversationSummary,
    NotificationPreferences,
    RecentMessage,
    SemanticSearchResult,
    UserContext,
    utc_now,
)
from intelligence.observability.tracing import record_metric

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextBounds:
    max_recent_messages: int = cfg.CONTEXT_MAX_RECENT_MESSAGES
    lookback_days: int = cfg.CONTEXT_LOOKBACK_DAYS
    max_semantic_results: int = cfg.CONTEXT_MAX_SEMANTIC_RESULTS
    include_semantic: bool = cfg.SEMANTIC_CONTEXT_ENABLED


class ContextRetriever:
    def __init__(
        self,
        source: ConversationSource,
        embeddings: Optional[EmbeddingStore] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._source = source
        self._embeddings = embeddings
        self._clock = clock

    async def build_context(
        self,
        user_id: str,
        conversation_id: str,
        bounds: ContextBounds | None = None,
        trigger_message_id: str | None = None,
    ) -> UserContext:
        bounds = bounds or ContextBounds()
        start = time.monotonic()
        cutoff = self._clock() - timedelta(days=bounds.lookback_days)

        conversations = await self._active_conversations(user_id, conversation_id, cutoff)

        recent: List[RecentMessage] = []
        summaries: List[ConversationSummary] = []
        for conversation in conversations:
            unread = await self._source.count_unread(conversation.conversation_id, user_id)
            messages = await self._source.list_messages(
                conversation.conversation_id, bounds.max_recent_messages
            )
            summaries.append(
                ConversationSummary(
                    conversation_id=conversation.conversation_id,
                    participant_ids=list(conversation.participant_ids),
                    is_group=conversation.is_group,
                    last_message_timestamp=conversation.last_message_timestamp,
                    unread_count=unread,
                    group_name=conversation.group_name,
                )
            )
            for m in messages:
                if m.timestamp <= cutoff:
                    break
                recent.append(
                    RecentMessage(
                        message_id=m.message_id,
                        conversation_id=m.conversation_id,
                        text=m.text,
                        timestamp=m.timestamp,
                        sender_id=m.sender_id,
                        sender_name=m.sender_name or "Unknown",
                    )
                )

        recent.sort(key=lambda r: r.timestamp, reverse=True)
        recent = recent[: bounds.max_recent_messages]

        preferences = await self._source.get_preferences(user_id) or NotificationPreferences()

        semantic: List[SemanticSearchResult] = []
        if bounds.include_semantic and trigger_message_id and self._embeddings is not None:
            semantic = await self._semantic_context(
                trigger_message_id,
                [c.conversation_id for c in conversations],
                bounds.max_semantic_results,
            )

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "context user=%s conversations=%d recent=%d semantic=%d elapsed_ms=%.1f",
            user_id,
            len(summaries),
            len(recent),
            len(semantic),
            elapsed_ms,
        )
        return UserContext(
            user_id=user_id,
            recent_messages=recent,
            conversations=summaries,
            preferences=preferences,
            semantic_context=semantic,
        )

    async def _active_conversations(
        self, user_id: str, conversation_id: str, cutoff: datetime
    ) -> List[Conversation]:
        active = [
            c
            for c in await self._source.conversations_for_user(user_id)
            if c.last_message_timestamp is None
            or c.last_message_timestamp > cutoff
            or c.conversation_id == conversation_id
        ]
        return active

    async def _semantic_context(
        self, trigger_message_id: str, conversation_ids: List[str], top_k: int
    ) -> List[SemanticSearchResult]:
        try:
            vector = await self._embeddings.get_vector(trigger_message_id)
            if not vector:
                logger.debug("No embedding yet for message %s", trigger_message_id)
                return []
            return await self._embeddings.search(
                vector, conversation_ids, top_k, exclude_ids=[trigger_message_id]
            )
        except ContextUnavailable:
            record_metric("context_semantic_unavailable")
            logger.warning(
                "Embedding store unavailable; continuing without semantic context",
                exc_info=True,
            )
            return []


# ── Prompt rendering ─────────────────────────────────────────────────

def format_context_for_prompt(context: UserContext) -> str:
    """Render *context* as plain text for the model prompt."""
    parts: List[str] = [f"User ID: {context.user_id}"]

    total_unread = sum(c.unread_count for c in context.conversations)
    parts.append("\nRecent Activity:")
    parts.append(
        f"- {len(context.recent_messages)} messages across "
        f"{len(context.conversations)} conversations"
    )
    parts.append(f"- {total_unread} total unread messages")

    if context.conversations:
        parts.append("\nActive Conversations:")
        for conv in context.conversations[:5]:
            kind = f"Group: {conv.group_name or 'Unnamed'}" if conv.is_group else "Direct"
            parts.append(f"- {kind} ({conv.unread_count} unread)")

    if context.recent_messages:
        parts.append("\nRecent Messages (sample):")
        for msg in context.recent_messages[:10]:
            parts.append(f"[{msg.timestamp.isoformat()}] {msg.sender_name}: {msg.text[:100]}")

    if context.semantic_context:
        parts.append("\nRelated Past Messages:")
        for hit in context.semantic_context:
            parts.append(f"- ({hit.similarity:.2f}) {hit.text[:100]}")

    prefs = context.preferences
    parts.append("\nUser Preferences:")
    parts.append(f"- Priority keywords: {', '.join(prefs.priority_keywords) or 'none'}")
    parts.append(f"- Quiet hours: {prefs.quiet_hours_start} - {prefs.quiet_hours_end} ({prefs.timezone})")

    return "\n".join(parts)
