"""Embed-on-create: materialise a vector for each new message.

Runs off the request path (a background task after ``POST /messages``) so the
notification hot path only ever reads embeddings that already exist.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, List, Sequence

from intelligence.adapter.azure_search_adapter import EmbeddingStore
from intelligence.errors import ContextUnavailable
from intelligence.ingestion.embedder import generate_embeddings
from intelligence.llm.provider import ModelProvider
from intelligence.models import Message, MessageEmbedding
from intelligence.observability.tracing import record_metric

logger = logging.getLogger(__name__)


async def index_messages(
    messages: Sequence[Message],
    participant_ids: Iterable[str],
    provider: ModelProvider,
    store: EmbeddingStore,
) -> int:
    """Embed and upsert *messages*; returns how many were indexed."""
    candidates = [m for m in messages if m.text and m.text.strip()]
    if not candidates:
        return 0

    start = time.monotonic()
    participants = list(participant_ids)
    vectors = await generate_embeddings([m.text for m in candidates], provider)

    embeddings: List[MessageEmbedding] = []
    for message, vector in zip(candidates, vectors):
        if not vector:
            record_metric("cold_embed_failure")
            logger.warning("No embedding for message %s; skipping", message.message_id)
            continue
        embeddings.append(
            MessageEmbedding(
                message_id=message.message_id,
                conversation_id=message.conversation_id,
                vector=vector,
                participant_ids=participants,
                text=message.text,
                timestamp=message.timestamp,
            )
        )

    if not embeddings:
        return 0

    try:
        result = await store.upsert(embeddings)
    except ContextUnavailable:
        record_metric("cold_embed_failure", len(embeddings))
        logger.error("Embedding store unavailable; %d messages not indexed", len(embeddings))
        return 0

    indexed = int(result.get("success", 0))
    record_metric("cold_embed_count", indexed)
    logger.info(
        "Indexed %d/%d messages elapsed_ms=%.1f",
        indexed,
        len(messages),
        (time.monotonic() - start) * 1000,
    )
    return indexed


async def index_message(
    message: Message,
    participant_ids: Iterable[str],
    provider: ModelProvider,
    store: EmbeddingStore,
) -> bool:
    return await index_messages([message], participant_ids, provider, store) == 1
