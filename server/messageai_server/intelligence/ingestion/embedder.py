"""Embedding generator for the cold ingestion path.

Calls the model provider's batch embedding endpoint with retry and
exponential backoff.  Caches identical content hashes to avoid redundant
API calls.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Dict, List

from intelligence.llm.provider import ModelProvider

logger = logging.getLogger(__name__)

# ── In-memory embedding cache (content_hash → vector) ────────────────
_cache: Dict[str, List[float]] = {}
_MAX_CACHE = 10_000


def _content_hash(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


async def generate_embeddings(
    texts: List[str],
    provider: ModelProvider,
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> List[List[float]]:
    """Generate embeddings for a batch of texts.

    Returns a list of embedding vectors in the same order as *texts*.
    Texts that still fail after retries come back as empty vectors, which
    callers must skip rather than index.
    """
    results: List[List[float]] = []
    to_embed: List[tuple[int, str]] = []  # (index, text)

    for i, text in enumerate(texts):
        h = _content_hash(text)
        if h in _cache:
            results.append(_cache[h])
        else:
            results.append([])  # placeholder
            to_embed.append((i, text))

    if not to_embed:
        return results

    # Batch call.
    batch_texts = [t for _, t in to_embed]
    vectors = await _embed_with_retry(
        batch_texts, provider, max_retries=max_retries, base_delay=base_delay
    )

    for idx, (orig_i, text) in enumerate(to_embed):
        vec = vectors[idx] if idx < len(vectors) else []
        results[orig_i] = vec
        if vec and len(_cache) < _MAX_CACHE:
            _cache[_content_hash(text)] = vec

    return results


async def _embed_with_retry(
    texts: List[str],
    provider: ModelProvider,
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> List[List[float]]:
    """Call the embedding API with exponential backoff."""
    for attempt in range(max_retries):
        try:
            return await provider.embed_batch(texts)
        except Exception:
            wait = base_delay * 2**attempt
            logger.warning("Embedding attempt %d failed; retrying in %.1fs", attempt + 1, wait)
            await asyncio.sleep(wait)

    logger.error("Embedding generation failed after %d retries", max_retries)
    return [[] for _ in texts]


def clear_cache() -> None:
    """Clear the embedding cache (testing helper)."""
    _cache.clear()
