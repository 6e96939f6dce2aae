"""Vector store for materialised message embeddings.

READ path (``search`` / ``get_vector``):
    Vector similarity over the embeddings of the user's conversations.
    Used by the context retriever; never computes embeddings itself.

WRITE path (``upsert``):
    Called by the embed-on-create cold path and the backfill script.

Every read failure is raised as :class:`ContextUnavailable` so the caller can
degrade to an empty semantic context.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

from intelligence import config as cfg
from intelligence.errors import ContextUnavailable
from intelligence.ingestion.upsert_azure_search import upsert_documents
from intelligence.models import MessageEmbedding, SemanticSearchResult, parse_timestamp
from intelligence.retrieval.similarity import rank_by_similarity

logger = logging.getLogger(__name__)


# ── Interface (structural typing) ────────────────────────────────────

class EmbeddingStore(Protocol):
    """Shared embedding store interface."""

    async def upsert(self, embeddings: Sequence[MessageEmbedding]) -> Dict[str, int]: ...

    async def get_vector(self, message_id: str) -> Optional[List[float]]: ...

    async def search(
        self,
        vector: Sequence[float],
        conversation_ids: Sequence[str],
        top_k: int,
        exclude_ids: Sequence[str] = (),
    ) -> List[SemanticSearchResult]: ...


def _to_document(embedding: MessageEmbedding) -> Dict[str, Any]:
    return {
        "id": embedding.message_id,
        "conversation_id": embedding.conversation_id,
        "participant_ids": list(embedding.participant_ids),
        "text": embedding.text,
        "ts": embedding.timestamp,
        "vector": list(embedding.vector),
    }


# ── OData filters ───────────────────────────────────────────────────

# search.in delimiters tried in order; the first one absent from every id wins.
_IN_DELIMITERS = (",", "|", ";", "~")


def odata_literal(value: str) -> str:
    """Quote *value* as an OData string literal (single quotes doubled)."""
    return "'" + value.replace("'", "''") + "'"


def conversation_filter(conversation_ids: Sequence[str]) -> str:
    """Restrict a query to *conversation_ids* without letting an id widen it.

    ``search.in`` splits its value list on the delimiter, so an id containing
    the delimiter would turn into several values.  When every candidate
    delimiter occurs in some id the filter falls back to an ``eq`` chain.
    """
    for delimiter in _IN_DELIMITERS:
        if not any(delimiter in cid for cid in conversation_ids):
            values = odata_literal(delimiter.join(conversation_ids))
            return f"search.in(conversation_id, {values}, {odata_literal(delimiter)})"
    return " or ".join(f"conversation_id eq {odata_literal(cid)}" for cid in conversation_ids)


# ── In-process implementation ────────────────────────────────────────

class InMemoryEmbeddingStore:
    """Brute-force cosine search; suitable for development and tests."""

    def __init__(self) -> None:
        self._embeddings: Dict[str, MessageEmbedding] = {}
        self._lock = threading.Lock()

    async def upsert(self, embeddings: Sequence[MessageEmbedding]) -> Dict[str, int]:
        with self._lock:
            for embedding in embeddings:
                self._embeddings[embedding.message_id] = embedding
        return {"success": len(embeddings), "failed": 0}

    async def get_vector(self, message_id: str) -> Optional[List[float]]:
        with self._lock:
            embedding = self._embeddings.get(message_id)
            return list(embedding.vector) if embedding is not None else None

    async def search(
        self,
        vector: Sequence[float],
        conversation_ids: Sequence[str],
        top_k: int,
        exclude_ids: Sequence[str] = (),
    ) -> List[SemanticSearchResult]:
        allowed = set(conversation_ids)
        excluded = set(exclude_ids)
        with self._lock:
            candidates = [
                (e, e.vector)
                for e in self._embeddings.values()
                if e.conversation_id in allowed and e.message_id not in excluded
            ]
        ranked = rank_by_similarity(vector, candidates, top_k=top_k)
        return [
            SemanticSearchResult(
                message_id=e.message_id,
                conversation_id=e.conversation_id,
                text=e.text,
                similarity=score,
                timestamp=e.timestamp,
            )
            for e, score in ranked
        ]


# ── Azure AI Search implementation ───────────────────────────────────

class AzureSearchEmbeddingStore:
    """Production store backed by an Azure AI Search vector index."""

    def __init__(self, search_client: Any | None = None) -> None:
        self._search_client: Any | None = search_client
        self._init_lock = asyncio.Lock()

    @staticmethod
    def is_configured() -> bool:
        return bool(cfg.AZURE_SEARCH_ENDPOINT and cfg.AZURE_SEARCH_API_KEY)

    # -- Lazy initialisation (connection pooling) ----------------------

    async def _ensure_client(self) -> Any:
        if self._search_client is not None:
            return self._search_client
        async with self._init_lock:
            if self._search_client is None:
                if not self.is_configured():
                    raise ContextUnavailable("Azure AI Search is not configured")
                from azure.core.credentials import AzureKeyCredential
                from azure.search.documents.aio import SearchClient

                self._search_client = SearchClient(
                    endpoint=cfg.AZURE_SEARCH_ENDPOINT,
                    index_name=cfg.EMBEDDING_INDEX_NAME,
                    credential=AzureKeyCredential(cfg.AZURE_SEARCH_API_KEY),
                )
        return self._search_client

    # -- WRITE path ------------------------------------------------------

    async def upsert(self, embeddings: Sequence[MessageEmbedding]) -> Dict[str, int]:
        client = await self._ensure_client()
        return await upsert_documents(
            [_to_document(e) for e in embeddings], search_client=client
        )

    # -- READ path -------------------------------------------------------

    async def get_vector(self, message_id: str) -> Optional[List[float]]:
        from azure.core.exceptions import ResourceNotFoundError

        try:
            client = await self._ensure_client()
            doc = await client.get_document(key=message_id, selected_fields=["id", "vector"])
        except ContextUnavailable:
            raise
        except ResourceNotFoundError:
            return None
        except Exception as exc:
            raise ContextUnavailable(f"embedding lookup failed for {message_id}") from exc
        vector = doc.get("vector") if doc else None
        return list(vector) if vector else None

    async def search(
        self,
        vector: Sequence[float],
        conversation_ids: Sequence[str],
        top_k: int,
        exclude_ids: Sequence[str] = (),
    ) -> List[SemanticSearchResult]:
        if not vector or not conversation_ids:
            return []
        start = time.monotonic()
        try:
            from azure.search.documents.models import VectorizedQuery

            client = await self._ensure_client()
            odata_filter = conversation_filter(conversation_ids)
            vec_query = VectorizedQuery(
                vector=list(vector),
                k_nearest_neighbors=top_k + len(exclude_ids),
                fields="vector",
            )
            results = await client.search(
                search_text=None,
                vector_queries=[vec_query],
                filter=odata_filter,
                top=top_k + len(exclude_ids),
                select=["id", "conversation_id", "text", "ts"],
            )
            hits: List[SemanticSearchResult] = []
            excluded = set(exclude_ids)
            async for doc in results:
                if doc["id"] in excluded:
                    continue
                hits.append(
                    SemanticSearchResult(
                        message_id=doc["id"],
                        conversation_id=doc.get("conversation_id", ""),
                        text=doc.get("text", ""),
                        similarity=float(doc.get("@search.score", 0.0)),
                        timestamp=parse_timestamp(doc.get("ts")),
                    )
                )
        except ContextUnavailable:
            raise
        except Exception as exc:
            raise ContextUnavailable("vector search failed") from exc

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info("embeddings.search k=%d hits=%d elapsed_ms=%.1f", top_k, len(hits), elapsed_ms)
        return hits[:top_k]

    # -- Lifecycle -----------------------------------------------------

    async def close(self) -> None:
        if self._search_client is not None:
            try:
                await self._search_client.close()
            except Exception:
                logger.exception("Error closing search client")
