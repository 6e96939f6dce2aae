"""Idempotent upsert of message embeddings to Azure AI Search.

Document IDs are the message IDs, so re-embedding a message replaces its
vector instead of creating a duplicate.

Failed documents are routed to a Dead Letter Queue (DLQ) callback.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from intelligence import config as cfg

logger = logging.getLogger(__name__)

# Default DLQ handler: log only.
_default_dlq: Callable[[Dict[str, Any]], None] = lambda doc: logger.error(
    "DLQ: embedding document %s", doc.get("id", "unknown")
)


def _normalise_timestamps(doc: Dict[str, Any]) -> Dict[str, Any]:
    ts = doc.get("ts")
    if isinstance(ts, (int, float)):
        doc["ts"] = datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
    elif isinstance(ts, datetime):
        doc["ts"] = ts.isoformat()
    return doc


async def upsert_documents(
    documents: List[Dict[str, Any]],
    *,
    search_client: Any | None = None,
    dlq_handler: Callable[[Dict[str, Any]], None] | None = None,
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> Dict[str, int]:
    """Upsert a batch of embedding documents into Azure AI Search.

    Parameters
    ----------
    documents:
        Dicts conforming to the embedding index schema.  Each must have an ``id``.
    search_client:
        An async ``SearchClient``.  If ``None``, a new one is created from config.
    dlq_handler:
        Callback for permanently failed documents.
    max_retries:
        Exponential backoff retries on transient failures.

    Returns
    -------
    Dict with ``success`` and ``failed`` counts.
    """
    dlq = dlq_handler or _default_dlq

    if not documents:
        return {"success": 0, "failed": 0}

    client = search_client
    if client is None:
        if not cfg.AZURE_SEARCH_ENDPOINT or not cfg.AZURE_SEARCH_API_KEY:
            logger.warning("Search credentials not configured; routing %d docs to DLQ", len(documents))
            for doc in documents:
                dlq(doc)
            return {"success": 0, "failed": len(documents)}

        from azure.core.credentials import AzureKeyCredential
        from azure.search.documents.aio import SearchClient

        client = SearchClient(
            endpoint=cfg.AZURE_SEARCH_ENDPOINT,
            index_name=cfg.EMBEDDING_INDEX_NAME,
            credential=AzureKeyCredential(cfg.AZURE_SEARCH_API_KEY),
        )

    documents = [_normalise_timestamps(dict(doc)) for doc in documents]

    for attempt in range(max_retries):
        try:
            # merge_or_upload is idempotent: creates if absent, merges if present.
            results = await client.merge_or_upload_documents(documents=documents)
            success = 0
            failed = 0
            for result in results:
                if result.succeeded:
                    success += 1
                else:
                    failed += 1
                    matching = [d for d in documents if d.get("id") == result.key]
                    if matching:
                        dlq(matching[0])
            logger.info("upsert batch=%d success=%d failed=%d", len(documents), success, failed)
            return {"success": success, "failed": failed}
        except Exception:
            wait = base_delay * 2**attempt
            logger.warning("Upsert attempt %d failed; retrying in %.1fs", attempt + 1, wait)
            await asyncio.sleep(wait)

    # All retries exhausted.
    for doc in documents:
        dlq(doc)
    logger.error("Upsert failed after %d retries; %d docs sent to DLQ", max_retries, len(documents))
    return {"success": 0, "failed": len(documents)}
