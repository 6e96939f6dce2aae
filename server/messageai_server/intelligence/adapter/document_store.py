"""Document store interface used by the result cache and the rate limiter.

Documents are flat JSON-serialisable dicts addressed by string keys.  The
only multi-step primitive is ``increment_if_below``, which must check and
increment a counter field as one atomic operation.

Implementations raise :class:`~intelligence.errors.StoreUnavailable` on
I/O failure; callers decide whether that means fail-open or fail-closed.
"""

from __future__ import annotations

import copy
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple


# ── Interface (structural typing) ────────────────────────────────────

class DocumentStore(Protocol):
    """Shared document store interface."""

    async def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def set(
        self, key: str, doc: Dict[str, Any], ttl_seconds: float | None = None
    ) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def increment_if_below(
        self,
        key: str,
        field_name: str,
        limit: int,
        ttl_seconds: float | None = None,
    ) -> Optional[int]: ...

    async def keys(self, prefix: str) -> List[str]: ...


# ── In-process implementation ────────────────────────────────────────

class InMemoryDocumentStore:
    """Dict-backed store for development and tests.

    A single lock guards every operation, so ``increment_if_below`` is atomic
    across coroutines and threads alike.  Optional TTLs are enforced on read.
    """

    def __init__(self) -> None:
        self._docs: Dict[str, Tuple[Dict[str, Any], Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Dict[str, Any]]:
        item = self._docs.get(key)
        if item is None:
            return None
        doc, deadline = item
        if deadline is not None and time.monotonic() >= deadline:
            del self._docs[key]
            return None
        return doc

    @staticmethod
    def _deadline(ttl_seconds: float | None) -> Optional[float]:
        return time.monotonic() + ttl_seconds if ttl_seconds else None

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._live(key)
            return copy.deepcopy(doc) if doc is not None else None

    async def set(
        self, key: str, doc: Dict[str, Any], ttl_seconds: float | None = None
    ) -> None:
        with self._lock:
            self._docs[key] = (copy.deepcopy(doc), self._deadline(ttl_seconds))

    async def delete(self, key: str) -> None:
        with self._lock:
            self._docs.pop(key, None)

    async def increment_if_below(
        self,
        key: str,
        field_name: str,
        limit: int,
        ttl_seconds: float | None = None,
    ) -> Optional[int]:
        with self._lock:
            doc = self._live(key)
            if doc is None:
                doc = {}
                self._docs[key] = (doc, self._deadline(ttl_seconds))
            current = int(doc.get(field_name, 0))
            if current >= limit:
                return None
            doc[field_name] = current + 1
            return current + 1

    async def keys(self, prefix: str) -> List[str]:
        with self._lock:
            return [k for k in list(self._docs) if k.startswith(prefix) and self._live(k) is not None]
