"""Redis-backed :class:`DocumentStore`.

Documents are stored as JSON strings under ``{prefix}:{key}``; counters live
in Redis hashes so that ``increment_if_below`` can run as a single Lua script
(check and ``HINCRBY`` execute atomically on the server).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from intelligence import config as cfg
from intelligence.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_INCREMENT_IF_BELOW = """
local current = tonumber(redis.call('HGET', KEYS[1], ARGV[1]) or '0')
if current >= tonumber(ARGV[2]) then
    return -1
end
local updated = redis.call('HINCRBY', KEYS[1], ARGV[1], 1)
if tonumber(ARGV[3]) > 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[3])
end
return updated
"""


class RedisDocumentStore:
    """Production store backed by ``redis.asyncio``."""

    def __init__(
        self,
        url: str | None = None,
        *,
        prefix: str | None = None,
        client: Any | None = None,
    ) -> None:
        self._url = url or cfg.REDIS_URL
        self._prefix = prefix if prefix is not None else cfg.REDIS_KEY_PREFIX
        self._client: Any | None = client
        self._script: Any | None = None
        self._init_lock = asyncio.Lock()

    # -- Lazy initialisation (connection pooling) ----------------------

    async def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        async with self._init_lock:
            if self._client is None:
                if not self._url:
                    raise StoreUnavailable("REDIS_URL is not configured")
                import redis.asyncio as redis

                self._client = redis.from_url(
                    self._url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                )
                logger.info("Redis document store initialised")
        return self._client

    def _k(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    # -- DocumentStore -------------------------------------------------

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            client = await self._ensure_client()
            # Counter documents are hashes rather than JSON strings.
            if await client.type(self._k(key)) == "hash":
                return {f: int(v) for f, v in (await client.hgetall(self._k(key))).items()}
            raw = await client.get(self._k(key))
            return json.loads(raw) if raw is not None else None
        except StoreUnavailable:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"redis get failed for {key}") from exc

    async def set(
        self, key: str, doc: Dict[str, Any], ttl_seconds: float | None = None
    ) -> None:
        try:
            client = await self._ensure_client()
            ex = max(1, int(ttl_seconds)) if ttl_seconds else None
            await client.set(self._k(key), json.dumps(doc), ex=ex)
        except StoreUnavailable:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"redis set failed for {key}") from exc

    async def delete(self, key: str) -> None:
        try:
            client = await self._ensure_client()
            await client.delete(self._k(key))
        except StoreUnavailable:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"redis delete failed for {key}") from exc

    async def increment_if_below(
        self,
        key: str,
        field_name: str,
        limit: int,
        ttl_seconds: float | None = None,
    ) -> Optional[int]:
        try:
            client = await self._ensure_client()
            if self._script is None:
                self._script = client.register_script(_INCREMENT_IF_BELOW)
            ttl = int(ttl_seconds) if ttl_seconds else 0
            result = await self._script(keys=[self._k(key)], args=[field_name, limit, ttl])
        except StoreUnavailable:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"redis increment failed for {key}") from exc
        result = int(result)
        return None if result < 0 else result

    async def keys(self, prefix: str) -> List[str]:
        try:
            client = await self._ensure_client()
            strip = len(self._k(""))
            return [k[strip:] async for k in client.scan_iter(match=f"{self._k(prefix)}*")]
        except StoreUnavailable:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"redis scan failed for {prefix}") from exc

    # -- Lifecycle -----------------------------------------------------

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception:
                logger.exception("Error closing Redis client")
