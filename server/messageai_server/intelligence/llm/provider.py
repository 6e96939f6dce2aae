"""Model provider contract and the Azure OpenAI / OpenAI implementation.

Two operations are used by the pipeline:

- ``generate(system_prompt, user_prompt)`` returns the raw JSON text of a
  chat completion.
- ``embed(text)`` / ``embed_batch(texts)`` return fixed-dimension vectors.

Every provider failure is raised as :class:`ModelInvocationFailed` with a
cause so callers can route it (fallback for notifications, HTTP 502 for
on-demand features).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Protocol, Sequence

from intelligence import config as cfg
from intelligence.errors import ModelFailureCause, ModelInvocationFailed
from intelligence.observability.tracing import record_metric

logger = logging.getLogger(__name__)


# ── Interface (structural typing) ────────────────────────────────────

class ModelProvider(Protocol):
    async def generate(self, system_prompt: str, user_prompt: str) -> str: ...

    async def embed(self, text: str) -> List[float]: ...

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]: ...


# ── Azure OpenAI / OpenAI implementation ─────────────────────────────

class OpenAIModelProvider:
    """Chat + embeddings through ``AsyncAzureOpenAI`` (or ``AsyncOpenAI``).

    Azure is used when ``AZURE_OPENAI_ENDPOINT`` is set; otherwise the public
    OpenAI API with ``OPENAI_API_KEY``.
    """

    def __init__(
        self,
        *,
        chat_model: str | None = None,
        embed_model: str | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
        client: Any | None = None,
    ) -> None:
        self._chat_model = chat_model or cfg.AZURE_OPENAI_CHAT_DEPLOYMENT
        self._embed_model = embed_model or cfg.AZURE_OPENAI_EMBED_MODEL
        self._temperature = cfg.MODEL_TEMPERATURE if temperature is None else temperature
        self._timeout = timeout_seconds or cfg.MODEL_TIMEOUT_SECONDS
        self._client: Any | None = client
        self._init_lock = asyncio.Lock()

    @staticmethod
    def is_configured() -> bool:
        return bool(
            (cfg.AZURE_OPENAI_ENDPOINT and cfg.AZURE_OPENAI_API_KEY) or cfg.OPENAI_API_KEY
        )

    # -- Lazy initialisation (connection pooling) ----------------------

    async def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        async with self._init_lock:
            if self._client is None:
                if cfg.AZURE_OPENAI_ENDPOINT and cfg.AZURE_OPENAI_API_KEY:
                    from openai import AsyncAzureOpenAI

                    self._client = AsyncAzureOpenAI(
                        api_key=cfg.AZURE_OPENAI_API_KEY,
                        azure_endpoint=cfg.AZURE_OPENAI_ENDPOINT,
                        api_version=cfg.AZURE_OPENAI_API_VERSION,
                        timeout=self._timeout,
                        max_retries=1,
                    )
                    logger.info("Model provider: Azure OpenAI (%s)", self._chat_model)
                elif cfg.OPENAI_API_KEY:
                    from openai import AsyncOpenAI

                    self._client = AsyncOpenAI(
                        api_key=cfg.OPENAI_API_KEY, timeout=self._timeout, max_retries=1
                    )
                    logger.info("Model provider: OpenAI (%s)", self._chat_model)
                else:
                    raise ModelInvocationFailed(
                        ModelFailureCause.PROVIDER_ERROR, "no model credentials configured"
                    )
        return self._client

    @staticmethod
    def _failure(exc: Exception) -> ModelInvocationFailed:
        import openai

        if isinstance(exc, openai.APITimeoutError):
            return ModelInvocationFailed(ModelFailureCause.TIMEOUT, str(exc))
        return ModelInvocationFailed(ModelFailureCause.PROVIDER_ERROR, str(exc))

    # -- ModelProvider -------------------------------------------------

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        client = await self._ensure_client()
        start = time.monotonic()
        record_metric("model_call_count")
        try:
            response = await client.chat.completions.create(
                model=self._chat_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self._temperature,
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            raise self._failure(exc) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ModelInvocationFailed(ModelFailureCause.MALFORMED_RESPONSE, "empty completion")

        usage = getattr(response, "usage", None)
        logger.info(
            "model.generate model=%s elapsed_ms=%.1f total_tokens=%s",
            self._chat_model,
            (time.monotonic() - start) * 1000,
            getattr(usage, "total_tokens", None),
        )
        return content

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        client = await self._ensure_client()
        try:
            response = await client.embeddings.create(input=list(texts), model=self._embed_model)
        except Exception as exc:
            raise self._failure(exc) from exc
        return [list(item.embedding) for item in response.data]

    # -- Lifecycle -----------------------------------------------------

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.close()
            except Exception:
                logger.exception("Error closing model client")
