"""Centralised configuration for the intelligence layer.

All values are read from environment variables with sensible defaults.
Feature flags allow enabling/disabling semantic context and the
embed-on-create cold path independently.
"""

from __future__ import annotations

import os


def _bool_env(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).lower() in ("true", "1", "yes")


def _int_env(name: str, default: int = 0) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float = 0.0) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


# ── Document store ───────────────────────────────────────────────────
# Empty REDIS_URL keeps cache entries and counters in process memory.
REDIS_URL: str = os.getenv("REDIS_URL", "")
REDIS_KEY_PREFIX: str = os.getenv(
    "REDIS_KEY_PREFIX",
    f"{os.getenv('APP_NAME', 'messageai')}-{os.getenv('ENV', 'dev')}",
)

# ── Azure AI Search (message embeddings) ─────────────────────────────
AZURE_SEARCH_ENDPOINT: str = os.getenv("AZURE_SEARCH_ENDPOINT", "")
AZURE_SEARCH_API_KEY: str = os.getenv("AZURE_SEARCH_API_KEY", "")
EMBEDDING_INDEX_NAME: str = os.getenv(
    "EMBEDDING_INDEX_NAME",
    f"{os.getenv('APP_NAME', 'messageai')}-{os.getenv('ENV', 'dev')}-message-embeddings",
)
AZURE_SEARCH_VECTOR_DIM: int = _int_env("AZURE_SEARCH_VECTOR_DIM", 1536)

# ── Model provider ───────────────────────────────────────────────────
AZURE_OPENAI_ENDPOINT: str = os.getenv("AZURE_OPENAI_ENDPOINT", "")
AZURE_OPENAI_API_KEY: str = os.getenv("AZURE_OPENAI_API_KEY", "")
AZURE_OPENAI_API_VERSION: str = os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-01")
AZURE_OPENAI_CHAT_DEPLOYMENT: str = os.getenv("AZURE_OPENAI_CHAT_DEPLOYMENT", "gpt-4-turbo")
AZURE_OPENAI_EMBED_MODEL: str = os.getenv(
    "AZURE_OPENAI_EMBED_MODEL", "text-embedding-ada-002"
)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
MODEL_TEMPERATURE: float = _float_env("MODEL_TEMPERATURE", 0.3)
MODEL_TIMEOUT_SECONDS: float = _float_env("MODEL_TIMEOUT_SECONDS", 20.0)

# ── Rate limiting ────────────────────────────────────────────────────
DEFAULT_DAILY_LIMIT: int = _int_env("DEFAULT_DAILY_LIMIT", 100)
NOTIFICATION_DAILY_LIMIT: int = _int_env("NOTIFICATION_DAILY_LIMIT", 100)
# Calendar day boundary for counters; quiet hours use the user's own timezone.
RATE_LIMIT_TIMEZONE: str = os.getenv("RATE_LIMIT_TIMEZONE", "UTC")

# ── Result cache ─────────────────────────────────────────────────────
NOTIFICATION_CACHE_TTL_HOURS: float = _float_env("NOTIFICATION_CACHE_TTL_HOURS", 1.0)
FEATURE_CACHE_TTL_HOURS: float = _float_env("FEATURE_CACHE_TTL_HOURS", 24.0)
SEARCH_CACHE_TTL_HOURS: float = _float_env("SEARCH_CACHE_TTL_HOURS", 1.0)
STALENESS_MESSAGE_THRESHOLD: int = _int_env("STALENESS_MESSAGE_THRESHOLD", 10)
STALENESS_HOURS_THRESHOLD: float = _float_env("STALENESS_HOURS_THRESHOLD", 24.0)

# ── Context retrieval ────────────────────────────────────────────────
CONTEXT_MAX_RECENT_MESSAGES: int = _int_env("CONTEXT_MAX_RECENT_MESSAGES", 100)
CONTEXT_LOOKBACK_DAYS: int = _int_env("CONTEXT_LOOKBACK_DAYS", 7)
CONTEXT_MAX_SEMANTIC_RESULTS: int = _int_env("CONTEXT_MAX_SEMANTIC_RESULTS", 5)
SEMANTIC_CONTEXT_ENABLED: bool = _bool_env("SEMANTIC_CONTEXT_ENABLED", True)

# ── Features ─────────────────────────────────────────────────────────
FEATURE_MAX_MESSAGES: int = _int_env("FEATURE_MAX_MESSAGES", 100)
SEARCH_DEFAULT_LIMIT: int = _int_env("SEARCH_DEFAULT_LIMIT", 20)

# ── Feedback loop ────────────────────────────────────────────────────
# Decisions are logged for feedback; profiles learn from the last N days of it.
DECISION_LOG_ENABLED: bool = _bool_env("DECISION_LOG_ENABLED", True)
FEEDBACK_WINDOW_DAYS: int = _int_env("FEEDBACK_WINDOW_DAYS", 30)
LEARNED_KEYWORD_LIMIT: int = _int_env("LEARNED_KEYWORD_LIMIT", 10)

# ── Embed-on-create (cold path) ──────────────────────────────────────
EMBED_ON_CREATE_ENABLED: bool = _bool_env("EMBED_ON_CREATE_ENABLED", True)

# ── Observability ────────────────────────────────────────────────────
OTEL_EXPORTER_OTLP_ENDPOINT: str = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info")
