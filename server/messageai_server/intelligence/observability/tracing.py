"""Observability setup for the intelligence layer.

Provides OpenTelemetry tracing and structured logging with correlation IDs.
Metrics cover the notification decision paths, the result cache, the rate
limiter and the embed-on-create cold path.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from intelligence import config as cfg

logger = logging.getLogger(__name__)

# ── Metrics counters (simple in-process; replace with OTel SDK) ──────

_metrics: dict[str, float] = {
    "decision_count": 0,
    "decision_latency_ms_total": 0,
    "decision_cache_hit": 0,
    "decision_heuristic": 0,
    "decision_model": 0,
    "decision_fallback": 0,
    "model_call_count": 0,
    "model_failure_count": 0,
    "cache_hit": 0,
    "cache_miss": 0,
    "cache_expired": 0,
    "cache_unavailable": 0,
    "cache_store_failure": 0,
    "rate_limit_exceeded": 0,
    "rate_limiter_unavailable": 0,
    "context_semantic_unavailable": 0,
    "cold_embed_count": 0,
    "cold_embed_failure": 0,
}
_metrics_lock = threading.Lock()


def record_metric(name: str, value: float = 1.0) -> None:
    """Increment / accumulate a named metric."""
    with _metrics_lock:
        _metrics[name] = _metrics.get(name, 0) + value


def get_metrics() -> dict[str, float]:
    """Return a snapshot of current metrics."""
    with _metrics_lock:
        return dict(_metrics)


def reset_metrics() -> None:
    """Reset all metric counters (testing helper)."""
    with _metrics_lock:
        for key in _metrics:
            _metrics[key] = 0


# ── Structured logging helper ────────────────────────────────────────

def log_with_context(
    level: int,
    message: str,
    *,
    user_id: str = "",
    conversation_id: str = "",
    message_id: str = "",
    path: str = "",
    **extra: Any,
) -> None:
    """Emit a structured log line with correlation IDs and the decision path."""
    fields = {
        "user_id": user_id,
        "conversation_id": conversation_id,
        "message_id": message_id,
        "path": path,
        **extra,
    }
    logger.log(level, "%s | %s", message, fields)


# ── Optional OpenTelemetry bootstrap ─────────────────────────────────

def init_otel() -> None:
    """Initialise OpenTelemetry tracing if ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set."""
    endpoint = cfg.OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        logger.info("OTEL endpoint not configured; tracing disabled.")
        return

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create({"service.name": "messageai-intelligence"})
        provider = TracerProvider(resource=resource)
        exporter = OTLPSpanExporter(endpoint=endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        logger.info("OpenTelemetry tracing initialised (endpoint=%s)", endpoint)
    except ImportError:
        logger.warning("OpenTelemetry SDK not installed; tracing disabled.")
    except Exception:
        logger.exception("OpenTelemetry initialisation failed")
