"""Notification decision and AI result caching for messageai.

HOT path (per new message): result cache → fast heuristics → rate limiter →
    bounded RAG context → model, with a deterministic fallback whenever the
    model path is unavailable.
COLD path (write/ingest): embed-on-create → upsert to Azure AI Search, so the
    hot path only reads materialised vectors.
"""

from intelligence.models import FeatureType, NotificationDecision, NotificationPreferences
from intelligence.decision.engine import DecisionEngine

__all__ = [
    "FeatureType",
    "NotificationDecision",
    "NotificationPreferences",
    "DecisionEngine",
]
