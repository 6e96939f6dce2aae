import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "messageai_server"))

from intelligence.ingestion import embedder
from intelligence.observability.tracing import reset_metrics


@pytest.fixture(autouse=True)
def clean_process_state():
    """Metrics and the embedding cache are module-level; isolate each test."""
    reset_metrics()
    embedder.clear_cache()
    yield
    reset_metrics()
    embedder.clear_cache()
