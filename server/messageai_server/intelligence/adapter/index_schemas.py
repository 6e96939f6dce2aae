"""Azure AI Search index schema for message embeddings.

Provides the index schema as a plain dict for SDK-based index creation.
"""

from __future__ import annotations

from intelligence.config import AZURE_SEARCH_VECTOR_DIM, EMBEDDING_INDEX_NAME

VECTOR_PROFILE_NAME = "message-vector-profile"
HNSW_ALGORITHM_NAME = "message-hnsw"

INDEX_FIELDS = [
    {"name": "id", "type": "Edm.String", "key": True, "filterable": True},
    {"name": "conversation_id", "type": "Edm.String", "filterable": True},
    {
        "name": "participant_ids",
        "type": "Collection(Edm.String)",
        "filterable": True,
    },
    {
        "name": "ts",
        "type": "Edm.DateTimeOffset",
        "sortable": True,
        "filterable": True,
    },
    {"name": "text", "type": "Edm.String", "searchable": True},
    {
        "name": "vector",
        "type": "Collection(Edm.Single)",
        "searchable": True,
        "dimensions": AZURE_SEARCH_VECTOR_DIM,
        "vectorSearchProfile": VECTOR_PROFILE_NAME,
    },
]


def get_index_definition() -> dict:
    """Return the full JSON-serialisable index definition."""
    return {
        "name": EMBEDDING_INDEX_NAME,
        "fields": INDEX_FIELDS,
        "vectorSearch": {
            "algorithms": [
                {
                    "name": HNSW_ALGORITHM_NAME,
                    "kind": "hnsw",
                    "hnswParameters": {
                        "m": 4,
                        "efConstruction": 400,
                        "efSearch": 500,
                        "metric": "cosine",
                    },
                }
            ],
            "profiles": [
                {
                    "name": VECTOR_PROFILE_NAME,
                    "algorithm": HNSW_ALGORITHM_NAME,
                }
            ],
        },
    }


def vector_dimensions() -> int:
    """Dimensionality declared on the ``vector`` field."""
    for f in INDEX_FIELDS:
        if f["name"] == "vector":
            return int(f["dimensions"])
    raise KeyError("vector field missing from index definition")
