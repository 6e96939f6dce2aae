#!/usr/bin/env python3
"""Create (or update) the Azure AI Search index for message embeddings.

Usage:
    python create_index.py

Requires AZURE_SEARCH_ENDPOINT and AZURE_SEARCH_API_KEY in the environment.
"""

from __future__ import annotations

import os
import sys

# Allow running from repo root or scripts/.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "server", "messageai_server"))

from dotenv import load_dotenv

load_dotenv()

from intelligence.adapter.index_schemas import (
    HNSW_ALGORITHM_NAME,
    VECTOR_PROFILE_NAME,
    vector_dimensions,
)
from intelligence.config import AZURE_SEARCH_API_KEY, AZURE_SEARCH_ENDPOINT, EMBEDDING_INDEX_NAME


def create_or_update_index() -> None:
    if not AZURE_SEARCH_ENDPOINT or not AZURE_SEARCH_API_KEY:
        print("ERROR: AZURE_SEARCH_ENDPOINT and AZURE_SEARCH_API_KEY must be set.")
        sys.exit(1)

    from azure.core.credentials import AzureKeyCredential
    from azure.search.documents.indexes import SearchIndexClient
    from azure.search.documents.indexes.models import (
        HnswAlgorithmConfiguration,
        HnswParameters,
        SearchableField,
        SearchField,
        SearchFieldDataType,
        SearchIndex,
        SimpleField,
        VectorSearch,
        VectorSearchProfile,
    )

    credential = AzureKeyCredential(AZURE_SEARCH_API_KEY)
    client = SearchIndexClient(endpoint=AZURE_SEARCH_ENDPOINT, credential=credential)

    fields = [
        SimpleField(name="id", type=SearchFieldDataType.String, key=True, filterable=True),
        SimpleField(name="conversation_id", type=SearchFieldDataType.String, filterable=True),
        SimpleField(
            name="participant_ids",
            type=SearchFieldDataType.Collection(SearchFieldDataType.String),
            filterable=True,
        ),
        SimpleField(name="ts", type=SearchFieldDataType.DateTimeOffset, sortable=True, filterable=True),
        SearchableField(name="text", type=SearchFieldDataType.String),
        SearchField(
            name="vector",
            type=SearchFieldDataType.Collection(SearchFieldDataType.Single),
            searchable=True,
            vector_search_dimensions=vector_dimensions(),
            vector_search_profile_name=VECTOR_PROFILE_NAME,
        ),
    ]

    vector_search = VectorSearch(
        algorithms=[
            HnswAlgorithmConfiguration(
                name=HNSW_ALGORITHM_NAME,
                parameters=HnswParameters(m=4, ef_construction=400, ef_search=500, metric="cosine"),
            )
        ],
        profiles=[
            VectorSearchProfile(
                name=VECTOR_PROFILE_NAME, algorithm_configuration_name=HNSW_ALGORITHM_NAME
            ),
        ],
    )

    index = SearchIndex(name=EMBEDDING_INDEX_NAME, fields=fields, vector_search=vector_search)

    print(f"Creating/updating index '{EMBEDDING_INDEX_NAME}' at {AZURE_SEARCH_ENDPOINT}...")

    try:
        client.create_or_update_index(index)
        print(f"✓ Index '{EMBEDDING_INDEX_NAME}' is ready.")
    except Exception as e:
        print(f"✗ Index operation failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    create_or_update_index()
