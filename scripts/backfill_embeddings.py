#!/usr/bin/env python3
"""Backfill embeddings for messages created before embed-on-create existed.

Usage:
    python backfill_embeddings.py [--dry-run] [--batch-size N]

Reads messages from stdin, one JSON object per line:
    {"messageId": "...", "conversationId": "...", "senderId": "...",
     "text": "...", "timestamp": "...", "participantIds": ["..."]}
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Dict, List, Tuple

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "server", "messageai_server"))

from dotenv import load_dotenv

load_dotenv()

from intelligence.adapter.azure_search_adapter import AzureSearchEmbeddingStore
from intelligence.ingestion.message_indexer import index_messages
from intelligence.llm.provider import OpenAIModelProvider
from intelligence.models import Message, parse_timestamp, utc_now


def _parse_line(line: str) -> Tuple[Message, List[str]]:
    data: Dict = json.loads(line)
    message = Message(
        message_id=data["messageId"],
        conversation_id=data["conversationId"],
        sender_id=data.get("senderId", ""),
        text=data.get("text", ""),
        timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
        sender_name=data.get("senderName", "Unknown"),
    )
    return message, list(data.get("participantIds", []))


async def backfill(dry_run: bool = False, batch_size: int = 16) -> None:
    if not dry_run and not AzureSearchEmbeddingStore.is_configured():
        print("ERROR: AZURE_SEARCH_ENDPOINT and AZURE_SEARCH_API_KEY must be set.")
        sys.exit(1)

    provider = OpenAIModelProvider()
    store = AzureSearchEmbeddingStore()
    print("Reading messages from stdin (one JSON per line)...")
    indexed = 0
    skipped = 0
    errors = 0

    # Batches group messages that share a participant list.
    pending: Dict[Tuple[str, ...], List[Message]] = {}

    async def flush(participants: Tuple[str, ...]) -> None:
        nonlocal indexed, skipped
        batch = pending.pop(participants, [])
        if not batch:
            return
        count = await index_messages(batch, participants, provider, store)
        indexed += count
        skipped += len(batch) - count

    try:
        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue
            try:
                message, participants = _parse_line(line)
            except (KeyError, ValueError) as e:
                print(f"  Error: {e}")
                errors += 1
                continue
            if dry_run:
                print(f"  [dry-run] Would embed message: {message.message_id}")
                continue
            group = tuple(participants)
            pending.setdefault(group, []).append(message)
            if len(pending[group]) >= batch_size:
                await flush(group)

        for group in list(pending):
            await flush(group)
    finally:
        await store.close()
        await provider.close()

    print(f"\nBackfill complete: indexed={indexed} skipped={skipped} errors={errors}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--batch-size", type=int, default=16)
    args = parser.parse_args()
    asyncio.run(backfill(dry_run=args.dry_run, batch_size=args.batch_size))
