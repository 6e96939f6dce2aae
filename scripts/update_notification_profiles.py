#!/usr/bin/env python3
"""Relearn notification profiles from recent feedback.

Usage:
    python update_notification_profiles.py [--user USER_ID]

Meant to run weekly against the shared Redis store.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "server", "messageai_server"))

from dotenv import load_dotenv

load_dotenv()

from intelligence import config as cfg
from intelligence.adapter.conversation_source import InMemoryConversationSource
from intelligence.adapter.redis_store import RedisDocumentStore
from intelligence.feedback.notification_feedback import NotificationFeedback


async def update(user_id: str | None = None) -> None:
    if not cfg.REDIS_URL:
        print("ERROR: REDIS_URL must be set.")
        sys.exit(1)

    store = RedisDocumentStore()
    # Relearning reads only stored feedback, never conversations.
    feedback = NotificationFeedback(store, InMemoryConversationSource())
    try:
        if user_id is None:
            summary = await feedback.update_all_profiles()
            print(f"Updated {summary['usersUpdated']} of {summary['totalUsers']} profiles")
        else:
            profile = await feedback.update_profile(user_id)
            if profile is None:
                print(f"No recent feedback for {user_id}; profile unchanged")
            else:
                print(
                    f"Updated {user_id}: rate={profile.preferred_notification_rate.value} "
                    f"accuracy={profile.accuracy}"
                )
    finally:
        await store.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--user", dest="user_id")
    args = parser.parse_args()
    asyncio.run(update(user_id=args.user_id))
