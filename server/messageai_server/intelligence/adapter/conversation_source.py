"""Read access to conversations, messages, users and notification preferences.

The managed database that owns this data is an external collaborator; the
pipeline only reads through :class:`ConversationSource`.  The in-memory
implementation backs local development, the HTTP server and the tests.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol

from intelligence.models import (
    Conversation,
    Message,
    NotificationPreferences,
    UserProfile,
)


class ConversationSource(Protocol):
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    async def list_messages(self, conversation_id: str, limit: int) -> List[Message]:
        """Most-recent-first, at most *limit* messages."""
        ...

    async def count_messages(self, conversation_id: str) -> int: ...

    async def count_unread(self, conversation_id: str, user_id: str) -> int: ...

    async def conversations_for_user(self, user_id: str) -> List[Conversation]: ...

    async def get_user(self, user_id: str) -> Optional[UserProfile]: ...

    async def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]: ...


class InMemoryConversationSource:
    """Process-local source; also exposes the write side used by the API."""

    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._users: Dict[str, UserProfile] = {}
        self._preferences: Dict[str, NotificationPreferences] = {}
        self._lock = threading.Lock()

    # -- Write side ----------------------------------------------------

    def add_conversation(self, conversation: Conversation) -> None:
        with self._lock:
            self._conversations[conversation.conversation_id] = conversation
            self._messages.setdefault(conversation.conversation_id, [])

    def add_message(self, message: Message) -> None:
        with self._lock:
            messages = self._messages.setdefault(message.conversation_id, [])
            messages.append(message)
            messages.sort(key=lambda m: m.timestamp)
            conversation = self._conversations.get(message.conversation_id)
            if conversation is not None:
                latest = conversation.last_message_timestamp
                if latest is None or message.timestamp > latest:
                    conversation.last_message_timestamp = message.timestamp

    def add_user(self, user: UserProfile) -> None:
        with self._lock:
            self._users[user.user_id] = user

    def set_preferences(self, user_id: str, preferences: NotificationPreferences) -> None:
        with self._lock:
            self._preferences[user_id] = preferences

    def find_message(self, message_id: str) -> Optional[Message]:
        with self._lock:
            for messages in self._messages.values():
                for message in messages:
                    if message.message_id == message_id:
                        return message
        return None

    # -- ConversationSource --------------------------------------------

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            return self._conversations.get(conversation_id)

    async def list_messages(self, conversation_id: str, limit: int) -> List[Message]:
        with self._lock:
            messages = self._messages.get(conversation_id, [])
            return list(reversed(messages))[: max(0, limit)]

    async def count_messages(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._messages.get(conversation_id, []))

    async def count_unread(self, conversation_id: str, user_id: str) -> int:
        with self._lock:
            return sum(1 for m in self._messages.get(conversation_id, []) if m.is_unread_by(user_id))

    async def conversations_for_user(self, user_id: str) -> List[Conversation]:
        with self._lock:
            return [c for c in self._conversations.values() if user_id in c.participant_ids]

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            return self._users.get(user_id)

    async def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]:
        with self._lock:
            return self._preferences.get(user_id)
