"""Deterministic notification decisions for when the model path is unavailable.

Used when the rate limit is exhausted, the limiter store is down, or the model
call fails.  The user's ``fallback_strategy`` selects a handler from
:data:`FALLBACK_STRATEGIES`.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Optional

from intelligence.llm.prompts import truncate_notification_text
from intelligence.models import (
    FallbackStrategy,
    Message,
    NotificationDecision,
    NotificationPreferences,
    Priority,
    UserProfile,
)

logger = logging.getLogger(__name__)

FallbackHandler = Callable[
    [Optional[Message], UserProfile, NotificationPreferences], NotificationDecision
]

_QUESTION_PATTERNS = (
    re.compile(r"can you\b", re.I),
    re.compile(r"could you\b", re.I),
    re.compile(r"would you\b", re.I),
    re.compile(r"will you\b", re.I),
    re.compile(r"\?\s*$"),
)


def notification_text(message: Message) -> str:
    return truncate_notification_text(f"{message.sender_name}: {message.text}")


def _notify(message: Message, reason: str, priority: Priority) -> NotificationDecision:
    return NotificationDecision(
        should_notify=True,
        reason=reason,
        notification_text=notification_text(message),
        priority=priority,
    )


def _silent(reason: str) -> NotificationDecision:
    return NotificationDecision(should_notify=False, reason=reason, priority=Priority.LOW)


def simple_rules(
    message: Optional[Message],
    recipient: UserProfile,
    preferences: NotificationPreferences,
) -> NotificationDecision:
    """Mention -> high, priority keyword -> medium, question -> medium, else silent."""
    if message is None:
        return _silent("No unread messages (fallback heuristic)")

    text = message.text.lower()
    handles = {f"@{recipient.user_id.lower()}"}
    if recipient.display_name.strip():
        handles.add(f"@{recipient.display_name.strip().lower()}")
    if any(handle in text for handle in handles):
        return _notify(message, "User directly mentioned (fallback heuristic)", Priority.HIGH)

    for keyword in preferences.priority_keywords:
        if keyword and keyword.lower() in text:
            return _notify(
                message,
                f'Priority keyword detected: "{keyword.lower()}" (fallback heuristic)',
                Priority.MEDIUM,
            )

    if any(pattern.search(message.text) for pattern in _QUESTION_PATTERNS):
        return _notify(message, "Direct question detected (fallback heuristic)", Priority.MEDIUM)

    return _silent("No notification triggers found (fallback heuristic)")


def notify_all(
    message: Optional[Message],
    recipient: UserProfile,
    preferences: NotificationPreferences,
) -> NotificationDecision:
    if message is None:
        return _silent("No unread messages (fallback: notify all)")
    return _notify(message, "Fallback: notify all", Priority.MEDIUM)


def suppress_all(
    message: Optional[Message],
    recipient: UserProfile,
    preferences: NotificationPreferences,
) -> NotificationDecision:
    return _silent("Fallback: suppress all")


FALLBACK_STRATEGIES: Dict[FallbackStrategy, FallbackHandler] = {
    FallbackStrategy.SIMPLE_RULES: simple_rules,
    FallbackStrategy.NOTIFY_ALL: notify_all,
    FallbackStrategy.SUPPRESS_ALL: suppress_all,
}


def apply_fallback(
    message: Optional[Message],
    recipient: UserProfile,
    preferences: NotificationPreferences,
    *,
    cause: str,
) -> NotificationDecision:
    strategy = preferences.fallback_strategy
    handler = FALLBACK_STRATEGIES[strategy]
    decision = handler(message, recipient, preferences)
    logger.info(
        "Fallback applied: user=%s strategy=%s cause=%s notify=%s",
        recipient.user_id,
        strategy.value,
        cause,
        decision.should_notify,
    )
    return decision
