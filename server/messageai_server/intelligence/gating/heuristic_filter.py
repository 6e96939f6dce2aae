"""Fast rule-based pre-filter for notification analysis.

Resolves obvious cases without touching the model:

- DEFINITELY_SKIP: the recipient cannot or should not be notified (disabled,
  muted, own message, already read), quiet hours, or plain noise
  (acknowledgements, emoji, bots, auto-replies).
- DEFINITELY_NOTIFY: mentions, urgent keywords, direct questions, task
  assignments and the recipient's own priority keywords.
- NEED_MODEL: anything ambiguous.

Rules are evaluated in order and the first match wins.  Notify rules run
before quiet hours, so urgent messages break through them.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from intelligence.models import (
    Conversation,
    Message,
    NotificationPreferences,
    Priority,
    UserProfile,
)

logger = logging.getLogger(__name__)


class HeuristicOutcome(str, Enum):
    DEFINITELY_NOTIFY = "DEFINITELY_NOTIFY"
    DEFINITELY_SKIP = "DEFINITELY_SKIP"
    NEED_MODEL = "NEED_MODEL"


@dataclass(frozen=True)
class HeuristicResult:
    outcome: HeuristicOutcome
    reason: str
    priority: Optional[Priority] = None

    @property
    def is_definite(self) -> bool:
        return self.outcome is not HeuristicOutcome.NEED_MODEL


# ── Patterns ─────────────────────────────────────────────────────────

URGENT_KEYWORDS = re.compile(
    r"\b(urgent|asap|emergency|critical|blocker|production|p0|priority\s*0)\b", re.I
)
DIRECT_REQUEST = re.compile(r"\b(can you|could you|would you|will you|please)\b", re.I)
TASK_ASSIGNMENT = re.compile(
    r"\b(assigned to|your task|you should|you need to|action item for you)\b", re.I
)
ACKNOWLEDGEMENT = re.compile(
    r"^(ok|okay|k|kk|thanks|thank you|ty|thx|lol|haha|ha|👍|😄|😊|🙏|❤️|nice|cool|"
    r"sure|yep|yup|nope|got it|sounds good|np|no problem)[.!\s]*$",
    re.I,
)
AUTO_REPLY = re.compile(r"\b(out of office|away from|on vacation|afk|brb|be right back)\b", re.I)
AUTOMATED_SENDER_MARKERS = ("bot", "notification")
MIN_TEXT_LENGTH = 5

# Joiners, variation selectors and skin-tone modifiers that glue emoji together.
_EMOJI_GLUE = {"\u200d", "\ufe0e", "\ufe0f", "\u20e3"}


def _is_emoji_only(text: str) -> bool:
    seen_symbol = False
    for ch in text:
        if ch.isspace() or ch in _EMOJI_GLUE or 0x1F3FB <= ord(ch) <= 0x1F3FF:
            continue
        if unicodedata.category(ch) == "So":
            seen_symbol = True
            continue
        return False
    return seen_symbol


def _word_pattern(phrase: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(phrase)}(?!\w)", re.I)


# ── Quiet hours ──────────────────────────────────────────────────────

def _parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def is_in_quiet_hours(preferences: NotificationPreferences, now: datetime) -> bool:
    """True when *now*, in the recipient's timezone, falls in the quiet window.

    The window may wrap past midnight (``22:00``-``08:00``).  An unknown
    timezone or a malformed time string is treated as not quiet.
    """
    try:
        zone = ZoneInfo(preferences.timezone)
        start = _parse_hhmm(preferences.quiet_hours_start)
        end = _parse_hhmm(preferences.quiet_hours_end)
    except (ZoneInfoNotFoundError, ValueError, TypeError, AttributeError):
        logger.warning(
            "Invalid quiet hours config (tz=%r, %r-%r); treating as not quiet",
            preferences.timezone,
            preferences.quiet_hours_start,
            preferences.quiet_hours_end,
        )
        return False

    local = now.astimezone(zone).time().replace(second=0, microsecond=0)
    if start == end:
        return False
    if start < end:
        return start <= local < end
    return local >= start or local < end


# ── Evaluation ───────────────────────────────────────────────────────

def evaluate(
    message: Message,
    recipient: UserProfile,
    preferences: NotificationPreferences,
    conversation: Conversation,
    now: datetime,
) -> HeuristicResult:
    """Classify *message* for *recipient*.  Pure; never calls the model."""
    text = message.text.strip()
    user_id = recipient.user_id

    # Recipient-level skips.
    if not preferences.enabled:
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "AI notifications disabled", Priority.LOW)
    if user_id in conversation.muted_by:
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Conversation muted", Priority.LOW)
    if message.sender_id == user_id:
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Own message", Priority.LOW)
    if user_id in message.read_by:
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Already read", Priority.LOW)

    name = recipient.display_name.strip()
    if name:
        if f"@{name.lower()}" in text.lower():
            return HeuristicResult(HeuristicOutcome.DEFINITELY_NOTIFY, "Direct @mention", Priority.HIGH)
        if _word_pattern(name).search(text):
            return HeuristicResult(HeuristicOutcome.DEFINITELY_NOTIFY, "User mentioned by name", Priority.HIGH)

    if URGENT_KEYWORDS.search(text):
        return HeuristicResult(HeuristicOutcome.DEFINITELY_NOTIFY, "Urgent keyword detected", Priority.HIGH)
    if DIRECT_REQUEST.search(text) and "?" in text:
        return HeuristicResult(HeuristicOutcome.DEFINITELY_NOTIFY, "Direct question detected", Priority.MEDIUM)
    if TASK_ASSIGNMENT.search(text):
        return HeuristicResult(HeuristicOutcome.DEFINITELY_NOTIFY, "Task assignment detected", Priority.HIGH)

    for keyword in preferences.priority_keywords:
        if keyword and keyword.strip() and _word_pattern(keyword.strip()).search(text):
            return HeuristicResult(
                HeuristicOutcome.DEFINITELY_NOTIFY,
                f"Priority keyword: {keyword.strip()}",
                Priority.MEDIUM,
            )

    # Noise.
    if is_in_quiet_hours(preferences, now):
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Quiet hours", Priority.LOW)
    if len(text) < MIN_TEXT_LENGTH:
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Message too short", Priority.LOW)
    if ACKNOWLEDGEMENT.match(text):
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Common acknowledgment/reaction", Priority.LOW)
    if _is_emoji_only(text):
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Emoji-only message", Priority.LOW)
    sender = message.sender_name.lower()
    if any(marker in sender for marker in AUTOMATED_SENDER_MARKERS):
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Automated message", Priority.LOW)
    if AUTO_REPLY.search(text):
        return HeuristicResult(HeuristicOutcome.DEFINITELY_SKIP, "Auto-reply message", Priority.LOW)

    return HeuristicResult(HeuristicOutcome.NEED_MODEL, "Message requires contextual analysis")
