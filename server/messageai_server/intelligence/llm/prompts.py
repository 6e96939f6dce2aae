"""Prompt templates and structured-response parsing.

Every parser raises :class:`ModelInvocationFailed` with cause
``malformed_response`` when the model output does not match the expected
JSON shape, so callers handle it like any other model failure.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from intelligence.errors import ModelFailureCause, ModelInvocationFailed
from intelligence.models import (
    ActionItem,
    ActionItemsResult,
    Message,
    NotificationDecision,
    NotificationPreferences,
    NotificationProfile,
    NotificationRate,
    Priority,
    SummaryResult,
)

MAX_NOTIFICATION_TEXT = 100

# ── Notification analysis ────────────────────────────────────────────

NOTIFICATION_SYSTEM_PROMPT = """You are a notification assistant for remote team professionals. Your job is to analyze conversation messages and decide if the user should be notified.

You adapt your notification decisions based on the user's learned preferences from their feedback history.

ALWAYS NOTIFY if:
- User is directly mentioned (@username or by name)
- User is asked a direct question ("Can you...", "Could you...", "Would you...", "Will you...")
- A decision is made that affects the user's work or responsibilities
- There's an urgent/time-sensitive request related to user's projects
- Production issue or blocker is mentioned that affects user
- Someone assigns a task to the user
- A meeting or deadline is mentioned that involves the user

SHOULD NOTIFY if:
- Message contains user's priority keywords (from preferences)
- Message contains user's learned important keywords (from feedback history)
- Discussion is about a topic the user recently participated in
- Important update on a project the user is involved in
- Request for feedback or review that could involve user

NEVER NOTIFY if:
- General team chat that doesn't involve the user
- FYI updates the user isn't responsible for
- Social/casual conversation (jokes, "thanks", "lol", emoji reactions)
- Information already known to user (based on user context)
- Automated messages or bot responses
- Message is about a topic the user has marked as "not helpful" (suppressed topics)

NOTIFICATION TEXT GUIDELINES:
- Be clear and actionable
- Include sender name and key context
- Max 100 characters
- Format: "{Sender}: {key message summary}"

PRIORITY LEVELS:
- HIGH: Direct mentions, urgent issues, direct questions, production problems
- MEDIUM: Priority keywords, important updates, indirect questions
- LOW: General updates, non-urgent information

RESPOND ONLY WITH JSON in this exact format:
{
  "shouldNotify": true/false,
  "reason": "brief explanation of decision (1-2 sentences)",
  "notificationText": "clear, actionable notification text (max 100 chars)",
  "priority": "high" | "medium" | "low"
}"""


def format_messages(messages: Iterable[Message]) -> str:
    """One ``[timestamp] sender: text`` line per message, oldest first."""
    ordered = sorted(messages, key=lambda m: m.timestamp)
    return "\n".join(f"[{m.timestamp.isoformat()}] {m.sender_name}: {m.text}" for m in ordered)


RATE_INSTRUCTIONS = {
    NotificationRate.HIGH: "User appreciates frequent notifications. Be more liberal in notification decisions.",
    NotificationRate.MEDIUM: "User prefers moderate notification frequency. Balance importance vs frequency.",
    NotificationRate.LOW: "User dislikes frequent notifications. Only notify for critical messages.",
}


def format_learned_preferences(profile: NotificationProfile) -> str:
    accuracy = f"{profile.accuracy * 100:.0f}%" if profile.accuracy is not None else "N/A"
    return f"""
Learned User Preferences (from feedback history):
- Notification frequency preference: {profile.preferred_notification_rate.value}
- {RATE_INSTRUCTIONS[profile.preferred_notification_rate]}
- User finds these topics important: {", ".join(profile.learned_keywords) or "None learned yet"}
- User doesn't want notifications about: {", ".join(profile.suppressed_topics) or "None"}
- Historical accuracy: {accuracy}
"""


def build_notification_user_prompt(
    user_context: str,
    conversation_messages: str,
    preferences: NotificationPreferences,
    now: datetime,
    profile: Optional[NotificationProfile] = None,
) -> str:
    learned = format_learned_preferences(profile) if profile is not None else ""
    return f"""User Context:
{user_context}

User Preferences:
- AI notifications enabled: {str(preferences.enabled).lower()}
- Quiet hours: {preferences.quiet_hours_start} - {preferences.quiet_hours_end} ({preferences.timezone})
- Priority keywords: {", ".join(preferences.priority_keywords)}
- Max analyses per hour: {preferences.max_analyses_per_hour}
{learned}
Current Time: {now.isoformat()}

Conversation Messages (unread for user):
{conversation_messages}

Analyze these messages and decide if the user should be notified."""


# ── Response parsing ─────────────────────────────────────────────────

_FENCED = re.compile(r"```(?:json)?\s*(.*?)```", re.S)


def _malformed(detail: str) -> ModelInvocationFailed:
    return ModelInvocationFailed(ModelFailureCause.MALFORMED_RESPONSE, detail)


def _load_object(text: str) -> Dict[str, Any]:
    if text is None:
        raise _malformed("empty response")
    fenced = _FENCED.search(text)
    raw = fenced.group(1) if fenced else text
    try:
        data = json.loads(raw.strip())
    except (json.JSONDecodeError, AttributeError) as exc:
        raise _malformed(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise _malformed("expected a JSON object")
    return data


def truncate_notification_text(text: str, limit: int = MAX_NOTIFICATION_TEXT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def parse_notification_decision(text: str) -> NotificationDecision:
    data = _load_object(text)

    should_notify = data.get("shouldNotify")
    if not isinstance(should_notify, bool):
        raise _malformed("shouldNotify must be a boolean")

    reason = data.get("reason", "")
    notification_text = data.get("notificationText", "")
    if not isinstance(reason, str) or not isinstance(notification_text, str):
        raise _malformed("reason and notificationText must be strings")

    try:
        priority = Priority(str(data.get("priority", "")).lower())
    except ValueError as exc:
        raise _malformed(f"invalid priority {data.get('priority')!r}") from exc

    return NotificationDecision(
        should_notify=should_notify,
        reason=reason,
        notification_text=truncate_notification_text(notification_text),
        priority=priority,
    )


# ── Thread summary ───────────────────────────────────────────────────

SUMMARY_SYSTEM_PROMPT = """You summarize team chat threads for busy professionals.

RESPOND ONLY WITH JSON in this exact format:
{
  "summary": "3-5 sentence summary of the conversation",
  "keyPoints": ["decision or fact", "..."]
}"""


def build_summary_user_prompt(conversation_messages: str, participants: List[str]) -> str:
    return (
        f"Participants: {', '.join(participants)}\n\n"
        f"Conversation Messages:\n{conversation_messages}\n\n"
        "Summarize this conversation."
    )


def parse_summary(text: str, participants: List[str], date_range: str) -> SummaryResult:
    data = _load_object(text)
    summary = data.get("summary")
    key_points = data.get("keyPoints", [])
    if not isinstance(summary, str) or not summary.strip():
        raise _malformed("summary must be a non-empty string")
    if not isinstance(key_points, list):
        raise _malformed("keyPoints must be a list")
    return SummaryResult(
        summary=summary.strip(),
        key_points=[str(p) for p in key_points],
        participants=participants,
        date_range=date_range,
    )


# ── Action items ─────────────────────────────────────────────────────

ACTION_ITEMS_SYSTEM_PROMPT = """You extract action items from team chat threads.
Only include concrete tasks someone committed to or was asked to do.

RESPOND ONLY WITH JSON in this exact format:
{
  "actionItems": [
    {"description": "what needs to be done", "assignee": "name or null", "dueDate": "date or null"}
  ]
}"""


def build_action_items_user_prompt(conversation_messages: str) -> str:
    return (
        f"Conversation Messages:\n{conversation_messages}\n\n"
        "Extract the action items from this conversation."
    )


def parse_action_items(text: str) -> ActionItemsResult:
    data = _load_object(text)
    items = data.get("actionItems")
    if not isinstance(items, list):
        raise _malformed("actionItems must be a list")

    parsed: List[ActionItem] = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("description"), str):
            raise _malformed("each action item needs a description")
        parsed.append(
            ActionItem(
                description=item["description"],
                assignee=item.get("assignee") or None,
                due_date=item.get("dueDate") or None,
            )
        )
    return ActionItemsResult(action_items=parsed)
