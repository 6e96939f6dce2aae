"""Unit tests for the deterministic fallback strategies."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "messageai_server"))

from intelligence.decision.fallback import FALLBACK_STRATEGIES, apply_fallback, simple_rules
from intelligence.models import (
    FallbackStrategy,
    Message,
    NotificationPreferences,
    Priority,
    UserProfile,
)

BOB = UserProfile("bob", "Bob")


def _message(text):
    return Message("m1", "c1", "alice", text, sender_name="Alice")


def test_every_strategy_has_a_handler():
    assert set(FALLBACK_STRATEGIES) == set(FallbackStrategy)


def test_simple_rules_mention_is_high():
    decision = simple_rules(_message("hey @Bob, take a look"), BOB, NotificationPreferences())
    assert decision.should_notify
    assert decision.priority is Priority.HIGH
    assert decision.notification_text == "Alice: hey @Bob, take a look"


def test_simple_rules_user_id_mention():
    decision = simple_rules(_message("@bob fyi"), UserProfile("bob", ""), NotificationPreferences())
    assert decision.priority is Priority.HIGH


def test_simple_rules_priority_keyword_is_medium():
    decision = simple_rules(_message("We hit a BLOCKER on the migration"), BOB, NotificationPreferences())
    assert decision.should_notify
    assert decision.priority is Priority.MEDIUM
    assert '"blocker"' in decision.reason


def test_simple_rules_question_is_medium():
    decision = simple_rules(_message("Has the vendor replied yet?"), BOB, NotificationPreferences())
    assert decision.should_notify
    assert decision.reason == "Direct question detected (fallback heuristic)"


def test_simple_rules_otherwise_silent():
    decision = simple_rules(_message("The new mockups are in the shared folder"), BOB, NotificationPreferences())
    assert not decision.should_notify
    assert decision.priority is Priority.LOW
    assert decision.reason == "No notification triggers found (fallback heuristic)"


def test_simple_rules_without_message():
    assert simple_rules(None, BOB, NotificationPreferences()).reason == "No unread messages (fallback heuristic)"


def test_notify_all_truncates_text():
    prefs = NotificationPreferences(fallback_strategy=FallbackStrategy.NOTIFY_ALL)
    decision = apply_fallback(_message("x" * 300), BOB, prefs, cause="timeout")
    assert decision.should_notify
    assert decision.reason == "Fallback: notify all"
    assert decision.priority is Priority.MEDIUM
    assert len(decision.notification_text) == 100
    assert decision.notification_text.endswith("...")


def test_suppress_all_never_notifies():
    prefs = NotificationPreferences(fallback_strategy=FallbackStrategy.SUPPRESS_ALL)
    decision = apply_fallback(_message("@bob production down"), BOB, prefs, cause="rate_limited")
    assert not decision.should_notify
    assert decision.reason == "Fallback: suppress all"
