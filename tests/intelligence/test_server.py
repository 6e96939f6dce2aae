"""HTTP tests for the FastAPI server wired over in-memory services."""

import sys
import os
import asyncio
import json

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "messageai_server"))

import pytest
from fastapi.testclient import TestClient

from fakes import FakeProvider
from intelligence import config as cfg
from intelligence.adapter.azure_search_adapter import InMemoryEmbeddingStore
from intelligence.adapter.document_store import InMemoryDocumentStore
from intelligence.models import NotificationPreferences

import server

# Never quiet, so results do not depend on the wall clock.
ALWAYS_AWAKE = {"quietHoursStart": "00:00", "quietHoursEnd": "00:00", "timezone": "UTC"}


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(provider):
    server.services = server.build_services(
        store=InMemoryDocumentStore(), embeddings=InMemoryEmbeddingStore(), provider=provider
    )
    test_client = TestClient(server.app)
    test_client.put("/users/alice", json={"display_name": "Alice"})
    test_client.put("/users/bob", json={"display_name": "Bob"})
    test_client.put("/users/bob/preferences", json=ALWAYS_AWAKE)
    test_client.post("/conversations", json={"conversation_id": "c1", "participant_ids": ["alice", "bob"]})
    return test_client


def _post_message(client, text, sender_id="alice"):
    response = client.post("/messages", json={"conversation_id": "c1", "sender_id": sender_id, "text": text})
    assert response.status_code == 200
    return response.json()["messageId"]


def test_root_reports_health(client):
    body = client.get("/").json()
    assert body["Hello"] == "MessageAI Intelligence"
    assert body["Store Healthy"] is True
    assert "Model Configured" in body


def test_message_to_unknown_conversation_is_404(client):
    response = client.post("/messages", json={"conversation_id": "nope", "sender_id": "alice", "text": "hi"})
    assert response.status_code == 404


def test_message_sender_name_comes_from_profile(client):
    message_id = _post_message(client, "Deploy notes are in the wiki")
    message = server.services.source.find_message(message_id)
    assert message.sender_name == "Alice"


def test_analyze_urgent_message(client, provider):
    _post_message(client, "production down")
    response = client.post("/notifications/analyze", json={"conversation_id": "c1", "user_id": "bob"})

    assert response.status_code == 200
    body = response.json()
    assert body["shouldNotify"] is True
    assert body["priority"] == "high"
    assert body["notificationText"] == "Alice: production down"
    assert provider.generate_calls == 0


def test_analyze_ambiguous_message_uses_model(client, provider):
    _post_message(client, "The new onboarding flow looks different than the mockups")
    body = client.post("/notifications/analyze", json={"conversation_id": "c1", "user_id": "bob"}).json()

    assert body == json.loads(provider.reply)
    assert provider.generate_calls == 1

    quota = client.get("/quota/bob/notificationDecision").json()
    assert quota == {
        "userId": "bob",
        "featureType": "notificationDecision",
        "remaining": cfg.NOTIFICATION_DAILY_LIMIT - 1,
    }


def test_analyze_errors_map_to_status_codes(client):
    _post_message(client, "Deploy notes are in the wiki")
    assert client.post("/notifications/analyze", json={"conversation_id": "nope", "user_id": "bob"}).status_code == 404
    assert client.post("/notifications/analyze", json={"conversation_id": "c1", "user_id": "eve"}).status_code == 403


def test_unknown_quota_feature_is_400(client):
    assert client.get("/quota/bob/poetry").status_code == 400


def test_unknown_fallback_strategy_is_rejected(client):
    response = client.put("/users/bob/preferences", json={"fallbackStrategy": "shout"})
    assert response.status_code == 422


def test_enabled_must_be_a_real_boolean(client):
    """A string "false" must not be stored as a truthy value."""
    response = client.put("/users/bob/preferences", json={"enabled": "false"})
    assert response.status_code == 422


def test_priority_keywords_must_be_a_list(client):
    response = client.put("/users/bob/preferences", json={"priorityKeywords": "deploy"})
    assert response.status_code == 422


@pytest.mark.parametrize("value", ["late", "25:00", "7:30", "12:60", ""])
def test_malformed_quiet_hours_are_rejected(client, value):
    response = client.put("/users/bob/preferences", json={"quietHoursStart": value})
    assert response.status_code == 422


def test_unknown_timezone_is_rejected(client):
    response = client.put("/users/bob/preferences", json={"timezone": "Mars/Olympus"})
    assert response.status_code == 422


def test_rejected_preferences_leave_stored_ones_untouched(client):
    client.put("/users/bob/preferences", json={"enabled": "false", "priorityKeywords": "deploy"})
    _post_message(client, "production down")

    body = client.post("/notifications/analyze", json={"conversation_id": "c1", "user_id": "bob"}).json()
    assert body["shouldNotify"] is True
    stored = asyncio.run(server.services.source.get_preferences("bob"))
    assert stored.enabled is True
    assert stored.priority_keywords == NotificationPreferences().priority_keywords


def test_opted_out_user_is_not_notified(client):
    client.put("/users/bob/preferences", json={**ALWAYS_AWAKE, "enabled": False})
    _post_message(client, "production down")

    body = client.post("/notifications/analyze", json={"conversation_id": "c1", "user_id": "bob"}).json()
    assert body["shouldNotify"] is False


def test_preferences_round_trip(client):
    response = client.put("/users/bob/preferences", json={"priorityKeywords": ["invoice"], "enabled": False})
    body = response.json()
    assert body["priorityKeywords"] == ["invoice"]
    assert body["enabled"] is False
    assert body["fallbackStrategy"] == "simple_rules"


def test_summary_endpoint_caches(client, provider):
    provider.reply = json.dumps({"summary": "Deploy is on Friday.", "keyPoints": ["Friday"]})
    _post_message(client, "Deploy is scheduled for Friday morning")

    first = client.post("/ai/summary", json={"conversation_id": "c1", "user_id": "bob"}).json()
    second = client.post("/ai/summary", json={"conversation_id": "c1", "user_id": "bob"}).json()

    assert first["summary"] == "Deploy is on Friday."
    assert first["cached"] is False
    assert second["cached"] is True


def test_action_items_model_failure_is_502(client, provider):
    provider.reply = "not json"
    _post_message(client, "Bob will write the release notes")
    response = client.post("/ai/action-items", json={"conversation_id": "c1", "user_id": "bob"})
    assert response.status_code == 502


def test_search_finds_embedded_messages(client):
    _post_message(client, "Deploy is scheduled for Friday morning")
    _post_message(client, "Lunch is on the team this week")

    body = client.post("/ai/search", json={"user_id": "bob", "query": "deploy", "limit": 1}).json()
    assert body["query"] == "deploy"
    assert [r["text"] for r in body["results"]] == ["Deploy is scheduled for Friday morning"]
    assert body["cached"] is False


def test_search_validation(client):
    assert client.post("/ai/search", json={"user_id": "bob", "query": "  "}).status_code == 400
    assert client.post("/ai/search", json={"user_id": "bob", "query": "x", "limit": 0}).status_code == 422


def test_metrics_endpoint(client):
    _post_message(client, "production down")
    client.post("/notifications/analyze", json={"conversation_id": "c1", "user_id": "bob"})
    metrics = client.get("/metrics").json()
    assert metrics["decision_count"] == 1
    assert metrics["decision_heuristic"] == 1


def test_feedback_round_trip_updates_profile_and_analytics(client):
    message_id = _post_message(client, "production down")
    client.post("/notifications/analyze", json={"conversation_id": "c1", "user_id": "bob"})

    response = client.post(
        "/notifications/feedback",
        json={"conversation_id": "c1", "user_id": "bob", "message_id": message_id, "feedback": "helpful"},
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "feedbackId": f"bob_c1_{message_id}"}

    refreshed = client.post("/notifications/profiles/refresh", json={"user_id": "bob"}).json()
    assert refreshed == {"usersUpdated": 1, "totalUsers": 1}

    profile = client.get("/users/bob/notification-profile").json()
    assert profile["preferredNotificationRate"] == "high"
    assert profile["accuracy"] == 1.0

    analytics = client.get("/notifications/analytics/bob").json()
    assert analytics["totalNotifications"] == 1
    assert analytics["accuracy"] == 100.0
    assert analytics["commonFalsePositives"] == []


def test_feedback_errors_map_to_status_codes(client):
    message_id = _post_message(client, "Deploy notes are in the wiki")
    body = {"conversation_id": "c1", "user_id": "bob", "message_id": message_id, "feedback": "helpful"}

    assert client.post("/notifications/feedback", json=body).status_code == 404
    assert client.post("/notifications/feedback", json={**body, "feedback": "meh"}).status_code == 422
    assert client.post("/notifications/feedback", json={**body, "user_id": "eve"}).status_code == 403


def test_feedback_may_carry_the_rated_decision(client):
    message_id = _post_message(client, "Deploy notes are in the wiki")
    decision = {"shouldNotify": True, "reason": "Lunch plans", "priority": "low"}
    body = {"conversation_id": "c1", "user_id": "bob", "message_id": message_id, "feedback": "not_helpful"}

    assert client.post("/notifications/feedback", json={**body, "decision": decision}).status_code == 200
    assert client.post("/notifications/profiles/refresh", json={}).json() == {"usersUpdated": 1, "totalUsers": 1}

    analytics = client.get("/notifications/analytics/bob").json()
    assert analytics["commonFalsePositives"] == [{"reason": "Lunch plans", "count": 1}]
    profile = client.get("/users/bob/notification-profile").json()
    assert profile["suppressedTopics"] == ["lunch", "plans"]


def test_missing_notification_profile_is_404(client):
    assert client.get("/users/bob/notification-profile").status_code == 404
