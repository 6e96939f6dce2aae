"""Data models for the notification decision and AI result caching pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO strings, epoch seconds or datetimes; always return aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ── Enumerations ─────────────────────────────────────────────────────

class FeatureType(str, Enum):
    SUMMARY = "summary"
    ACTION_ITEMS = "actionItems"
    SEARCH = "search"
    NOTIFICATION_DECISION = "notificationDecision"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FallbackStrategy(str, Enum):
    SIMPLE_RULES = "simple_rules"
    NOTIFY_ALL = "notify_all"
    SUPPRESS_ALL = "suppress_all"


class FeedbackRating(str, Enum):
    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"


class NotificationRate(str, Enum):
    """How often a user wants to be notified, learned from their feedback."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ── Result payloads (tagged by FeatureType) ──────────────────────────

@dataclass
class NotificationDecision:
    """Outcome of a notification analysis, whichever path produced it."""

    should_notify: bool
    reason: str
    notification_text: str = ""
    priority: Priority = Priority.LOW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shouldNotify": self.should_notify,
            "reason": self.reason,
            "notificationText": self.notification_text,
            "priority": self.priority.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationDecision":
        return cls(
            should_notify=bool(data["shouldNotify"]),
            reason=str(data.get("reason", "")),
            notification_text=str(data.get("notificationText", "")),
            priority=Priority(data.get("priority", Priority.LOW.value)),
        )


@dataclass
class SummaryResult:
    summary: str
    key_points: List[str] = field(default_factory=list)
    participants: List[str] = field(default_factory=list)
    date_range: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "keyPoints": list(self.key_points),
            "participants": list(self.participants),
            "dateRange": self.date_range,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SummaryResult":
        return cls(
            summary=str(data["summary"]),
            key_points=[str(p) for p in data.get("keyPoints", [])],
            participants=[str(p) for p in data.get("participants", [])],
            date_range=str(data.get("dateRange", "")),
        )


@dataclass
class ActionItem:
    description: str
    assignee: Optional[str] = None
    due_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "assignee": self.assignee,
            "dueDate": self.due_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionItem":
        return cls(
            description=str(data["description"]),
            assignee=data.get("assignee"),
            due_date=data.get("dueDate"),
        )


@dataclass
class ActionItemsResult:
    action_items: List[ActionItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"actionItems": [item.to_dict() for item in self.action_items]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionItemsResult":
        return cls(
            action_items=[ActionItem.from_dict(i) for i in data.get("actionItems", [])]
        )


@dataclass
class SemanticSearchResult:
    message_id: str
    conversation_id: str
    text: str
    similarity: float
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messageId": self.message_id,
            "conversationId": self.conversation_id,
            "text": self.text,
            "similarity": self.similarity,
            "timestamp": _iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SemanticSearchResult":
        return cls(
            message_id=str(data["messageId"]),
            conversation_id=str(data["conversationId"]),
            text=str(data.get("text", "")),
            similarity=float(data["similarity"]),
            timestamp=parse_timestamp(data.get("timestamp")),
        )


@dataclass
class SearchResult:
    query: str
    results: List[SemanticSearchResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "results": [r.to_dict() for r in self.results]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchResult":
        return cls(
            query=str(data.get("query", "")),
            results=[SemanticSearchResult.from_dict(r) for r in data.get("results", [])],
        )


ResultPayload = Union[NotificationDecision, SummaryResult, ActionItemsResult, SearchResult]

PAYLOAD_TYPES: Dict[FeatureType, type] = {
    FeatureType.SUMMARY: SummaryResult,
    FeatureType.ACTION_ITEMS: ActionItemsResult,
    FeatureType.SEARCH: SearchResult,
    FeatureType.NOTIFICATION_DECISION: NotificationDecision,
}


def encode_payload(feature_type: FeatureType, payload: ResultPayload) -> str:
    """Serialise *payload* as a tagged variant ``{featureType, payload}``."""
    expected = PAYLOAD_TYPES[feature_type]
    if not isinstance(payload, expected):
        raise TypeError(
            f"{feature_type.value} expects {expected.__name__}, got {type(payload).__name__}"
        )
    return json.dumps({"featureType": feature_type.value, "payload": payload.to_dict()})


def decode_payload(feature_type: FeatureType, raw: str) -> ResultPayload:
    """Inverse of :func:`encode_payload`; raises ``ValueError`` on a tag mismatch."""
    data = json.loads(raw)
    tag = FeatureType(data["featureType"])
    if tag is not feature_type:
        raise ValueError(f"payload tagged {tag.value}, expected {feature_type.value}")
    return PAYLOAD_TYPES[feature_type].from_dict(data["payload"])


# ── Cache ────────────────────────────────────────────────────────────

@dataclass
class CacheEntry:
    """A cached AI result plus the metadata needed for expiry and staleness."""

    key: str
    feature_type: FeatureType
    result: ResultPayload
    source_message_count: int
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_document(self) -> Dict[str, Any]:
        return {
            "featureType": self.feature_type.value,
            "result": encode_payload(self.feature_type, self.result),
            "sourceMessageCount": self.source_message_count,
            "createdAt": _iso(self.created_at),
            "expiresAt": _iso(self.expires_at),
            "schemaVersion": 1,
        }

    @classmethod
    def from_document(cls, key: str, doc: Dict[str, Any]) -> "CacheEntry":
        feature_type = FeatureType(doc["featureType"])
        return cls(
            key=key,
            feature_type=feature_type,
            result=decode_payload(feature_type, doc["result"]),
            source_message_count=int(doc.get("sourceMessageCount", 0)),
            created_at=parse_timestamp(doc["createdAt"]),
            expires_at=parse_timestamp(doc["expiresAt"]),
        )


@dataclass(frozen=True)
class StalenessVerdict:
    is_stale: bool
    messages_since_cache: int
    hours_since_cache: float


# ── Conversations (read-only inputs) ─────────────────────────────────

@dataclass
class NotificationPreferences:
    """User-owned notification settings; this layer only reads them."""

    enabled: bool = True
    pause_threshold_seconds: int = 120
    active_conversation_threshold: int = 20
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "08:00"
    timezone: str = "America/Los_Angeles"
    priority_keywords: List[str] = field(
        default_factory=lambda: ["urgent", "ASAP", "production down", "blocker", "emergency"]
    )
    max_analyses_per_hour: int = 10
    fallback_strategy: FallbackStrategy = FallbackStrategy.SIMPLE_RULES

    _FIELD_NAMES = {
        "enabled": "enabled",
        "pauseThresholdSeconds": "pause_threshold_seconds",
        "activeConversationThreshold": "active_conversation_threshold",
        "quietHoursStart": "quiet_hours_start",
        "quietHoursEnd": "quiet_hours_end",
        "timezone": "timezone",
        "priorityKeywords": "priority_keywords",
        "maxAnalysesPerHour": "max_analyses_per_hour",
        "fallbackStrategy": "fallback_strategy",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            wire: (getattr(self, attr).value if attr == "fallback_strategy" else getattr(self, attr))
            for wire, attr in self._FIELD_NAMES.items()
        }


@dataclass
class Message:
    message_id: str
    conversation_id: str
    sender_id: str
    text: str
    timestamp: datetime = field(default_factory=utc_now)
    sender_name: str = "Unknown"
    read_by: List[str] = field(default_factory=list)

    def is_unread_by(self, user_id: str) -> bool:
        """Unread for *user_id*: not read by them and not sent by them."""
        return user_id not in self.read_by and self.sender_id != user_id


@dataclass
class Conversation:
    conversation_id: str
    participant_ids: List[str]
    is_group: bool = False
    group_name: Optional[str] = None
    last_message_timestamp: Optional[datetime] = None
    muted_by: List[str] = field(default_factory=list)


@dataclass
class UserProfile:
    user_id: str
    display_name: str


@dataclass
class MessageEmbedding:
    """A materialised message vector, produced off the hot path."""

    message_id: str
    conversation_id: str
    vector: List[float]
    participant_ids: List[str] = field(default_factory=list)
    text: str = ""
    timestamp: datetime = field(default_factory=utc_now)


# ── Request-scoped context ───────────────────────────────────────────

@dataclass
class RecentMessage:
    message_id: str
    conversation_id: str
    text: str
    timestamp: datetime
    sender_id: str
    sender_name: str


@dataclass
class ConversationSummary:
    conversation_id: str
    participant_ids: List[str]
    is_group: bool
    last_message_timestamp: Optional[datetime]
    unread_count: int
    group_name: Optional[str] = None


@dataclass
class UserContext:
    """Bounded context assembled for a single model call; never persisted."""

    user_id: str
    recent_messages: List[RecentMessage] = field(default_factory=list)
    conversations: List[ConversationSummary] = field(default_factory=list)
    preferences: NotificationPreferences = field(default_factory=NotificationPreferences)
    semantic_context: List[SemanticSearchResult] = field(default_factory=list)


# ── Feedback loop ────────────────────────────────────────────────────

@dataclass
class DecisionLogEntry:
    """One produced notification decision, kept so the recipient can rate it."""

    user_id: str
    conversation_id: str
    message_id: str
    decision: NotificationDecision
    path: str
    unread_count: int
    timestamp: datetime = field(default_factory=utc_now)
    feedback: Optional[FeedbackRating] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "conversationId": self.conversation_id,
            "messageId": self.message_id,
            "decision": self.decision.to_dict(),
            "path": self.path,
            "unreadCount": self.unread_count,
            "timestamp": _iso(self.timestamp),
            "feedback": self.feedback.value if self.feedback else None,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "DecisionLogEntry":
        return cls(
            user_id=doc["userId"],
            conversation_id=doc["conversationId"],
            message_id=doc["messageId"],
            decision=NotificationDecision.from_dict(doc["decision"]),
            path=doc.get("path", ""),
            unread_count=int(doc.get("unreadCount", 0)),
            timestamp=parse_timestamp(doc["timestamp"]),
            feedback=FeedbackRating(doc["feedback"]) if doc.get("feedback") else None,
        )


@dataclass
class FeedbackRecord:
    user_id: str
    conversation_id: str
    message_id: str
    decision: NotificationDecision
    rating: FeedbackRating
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def feedback_id(self) -> str:
        return f"{self.user_id}_{self.conversation_id}_{self.message_id}"

    def to_document(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "conversationId": self.conversation_id,
            "messageId": self.message_id,
            "decision": self.decision.to_dict(),
            "feedback": self.rating.value,
            "timestamp": _iso(self.timestamp),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "FeedbackRecord":
        return cls(
            user_id=doc["userId"],
            conversation_id=doc["conversationId"],
            message_id=doc["messageId"],
            decision=NotificationDecision.from_dict(doc["decision"]),
            rating=FeedbackRating(doc["feedback"]),
            timestamp=parse_timestamp(doc["timestamp"]),
        )


@dataclass
class NotificationProfile:
    """What the feedback history says about a user's notification taste."""

    preferred_notification_rate: NotificationRate = NotificationRate.MEDIUM
    learned_keywords: List[str] = field(default_factory=list)
    suppressed_topics: List[str] = field(default_factory=list)
    accuracy: Optional[float] = None
    total_feedback: int = 0
    helpful_count: int = 0
    not_helpful_count: int = 0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preferredNotificationRate": self.preferred_notification_rate.value,
            "learnedKeywords": list(self.learned_keywords),
            "suppressedTopics": list(self.suppressed_topics),
            "accuracy": self.accuracy,
            "totalFeedback": self.total_feedback,
            "helpfulCount": self.helpful_count,
            "notHelpfulCount": self.not_helpful_count,
            "lastUpdated": _iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationProfile":
        accuracy = data.get("accuracy")
        return cls(
            preferred_notification_rate=NotificationRate(
                data.get("preferredNotificationRate") or NotificationRate.MEDIUM.value
            ),
            learned_keywords=[str(k) for k in data.get("learnedKeywords", [])],
            suppressed_topics=[str(t) for t in data.get("suppressedTopics", [])],
            accuracy=float(accuracy) if accuracy is not None else None,
            total_feedback=int(data.get("totalFeedback", 0)),
            helpful_count=int(data.get("helpfulCount", 0)),
            not_helpful_count=int(data.get("notHelpfulCount", 0)),
            last_updated=parse_timestamp(data.get("lastUpdated")),
        )


@dataclass
class ReasonCount:
    reason: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "count": self.count}


@dataclass
class NotificationAnalytics:
    total_notifications: int = 0
    helpful_count: int = 0
    not_helpful_count: int = 0
    accuracy: float = 0.0
    common_false_positives: List[ReasonCount] = field(default_factory=list)
    common_false_negatives: List[ReasonCount] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalNotifications": self.total_notifications,
            "helpfulCount": self.helpful_count,
            "notHelpfulCount": self.not_helpful_count,
            "accuracy": self.accuracy,
            "commonFalsePositives": [r.to_dict() for r in self.common_false_positives],
            "commonFalseNegatives": [r.to_dict() for r in self.common_false_negatives],
        }
