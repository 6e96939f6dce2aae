import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from dotenv import load_dotenv

# --- Configuration & Initialization ---
# Load .env before the intelligence config module reads the environment.
load_dotenv()

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator

from intelligence import config as cfg
from intelligence.adapter.azure_search_adapter import (
    AzureSearchEmbeddingStore,
    EmbeddingStore,
    InMemoryEmbeddingStore,
)
from intelligence.adapter.conversation_source import InMemoryConversationSource
from intelligence.adapter.document_store import DocumentStore, InMemoryDocumentStore
from intelligence.adapter.redis_store import RedisDocumentStore
from intelligence.cache.result_cache import ResultCache
from intelligence.decision.engine import DecisionEngine
from intelligence.errors import (
    ContextUnavailable,
    IntelligenceError,
    ModelInvocationFailed,
    NotFound,
    PermissionDenied,
    RateLimitExceeded,
    StoreUnavailable,
)
from intelligence.feedback.notification_feedback import NotificationFeedback
from intelligence.features.ai_features import AIFeatures
from intelligence.gating.rate_limiter import RateLimiter
from intelligence.ingestion.message_indexer import index_message
from intelligence.llm.provider import ModelProvider, OpenAIModelProvider
from intelligence.models import (
    Conversation,
    FallbackStrategy,
    FeatureType,
    FeedbackRating,
    Message,
    NotificationDecision,
    NotificationPreferences,
    Priority,
    UserProfile,
    parse_timestamp,
    utc_now,
)
from intelligence.observability.tracing import get_metrics, init_otel
from intelligence.retrieval.context_retriever import ContextRetriever

logging.basicConfig(
    level=getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("messageai_server")


# --- Service Composition ---

@dataclass
class Services:
    source: InMemoryConversationSource
    store: DocumentStore
    embeddings: EmbeddingStore
    provider: ModelProvider
    rate_limiter: RateLimiter
    engine: DecisionEngine
    features: AIFeatures
    feedback: NotificationFeedback


def build_services(
    *,
    store: Optional[DocumentStore] = None,
    embeddings: Optional[EmbeddingStore] = None,
    provider: Optional[ModelProvider] = None,
    source: Optional[InMemoryConversationSource] = None,
) -> Services:
    """Wire every component around one document store and one model provider."""
    if store is None:
        store = RedisDocumentStore() if cfg.REDIS_URL else InMemoryDocumentStore()
    if embeddings is None:
        embeddings = (
            AzureSearchEmbeddingStore()
            if AzureSearchEmbeddingStore.is_configured()
            else InMemoryEmbeddingStore()
        )
    provider = provider or OpenAIModelProvider()
    source = source or InMemoryConversationSource()

    cache = ResultCache(store)
    rate_limiter = RateLimiter(store)
    feedback = NotificationFeedback(store, source)
    engine = DecisionEngine(
        source,
        cache,
        rate_limiter,
        ContextRetriever(source, embeddings),
        provider,
        feedback=feedback,
    )
    features = AIFeatures(source, cache, rate_limiter, provider, embeddings)
    return Services(source, store, embeddings, provider, rate_limiter, engine, features, feedback)


print("Initializing intelligence services...")
services = build_services()
print(f"  ✓ Document store: {type(services.store).__name__}")
print(f"  ✓ Embedding store: {type(services.embeddings).__name__}")
if not OpenAIModelProvider.is_configured():
    print("  ⚠ Model provider not configured; model path will use fallback strategies")
print("Server initialized and ready")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup/shutdown lifecycle."""
    init_otel()
    yield
    # Shutdown: close pooled clients
    for component in (services.store, services.embeddings, services.provider):
        close = getattr(component, "close", None)
        if close is not None:
            try:
                await close()
            except Exception:
                logger.exception("Error closing %s", type(component).__name__)


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Data Models ---

class ConversationRequest(BaseModel):
    conversation_id: str
    participant_ids: List[str]
    is_group: bool = False
    group_name: Optional[str] = None
    muted_by: List[str] = Field(default_factory=list)


class MessageRequest(BaseModel):
    conversation_id: str
    sender_id: str
    text: str
    message_id: Optional[str] = None
    sender_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    read_by: List[str] = Field(default_factory=list)


class UserRequest(BaseModel):
    display_name: str


HH_MM = r"^([01][0-9]|2[0-3]):[0-5][0-9]$"


class PreferencesRequest(BaseModel):
    """Notification preferences; omitted or null fields take the defaults."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: Optional[StrictBool] = None
    pause_threshold_seconds: Optional[int] = Field(default=None, ge=0, alias="pauseThresholdSeconds")
    active_conversation_threshold: Optional[int] = Field(
        default=None, ge=0, alias="activeConversationThreshold"
    )
    quiet_hours_start: Optional[str] = Field(default=None, pattern=HH_MM, alias="quietHoursStart")
    quiet_hours_end: Optional[str] = Field(default=None, pattern=HH_MM, alias="quietHoursEnd")
    timezone: Optional[str] = None
    priority_keywords: Optional[List[str]] = Field(default=None, alias="priorityKeywords")
    max_analyses_per_hour: Optional[int] = Field(default=None, ge=0, alias="maxAnalysesPerHour")
    fallback_strategy: Optional[FallbackStrategy] = Field(default=None, alias="fallbackStrategy")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {value}") from exc
        return value

    @field_validator("priority_keywords")
    @classmethod
    def _non_blank_keywords(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        keywords = [k.strip() for k in value]
        if not all(keywords):
            raise ValueError("priority keywords must not be blank")
        return keywords

    def to_preferences(self) -> NotificationPreferences:
        return NotificationPreferences(**self.model_dump(exclude_none=True))


class AnalyzeRequest(BaseModel):
    conversation_id: str
    user_id: str


class DecisionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    should_notify: StrictBool = Field(alias="shouldNotify")
    reason: str = ""
    notification_text: str = Field(default="", alias="notificationText")
    priority: Priority = Priority.LOW

    def to_decision(self) -> NotificationDecision:
        return NotificationDecision(
            should_notify=self.should_notify,
            reason=self.reason,
            notification_text=self.notification_text,
            priority=self.priority,
        )


class FeedbackRequest(BaseModel):
    conversation_id: str
    user_id: str
    message_id: str
    feedback: FeedbackRating
    # Defaults to the logged decision for the message.
    decision: Optional[DecisionPayload] = None


class ProfileRefreshRequest(BaseModel):
    # Omitted: relearn every user with recent feedback.
    user_id: Optional[str] = None


class ConversationFeatureRequest(BaseModel):
    conversation_id: str
    user_id: str


class SearchRequest(BaseModel):
    user_id: str
    query: str
    limit: Optional[int] = Field(default=None, ge=1, le=50)


# --- Helper Functions ---

def _http_error(exc: Exception) -> HTTPException:
    """Map the intelligence error taxonomy onto HTTP status codes."""
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionDenied):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, RateLimitExceeded):
        return HTTPException(status_code=429, detail=str(exc))
    if isinstance(exc, ModelInvocationFailed):
        return HTTPException(status_code=502, detail=f"AI service error ({exc.cause.value})")
    if isinstance(exc, (StoreUnavailable, ContextUnavailable)):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal error")


async def _embed_on_create(message: Message, participant_ids: List[str]) -> None:
    """COLD path: embed the new message off the request path."""
    if isinstance(services.provider, OpenAIModelProvider) and not OpenAIModelProvider.is_configured():
        logger.debug("Model provider not configured; skipping embed-on-create")
        return
    try:
        await index_message(message, participant_ids, services.provider, services.embeddings)
    except Exception:
        # Never fail the request due to an embedding write.
        logger.exception("Embed-on-create failed for %s", message.message_id)


# --- Health Checks ---

async def check_store_health() -> bool:
    try:
        await services.store.get("health")
        return True
    except StoreUnavailable:
        return False


async def check_search_health() -> bool:
    if not AzureSearchEmbeddingStore.is_configured():
        return False
    url = f"{cfg.AZURE_SEARCH_ENDPOINT.rstrip('/')}/indexes/{cfg.EMBEDDING_INDEX_NAME}"
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(
                url,
                params={"api-version": "2023-11-01"},
                headers={"api-key": cfg.AZURE_SEARCH_API_KEY},
            )
            return response.status_code == 200
    except httpx.HTTPError:
        return False


@app.get("/")
async def read_root():
    return {
        "Hello": "MessageAI Intelligence",
        "Store Healthy": await check_store_health(),
        "Search Healthy": await check_search_health(),
        "Model Configured": OpenAIModelProvider.is_configured(),
    }


# --- Endpoints: Conversation data ---

@app.post("/conversations")
async def create_conversation(request: ConversationRequest):
    conversation = Conversation(
        conversation_id=request.conversation_id,
        participant_ids=request.participant_ids,
        is_group=request.is_group,
        group_name=request.group_name,
        muted_by=request.muted_by,
    )
    services.source.add_conversation(conversation)
    return {"conversationId": conversation.conversation_id}


@app.post("/messages")
async def create_message(request: MessageRequest, background_tasks: BackgroundTasks):
    conversation = await services.source.get_conversation(request.conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail=f"Conversation {request.conversation_id} not found")

    sender_name = request.sender_name
    if not sender_name:
        sender = await services.source.get_user(request.sender_id)
        sender_name = sender.display_name if sender else "Unknown"

    message = Message(
        message_id=request.message_id or uuid4().hex,
        conversation_id=request.conversation_id,
        sender_id=request.sender_id,
        text=request.text,
        timestamp=parse_timestamp(request.timestamp) or utc_now(),
        sender_name=sender_name,
        read_by=request.read_by,
    )
    services.source.add_message(message)

    if cfg.EMBED_ON_CREATE_ENABLED:
        background_tasks.add_task(_embed_on_create, message, list(conversation.participant_ids))

    return {"messageId": message.message_id}


@app.put("/users/{user_id}")
async def put_user(user_id: str, request: UserRequest):
    services.source.add_user(UserProfile(user_id=user_id, display_name=request.display_name))
    return {"userId": user_id}


@app.put("/users/{user_id}/preferences")
async def put_preferences(user_id: str, request: PreferencesRequest):
    parsed = request.to_preferences()
    services.source.set_preferences(user_id, parsed)
    return parsed.to_dict()


# --- Endpoints: Notifications ---

@app.post("/notifications/analyze")
async def analyze_for_notification(request: AnalyzeRequest):
    try:
        decision = await services.engine.analyze_for_notification(
            request.conversation_id, request.user_id
        )
    except IntelligenceError as exc:
        raise _http_error(exc) from exc
    return decision.to_dict()


@app.get("/quota/{user_id}/{feature_type}")
async def get_remaining_quota(user_id: str, feature_type: str):
    try:
        feature = FeatureType(feature_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown feature type {feature_type}") from exc
    remaining = await services.engine.get_remaining_quota(user_id, feature)
    return {"userId": user_id, "featureType": feature.value, "remaining": remaining}


# --- Endpoints: Feedback loop ---

@app.post("/notifications/feedback")
async def submit_notification_feedback(request: FeedbackRequest):
    try:
        record = await services.feedback.submit_feedback(
            request.user_id,
            request.conversation_id,
            request.message_id,
            request.feedback,
            request.decision.to_decision() if request.decision else None,
        )
    except IntelligenceError as exc:
        raise _http_error(exc) from exc
    return {"success": True, "feedbackId": record.feedback_id}


@app.post("/notifications/profiles/refresh")
async def refresh_notification_profiles(request: ProfileRefreshRequest):
    try:
        if request.user_id is None:
            return await services.feedback.update_all_profiles()
        profile = await services.feedback.update_profile(request.user_id)
    except IntelligenceError as exc:
        raise _http_error(exc) from exc
    return {"usersUpdated": 1 if profile else 0, "totalUsers": 1}


@app.get("/users/{user_id}/notification-profile")
async def get_notification_profile(user_id: str):
    profile = await services.feedback.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"No notification profile for {user_id}")
    return profile.to_dict()


@app.get("/notifications/analytics/{user_id}")
async def notification_analytics(user_id: str):
    try:
        analytics = await services.feedback.generate_analytics(user_id)
    except IntelligenceError as exc:
        raise _http_error(exc) from exc
    return analytics.to_dict()


# --- Endpoints: AI features ---

@app.post("/ai/summary")
async def summarize_thread(request: ConversationFeatureRequest):
    try:
        outcome = await services.features.summarize_thread(request.conversation_id, request.user_id)
    except IntelligenceError as exc:
        raise _http_error(exc) from exc
    return {**outcome.result.to_dict(), "cached": outcome.cached}


@app.post("/ai/action-items")
async def extract_action_items(request: ConversationFeatureRequest):
    try:
        outcome = await services.features.extract_action_items(
            request.conversation_id, request.user_id
        )
    except IntelligenceError as exc:
        raise _http_error(exc) from exc
    return {**outcome.result.to_dict(), "cached": outcome.cached}


@app.post("/ai/search")
async def smart_search(request: SearchRequest):
    try:
        outcome = await services.features.smart_search(request.user_id, request.query, request.limit)
    except (IntelligenceError, ValueError) as exc:
        raise _http_error(exc) from exc
    return {**outcome.result.to_dict(), "cached": outcome.cached}


# --- Endpoints: Observability ---

@app.get("/metrics")
async def metrics():
    return get_metrics()
