"""Error taxonomy for the intelligence layer.

Cache and context errors are recovered where they occur; quota and model
errors are recovered by the decision engine through the fallback strategy
and only surface to callers of the on-demand AI features.
"""

from __future__ import annotations

from enum import Enum


class IntelligenceError(Exception):
    """Base class for all errors raised by this package."""


class StoreUnavailable(IntelligenceError):
    """The backing document store failed or timed out."""


class CacheUnavailable(StoreUnavailable):
    """Result cache I/O failed; callers treat it as a miss."""


class RateLimiterUnavailable(StoreUnavailable):
    """Counter store failed; the limiter fails closed."""


class RateLimitExceeded(IntelligenceError):
    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Daily AI request limit exceeded ({limit} requests per day). "
            "Your limit will reset tomorrow."
        )
        self.limit = limit


class ModelFailureCause(str, Enum):
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"
    PROVIDER_ERROR = "provider_error"


class ModelInvocationFailed(IntelligenceError):
    def __init__(self, cause: ModelFailureCause, detail: str = "") -> None:
        super().__init__(f"model invocation failed ({cause.value}){': ' + detail if detail else ''}")
        self.cause = cause
        self.detail = detail


class ContextUnavailable(IntelligenceError):
    """Embedding store unavailable; semantic context degrades to empty."""


class NotFound(IntelligenceError):
    pass


class PermissionDenied(IntelligenceError):
    pass
