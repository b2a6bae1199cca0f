"""Services module exports."""

from gateway.services.cache import CacheStore, ResponseCache, get_cache_store, get_response_cache
from gateway.services.gateway import AskResult, ConversationGateway, get_conversation_gateway
from gateway.services.preferences import (
    DetailLevel,
    PreferenceOverrides,
    PreferenceResolver,
    Preferences,
    Style,
)
from gateway.services.quota import AuthorizationContext, QuotaGuard
from gateway.services.rate_limit import RateLimitService, get_rate_limit_service
from gateway.services.session_cache import SessionCache
from gateway.services.upstream import (
    Completion,
    CompletionStatus,
    OpenAIAssistantsAdapter,
    UpstreamAdapter,
    get_upstream_adapter,
)
from gateway.services.usage import UsageRecorder

__all__ = [
    # Cache
    "CacheStore",
    "ResponseCache",
    "get_cache_store",
    "get_response_cache",
    # Gateway
    "AskResult",
    "ConversationGateway",
    "get_conversation_gateway",
    # Preferences
    "DetailLevel",
    "PreferenceOverrides",
    "PreferenceResolver",
    "Preferences",
    "Style",
    # Quota
    "AuthorizationContext",
    "QuotaGuard",
    # Rate Limiting
    "RateLimitService",
    "get_rate_limit_service",
    # Sessions
    "SessionCache",
    # Upstream
    "Completion",
    "CompletionStatus",
    "OpenAIAssistantsAdapter",
    "UpstreamAdapter",
    "get_upstream_adapter",
    # Usage
    "UsageRecorder",
]
