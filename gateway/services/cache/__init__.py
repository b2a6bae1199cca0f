"""Redis-backed caching over Upstash.

- ``CacheStore``: strict key-value primitives that raise ``CacheError``
- ``ResponseCache``: answer cache with question classification and
  per-class TTLs, degrading to a miss on any store failure
"""

from gateway.services.cache.constants import (
    CLASS_GENERIC,
    CLASS_PERSONALIZED,
    CLASS_REGULATORY,
    CLASS_TECHNICAL,
    KEY_PREFIX_RATE,
    KEY_PREFIX_RESPONSE,
)
from gateway.services.cache.response import (
    ResponseCache,
    build_key,
    classify,
    fingerprint,
    get_response_cache,
    normalize,
)
from gateway.services.cache.store import CacheStore, get_cache_store

__all__ = [
    # Constants
    "CLASS_GENERIC",
    "CLASS_PERSONALIZED",
    "CLASS_REGULATORY",
    "CLASS_TECHNICAL",
    "KEY_PREFIX_RATE",
    "KEY_PREFIX_RESPONSE",
    # Store
    "CacheStore",
    "get_cache_store",
    # Response cache
    "ResponseCache",
    "build_key",
    "classify",
    "fingerprint",
    "get_response_cache",
    "normalize",
]
