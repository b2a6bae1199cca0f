"""Answer cache keyed by bot, question class, preferences and question text.

Questions are classified with static keyword tables to pick a TTL and to
decide whether an answer may be shared across users (generic class) or
must stay specific to the asker's style and detail level.
"""

import hashlib
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import orjson

from gateway.core.config import get_settings
from gateway.core.exceptions import CacheError
from gateway.core.logging import get_logger
from gateway.services.cache.constants import (
    CLASS_GENERIC,
    CLASS_PERSONALIZED,
    CLASS_REGULATORY,
    CLASS_TECHNICAL,
    FINGERPRINT_LENGTH,
    KEY_PREFIX_RESPONSE,
    QUESTION_CLASSES,
)
from gateway.services.cache.store import CacheStore, get_cache_store

logger = get_logger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(question: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = _PUNCTUATION.sub("", question.lower())
    return _WHITESPACE.sub(" ", text).strip()


def fingerprint(question: str) -> str:
    """Stable fixed-length hash of the normalized question."""
    digest = hashlib.sha256(normalize(question).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def _compile(*phrases: str) -> re.Pattern[str]:
    # Phrases go through normalize() so "qu'est-ce que" matches "questce que"
    alternatives = "|".join(
        phrase if phrase.startswith("(?:") else re.escape(normalize(phrase))
        for phrase in phrases
    )
    return re.compile(rf"\b(?:{alternatives})\b")


_CLASS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        CLASS_GENERIC,
        _compile(
            "what is",
            "what are",
            "definition",
            "define",
            "explain",
            "difference between",
            "introduction to",
            "list of",
            "types of",
            "meaning of",
            r"(?:how (?:does|do) (?:\w+ ){1,6}work)",
            "qu'est-ce que",
            "définition",
            "c'est quoi",
            "expliquer",
            "principe de",
            "règles de",
            "comment fonctionne",
            "bases de",
            "introduction",
            "liste des",
            "types de",
            "différence entre",
        ),
    ),
    (
        CLASS_TECHNICAL,
        _compile(
            "api",
            "code",
            "procedure",
            "step by step",
            "steps",
            "how to",
            "procédure",
            "comment faire",
            "étapes",
        ),
    ),
    (
        CLASS_REGULATORY,
        _compile(
            "regulation",
            "obligation",
            "obligations",
            "compliance",
            "sanction",
            "sanctions",
            "article",
            "directive",
            "law",
            "règlement",
            "conformité",
            "loi",
        ),
    ),
)


def classify(question: str) -> str:
    """Question class: generic, technical, regulatory or personalized."""
    text = normalize(question)
    for name, pattern in _CLASS_PATTERNS:
        if pattern.search(text):
            return name
    return CLASS_PERSONALIZED


def build_key(bot_id: str, question: str, style: str, detail_level: str) -> str:
    """Cache key; generic questions omit the style/level segment."""
    question_class = classify(question)
    fp = fingerprint(question)
    if question_class == CLASS_GENERIC:
        return f"{KEY_PREFIX_RESPONSE}:{bot_id}:{question_class}:{fp}"
    return f"{KEY_PREFIX_RESPONSE}:{bot_id}:{question_class}:{style}-{detail_level}:{fp}"


def class_from_key(key: str) -> str:
    # Bot names may not contain ":"; the class is always the third segment
    parts = key.split(":")
    if len(parts) >= 4 and parts[2] in QUESTION_CLASSES:
        return parts[2]
    return CLASS_PERSONALIZED


@dataclass
class CacheCounters:
    hits: int = 0
    misses: int = 0
    writes: int = 0
    errors: int = 0
    bytes_written: int = 0


class ResponseCache:
    """Optional answer cache; every store failure degrades to a miss."""

    def __init__(
        self,
        store: CacheStore | None = None,
        ttls: dict[str, int] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store or get_cache_store()
        self._ttls = dict(ttls or get_settings().response_ttls)
        self._clock = clock
        self._counters = CacheCounters()
        self._started_at = clock()

    @property
    def counters(self) -> CacheCounters:
        return self._counters

    def ttl_for(self, key: str) -> int:
        return self._ttls[class_from_key(key)]

    async def get(self, key: str) -> str | None:
        try:
            raw = await self._store.get(key)
        except CacheError as e:
            self._counters.errors += 1
            logger.debug("Response cache read failed", key=key, error=str(e))
            return None

        if raw is None:
            self._counters.misses += 1
            return None

        try:
            answer = orjson.loads(raw)["answer"]
        except (orjson.JSONDecodeError, KeyError, TypeError) as e:
            self._counters.errors += 1
            logger.warning("Response cache entry unreadable", key=key, error=str(e))
            return None

        self._counters.hits += 1
        logger.debug("Response cache hit", key=key)
        return answer

    async def set(self, key: str, answer: str, ttl_override: int | None = None) -> None:
        ttl = ttl_override or self.ttl_for(key)
        payload = orjson.dumps({"answer": answer, "written_at": self._clock()}).decode()
        try:
            await self._store.setex(key, ttl, payload)
        except CacheError as e:
            self._counters.errors += 1
            logger.debug("Response cache write failed", key=key, error=str(e))
            return

        self._counters.writes += 1
        self._counters.bytes_written += len(payload)
        logger.debug("Response cached", key=key, ttl=ttl)

    # ========== Administration ==========

    async def stats(self) -> dict[str, Any]:
        counters = self._counters
        lookups = counters.hits + counters.misses
        try:
            entry_count: int | None = len(await self._store.keys(f"{KEY_PREFIX_RESPONSE}:*"))
        except CacheError as e:
            counters.errors += 1
            logger.debug("Response cache key count failed", error=str(e))
            entry_count = None

        return {
            "available": entry_count is not None,
            "hits": counters.hits,
            "misses": counters.misses,
            "writes": counters.writes,
            "errors": counters.errors,
            "hit_rate": round(counters.hits / lookups, 4) if lookups else 0.0,
            "entry_count": entry_count,
            "bytes_written": counters.bytes_written,
            "uptime_seconds": int(self._clock() - self._started_at),
            "ttl_config": dict(self._ttls),
        }

    async def flush(self, prefix: str = f"{KEY_PREFIX_RESPONSE}:") -> int:
        """Delete every entry whose key starts with ``prefix``."""
        if not prefix.startswith(f"{KEY_PREFIX_RESPONSE}:"):
            raise ValueError(f"prefix must start with '{KEY_PREFIX_RESPONSE}:'")
        try:
            keys = await self._store.keys(f"{prefix}*")
            deleted = await self._store.delete(*keys)
        except CacheError as e:
            self._counters.errors += 1
            logger.warning("Response cache flush failed", prefix=prefix, error=str(e))
            return 0
        logger.info("Response cache flushed", prefix=prefix, deleted=deleted)
        return deleted

    def reset_stats(self) -> None:
        self._counters = CacheCounters()
        self._started_at = self._clock()
        logger.info("Response cache stats reset")


_response_cache: ResponseCache | None = None


def get_response_cache() -> ResponseCache:
    """Get or create the global response cache."""
    global _response_cache
    if _response_cache is None:
        _response_cache = ResponseCache()
    return _response_cache
