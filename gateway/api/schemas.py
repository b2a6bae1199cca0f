"""Pydantic schemas for API requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from gateway.services.cache.response import normalize
from gateway.services.preferences import DetailLevel, PreferenceOverrides, Preferences, Style


# ============================================================
# Assistant Schemas
# ============================================================

class PreferencesIn(BaseModel):
    """Explicit per-request preferences; omitted fields use stored values."""

    content_orientation: DetailLevel | None = None
    communication_style: Style | None = None
    nickname: str | None = Field(default=None, max_length=50)

    @field_validator("nickname")
    @classmethod
    def _blank_nickname_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    def to_overrides(self) -> PreferenceOverrides:
        return PreferenceOverrides(
            detail_level=self.content_orientation,
            style=self.communication_style,
            nickname=self.nickname,
        )


class AskRequest(BaseModel):
    """Schema for a question to a bot."""

    question: str = Field(..., min_length=1, max_length=4000)
    chatbot_id: str = Field(..., min_length=1, max_length=100)
    preferences: PreferencesIn | None = None

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question must not be blank")
        if not normalize(value):
            raise ValueError("question must contain words, not only punctuation")
        return value


class PreferencesOut(BaseModel):
    content_orientation: DetailLevel
    communication_style: Style
    nickname: str | None = None

    @classmethod
    def from_preferences(cls, prefs: Preferences) -> "PreferencesOut":
        return cls(
            content_orientation=prefs.detail_level,
            communication_style=prefs.style,
            nickname=prefs.nickname,
        )


class AskResponse(BaseModel):
    """Schema for an answered question."""

    answer: str
    tokens_used: int
    preferences_applied: PreferencesOut
    cached: bool = False


class BotsResponse(BaseModel):
    bots: list[str]


# ============================================================
# Admin Schemas
# ============================================================

class CacheStatsResponse(BaseModel):
    available: bool
    hits: int
    misses: int
    writes: int
    errors: int
    hit_rate: float
    entry_count: int | None = None
    bytes_written: int
    uptime_seconds: int
    ttl_config: dict[str, int]


class FlushResponse(BaseModel):
    success: bool = True
    prefix: str
    deleted_count: int


class SessionStatsResponse(BaseModel):
    size: int
    capacity: int
    freshness_seconds: int
    background: dict[str, int]


class BotDiagnostics(BaseModel):
    bot: str
    assistant_id: str
    reachable: bool
    display_name: str | None = None
    model: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    error: str | None = None


# ============================================================
# Common Response Schemas
# ============================================================

class SuccessResponse(BaseModel):
    """Schema for generic success response."""

    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    error: dict[str, Any] = Field(
        ...,
        json_schema_extra={
            "example": {"message": "Error description", "code": "QUOTA_EXCEEDED", "details": {}}
        },
    )


# ============================================================
# Health Check Schemas
# ============================================================

class ServiceHealth(BaseModel):
    """Schema for individual service health."""

    status: str = Field(..., pattern=r"^(healthy|unhealthy|degraded)$")
    latency_ms: float | None = None
    details: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    """Schema for health check response."""

    status: str = Field(..., pattern=r"^(healthy|unhealthy|degraded)$")
    timestamp: datetime
    version: str
    services: dict[str, ServiceHealth]
