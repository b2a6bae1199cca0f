"""Answer preference resolution and per-call instruction building.

Style and nickname are global to a user; the detail level is stored per
(user, bot). Explicit values sent with a request override stored ones
field by field.
"""

from dataclasses import dataclass
from enum import Enum

from gateway.core.config import get_settings
from gateway.core.logging import get_logger
from gateway.db.store import PreferenceStore, StoredPreferences

logger = get_logger(__name__)


class DetailLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Style(str, Enum):
    CASUAL = "casual"
    PROFESSIONAL = "professional"
    TECHNICAL = "technical"


DEFAULT_LEVEL = DetailLevel.INTERMEDIATE
DEFAULT_STYLE = Style.PROFESSIONAL


@dataclass(frozen=True)
class PreferenceOverrides:
    """Explicit per-request values; ``None`` means not provided."""

    detail_level: DetailLevel | None = None
    style: Style | None = None
    nickname: str | None = None


@dataclass(frozen=True)
class Preferences:
    detail_level: DetailLevel = DEFAULT_LEVEL
    style: Style = DEFAULT_STYLE
    nickname: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {
            "content_orientation": self.detail_level.value,
            "communication_style": self.style.value,
            "nickname": self.nickname,
        }


BOT_PREAMBLES: dict[str, str] = {
    "EMEBI ET TVA UE": (
        "You are an expert in European customs regulation, specialised in "
        "intra-community VAT and EMEBI trade statistics declarations."
    ),
    "CODE DES DOUANES UE": "You are an expert in the Union Customs Code of the European Union.",
    "MACF": "You are a specialist of the EU Carbon Border Adjustment Mechanism (CBAM/MACF).",
    "SANCTIONS RUSSES": (
        "You are an expert in international sanctions, particularly the sanctions "
        "regimes targeting Russia."
    ),
    "USA": "You are an expert in United States customs and export regulation (CBP, ITAR, EAR).",
    "EUDR": "You are an expert in the European Union Deforestation Regulation (EUDR).",
}
DEFAULT_PREAMBLE = "You are an assistant specialised in customs and trade regulation."

LEVEL_CLAUSES: dict[DetailLevel, str] = {
    DetailLevel.BEGINNER: (
        "BEGINNER LEVEL: explain in very simple, accessible terms with everyday "
        "examples. Avoid jargon and structure the answer in short, clear points."
    ),
    DetailLevel.INTERMEDIATE: (
        "INTERMEDIATE LEVEL: balance simplicity and technical accuracy. Use "
        "professional vocabulary and explain it, with concrete examples and the "
        "essential regulatory references."
    ),
    DetailLevel.ADVANCED: (
        "ADVANCED LEVEL: be technical and thorough. Use expert vocabulary, cite "
        "precise regulatory references, articles and case law, and analyse edge cases."
    ),
}

STYLE_CLAUSES: dict[Style, str] = {
    Style.CASUAL: (
        "CASUAL STYLE: address the user informally with a friendly, relaxed tone."
    ),
    Style.PROFESSIONAL: (
        "PROFESSIONAL STYLE: address the user formally with a courteous, "
        "expert-advisor tone."
    ),
    Style.TECHNICAL: (
        "TECHNICAL STYLE: be precise and factual, without embellishment. "
        "Favour accuracy over friendliness."
    ),
}


def _coerce_level(value: str | None) -> DetailLevel | None:
    if value is None:
        return None
    try:
        return DetailLevel(value)
    except ValueError:
        logger.warning("Ignoring invalid stored detail level", value=value)
        return None


def _coerce_style(value: str | None) -> Style | None:
    if value is None:
        return None
    try:
        return Style(value)
    except ValueError:
        logger.warning("Ignoring invalid stored style", value=value)
        return None


class PreferenceResolver:
    """Merge explicit, stored and default preferences."""

    def __init__(self, store: PreferenceStore, answer_language: str | None = None):
        self._store = store
        self._answer_language = answer_language or get_settings().answer_language

    async def _stored_global(self, user_id: str) -> StoredPreferences:
        try:
            return await self._store.get_global_preferences(user_id) or StoredPreferences()
        except Exception as e:
            logger.warning("Preference lookup failed, using defaults", user_id=user_id, error=str(e))
            return StoredPreferences()

    async def _stored_level(self, user_id: str, bot_id: str) -> DetailLevel | None:
        try:
            level = await self._store.get_bot_level(user_id, bot_id)
            if level is None:
                await self._store.create_default_bot_level(user_id, bot_id, DEFAULT_LEVEL.value)
                return None
        except Exception as e:
            logger.warning(
                "Bot level lookup failed, using default",
                user_id=user_id,
                bot=bot_id,
                error=str(e),
            )
            return None
        return _coerce_level(level)

    async def resolve(
        self,
        user_id: str,
        bot_id: str,
        explicit: PreferenceOverrides | None = None,
    ) -> Preferences:
        explicit = explicit or PreferenceOverrides()

        style = explicit.style
        nickname = explicit.nickname
        if style is None or nickname is None:
            stored = await self._stored_global(user_id)
            style = style or _coerce_style(stored.communication_style)
            nickname = nickname or stored.nickname

        level = explicit.detail_level
        if level is None:
            level = await self._stored_level(user_id, bot_id)

        return Preferences(
            detail_level=level or DEFAULT_LEVEL,
            style=style or DEFAULT_STYLE,
            nickname=nickname or None,
        )

    def build_instructions(
        self,
        bot_id: str,
        detail_level: DetailLevel,
        style: Style,
        nickname: str | None = None,
    ) -> str:
        parts = [
            BOT_PREAMBLES.get(bot_id, DEFAULT_PREAMBLE),
            LEVEL_CLAUSES[detail_level],
            STYLE_CLAUSES[style],
        ]
        if nickname:
            parts.append(
                f"The user's name is {nickname}. Use it in your answers when appropriate."
            )
        parts.append(
            f"Always answer in {self._answer_language}. If you do not know the answer, "
            "say so clearly and suggest where to look."
        )
        return " ".join(parts)
