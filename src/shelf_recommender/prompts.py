"""Prompt & parser helpers for the language-model recommender.

Everything about how we talk to the LLM lives here so the recommender and the
tests can import one interface:

* ``build_prompt`` renders the system and user messages from the detected
  books, the reading profile and the caller's preferences.
* ``parse_llm_response`` turns the raw completion text into a tagged result,
  ``LLMResponseOk`` or ``LLMResponseMalformed``. It never raises; the caller
  decides what a malformed reply means (we fall back to the rule tables).

The model is asked for strict JSON, but replies wrapped in markdown fences
are accepted too.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from langchain_core.prompts import (
    ChatPromptTemplate,
    HumanMessagePromptTemplate,
    SystemMessagePromptTemplate,
)
from langchain_core.utils.json import parse_json_markdown
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import PipelineConfig
from .models import DetectedBook, ReadingProfile, Recommendation, UserPreferences

__all__ = [
    "LLMRecommendationItem",
    "LLMResponseOk",
    "LLMResponseMalformed",
    "ParsedLLMResponse",
    "build_prompt",
    "parse_llm_response",
]


# ---------------------------------------------------------------------------
# Output schema (Pydantic) ---------------------------------------------------
# ---------------------------------------------------------------------------
def _scalar_text(v: Any) -> Any:
    """Numbers become strings (``"title": 1984``); anything else is left to validation."""
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class LLMRecommendationItem(BaseModel):
    """One entry of the model's ``recommendations`` array, leniently typed."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = ""
    author: Optional[str] = None
    genre: Optional[str] = None
    reason: str = ""
    confidence: Optional[float] = None
    themes: List[str] = Field(default_factory=list)
    similar_to: Optional[str] = None
    publication_year: Optional[int] = None
    difficulty_level: Optional[str] = None

    @field_validator("title", "reason", mode="before")
    @classmethod
    def _none_to_blank(cls, v: Any) -> Any:
        return "" if v is None else _scalar_text(v)

    @field_validator("author", "genre", "similar_to", "difficulty_level", mode="before")
    @classmethod
    def _loose_text(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _loose_confidence(cls, v: Any) -> Any:
        try:
            return None if v is None else float(v)
        except (TypeError, ValueError):
            return None

    @field_validator("publication_year", mode="before")
    @classmethod
    def _loose_year(cls, v: Any) -> Any:
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, float):
            return int(v) if v.is_integer() else None
        try:
            return int(str(v).strip())
        except ValueError:
            return None

    @field_validator("themes", mode="before")
    @classmethod
    def _loose_themes(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [str(t).strip() for t in v if isinstance(t, (str, int)) and str(t).strip()]


class LLMResponseOk(BaseModel):
    recommendations: List[Recommendation]
    reasoning: Dict[str, Any] = Field(default_factory=dict)


class LLMResponseMalformed(BaseModel):
    raw_text: str
    reason: str


ParsedLLMResponse = Union[LLMResponseOk, LLMResponseMalformed]


# ---------------------------------------------------------------------------
# Prompt templates -----------------------------------------------------------
# ---------------------------------------------------------------------------

_SYSTEM_TMPL = """
You are an expert book curator and recommendation specialist with deep knowledge of literature across all genres.
Provide thoughtful, personalized book recommendations based on the user's reading history.

Requirements:
* Return *JSON only*, one object, no commentary.
* Never recommend a book the user already owns.
* Give a clear, specific reason for each recommendation.
"""

_OUTPUT_SCHEMA = {
    "recommendations": [
        {
            "title": "Book Title",
            "author": "Author Name",
            "genre": "Primary Genre",
            "reason": "Why this book fits the user's reading profile",
            "confidence": 0.9,
            "themes": ["theme1", "theme2"],
            "similar_to": "Book from their collection this is similar to",
            "publication_year": 2023,
            "difficulty_level": "intermediate",
        }
    ],
    "reasoning": {
        "profile_analysis": "Brief analysis of the user's reading preferences",
        "recommendation_strategy": "The strategy used for these recommendations",
    },
}

_USER_TMPL = """
Based on this user's bookshelf containing {total_books} books, please provide {count} personalized book recommendations.

USER'S BOOKS: {book_list}

READING PROFILE:
{profile_text}

USER PREFERENCES:
{preferences_text}

Please respond with a JSON object shaped like:
{schema}

Focus on:
1. Books that complement their existing collection without being too repetitive
2. A mix of popular and lesser-known titles
3. The diversity of their current collection
4. Books from their preferred genres plus 1-2 suggestions for expanding their horizons
"""

_PROMPT = ChatPromptTemplate.from_messages(
    [
        SystemMessagePromptTemplate.from_template(_SYSTEM_TMPL),
        HumanMessagePromptTemplate.from_template(_USER_TMPL),
    ]
)


def _format_book(book: DetectedBook) -> str:
    text = f'"{book.title}"'
    if book.author:
        text += f" by {book.author}"
    if book.genre:
        text += f" ({book.genre})"
    return text


def _profile_text(profile: ReadingProfile) -> str:
    top = ", ".join(f"{g.genre} ({g.percentage}%)" for g in profile.top_genres)
    return "\n".join(
        [
            f"- Top genres: {top or 'unknown'}",
            f"- Reading style: {profile.reading_style}",
            f"- Diversity score: {profile.diversity * 100:.1f}%",
            f"- Average detection confidence: {profile.average_confidence * 100:.1f}%",
        ]
    )


def _preferences_text(preferences: UserPreferences) -> str:
    lines: List[str] = []
    if preferences.favorite_genres:
        lines.append(f"- Favorite genres: {', '.join(preferences.favorite_genres)}")
    else:
        lines.append("- No specific genre preferences stated")
    if preferences.avoid_genres:
        lines.append(f"- Genres to avoid: {', '.join(preferences.avoid_genres)}")
    if preferences.preferred_authors:
        lines.append(f"- Preferred authors: {', '.join(preferences.preferred_authors)}")
    if preferences.avoid_authors:
        lines.append(f"- Authors to avoid: {', '.join(preferences.avoid_authors)}")

    thresholds = preferences.rating_thresholds
    if thresholds.minimum_rating is not None:
        lines.append(f"- Minimum rating: {thresholds.minimum_rating}/5")
    if thresholds.minimum_review_count is not None:
        lines.append(f"- Minimum review count: {thresholds.minimum_review_count:,}")
    if preferences.content_preferences:
        lines.append(
            f"- Content preferences: {json.dumps(preferences.content_preferences, sort_keys=True)}"
        )

    discovery = preferences.discovery_settings
    wanted = [
        label
        for flag, label in (
            (discovery.include_new_releases, "new releases"),
            (discovery.include_classics, "classics"),
            (discovery.experiment_with_genres, "genres outside their usual taste"),
        )
        if flag
    ]
    if wanted:
        lines.append(f"- Open to: {', '.join(wanted)}")
    return "\n".join(lines)


def build_prompt(
    books: Sequence[DetectedBook],
    profile: ReadingProfile,
    preferences: UserPreferences,
    count: int,
    config: PipelineConfig | None = None,
) -> Tuple[str, str]:
    """Return ``(system_prompt, user_prompt)`` for one recommendation call.

    Only the ``MAX_PROMPT_BOOKS`` most confidently detected books are listed;
    ties keep shelf order.
    """
    cfg = config or PipelineConfig()
    ranked = sorted(books, key=lambda b: b.confidence, reverse=True)[: cfg.MAX_PROMPT_BOOKS]

    messages = _PROMPT.format_messages(
        total_books=len(books),
        count=count,
        book_list=", ".join(_format_book(b) for b in ranked) or "none detected",
        profile_text=_profile_text(profile),
        preferences_text=_preferences_text(preferences),
        schema=json.dumps(_OUTPUT_SCHEMA, indent=2),
    )
    system, user = messages
    return system.content.strip(), user.content.strip()


# ---------------------------------------------------------------------------
# Parsing ----------------------------------------------------------------------
# ---------------------------------------------------------------------------


def _clamp(value: Optional[float], cfg: PipelineConfig) -> float:
    if value is None:
        return cfg.LLM_DEFAULT_CONFIDENCE
    return max(cfg.LLM_MIN_CONFIDENCE, min(cfg.LLM_MAX_CONFIDENCE, value))


def parse_llm_response(
    text: str, config: PipelineConfig | None = None
) -> ParsedLLMResponse:
    """Parse a raw completion into recommendations; never raises."""
    cfg = config or PipelineConfig()
    raw = text or ""
    if not raw.strip():
        return LLMResponseMalformed(raw_text=raw, reason="empty response")

    try:
        payload = parse_json_markdown(raw)
    except ValueError as e:
        return LLMResponseMalformed(raw_text=raw, reason=f"invalid JSON: {e}")

    if not isinstance(payload, dict):
        return LLMResponseMalformed(raw_text=raw, reason="top-level value is not an object")
    items = payload.get("recommendations")
    if not isinstance(items, list):
        return LLMResponseMalformed(raw_text=raw, reason="missing recommendations array")

    recommendations: List[Recommendation] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            entry = LLMRecommendationItem.model_validate(item)
        except ValidationError:
            continue
        if not entry.title:
            continue
        recommendations.append(
            Recommendation(
                title=entry.title,
                author=entry.author or None,
                genre=entry.genre or None,
                reason=entry.reason,
                confidence=_clamp(entry.confidence, cfg),
                themes=entry.themes,
                similar_to=entry.similar_to or None,
                publication_year=entry.publication_year,
                difficulty_level=entry.difficulty_level or None,
                source="ai-generated",
            )
        )

    if not recommendations:
        return LLMResponseMalformed(raw_text=raw, reason="no usable recommendations")

    reasoning = payload.get("reasoning")
    return LLMResponseOk(
        recommendations=recommendations,
        reasoning=reasoning if isinstance(reasoning, dict) else {},
    )
