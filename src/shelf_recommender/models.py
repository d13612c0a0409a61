"""Typed records flowing through the recommendation pipeline.

Python attributes are snake_case; ``model_dump(by_alias=True)`` produces the
camelCase names the HTTP layer hands to clients. Every model is frozen: stages
derive new records with ``model_copy(update=...)`` instead of mutating.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "DetectedBook",
    "RatingThresholds",
    "DiscoverySettings",
    "UserPreferences",
    "RecommendationOptions",
    "GenreCount",
    "AuthorCount",
    "ReadingProfile",
    "ExternalRatingData",
    "BookMetadata",
    "Recommendation",
    "Explanations",
    "ResponseMetadata",
    "RecommendationResult",
    "CatalogBook",
    "RecommendationSource",
    "CombinationSource",
    "ReadingStyle",
]

RecommendationSource = Literal[
    "ai-generated", "goodreads-popular", "rule-based-genre", "rule-based-discovery"
]
CombinationSource = Literal["ai-primary", "goodreads-diversity", "mixed-fill"]
ReadingStyle = Literal[
    "eclectic", "series-focused", "author-loyal", "genre-focused", "unknown"
]
ContentLevel = Literal["avoid", "limit", "any"]


class _Record(BaseModel):
    """Shared config: camelCase aliases, frozen, whitespace stripped."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )


def _unique(values: List[str]) -> List[str]:
    seen: set[str] = set()
    out: List[str] = []
    for v in values:
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return out


# --------------------------------------------------------------------
# Inputs
# --------------------------------------------------------------------


class DetectedBook(_Record):
    """One book recognised on the reader's shelf by the vision collaborator."""

    title: str
    author: Optional[str] = None
    genre: Optional[str] = None
    series: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class RatingThresholds(_Record):
    minimum_rating: Optional[float] = Field(None, ge=0.0, le=5.0)
    minimum_review_count: Optional[int] = Field(None, ge=0)


class DiscoverySettings(_Record):
    include_new_releases: bool = False
    include_classics: bool = False
    experiment_with_genres: bool = False


class UserPreferences(_Record):
    """Explicit preferences supplied with a request (set-valued fields are de-duplicated)."""

    favorite_genres: List[str] = Field(default_factory=list)
    avoid_genres: List[str] = Field(default_factory=list)
    preferred_authors: List[str] = Field(default_factory=list)
    avoid_authors: List[str] = Field(default_factory=list)
    rating_thresholds: RatingThresholds = Field(default_factory=RatingThresholds)
    content_preferences: Dict[str, ContentLevel] = Field(default_factory=dict)
    discovery_settings: DiscoverySettings = Field(default_factory=DiscoverySettings)

    @field_validator(
        "favorite_genres", "avoid_genres", "preferred_authors", "avoid_authors"
    )
    @classmethod
    def _dedupe(cls, v: List[str]) -> List[str]:
        return _unique([s.strip() for s in v])


class RecommendationOptions(_Record):
    max_recommendations: Optional[int] = Field(None, ge=1, le=100)
    include_metadata: bool = True
    model: Optional[str] = None


# --------------------------------------------------------------------
# Reading profile
# --------------------------------------------------------------------


class GenreCount(_Record):
    genre: str
    count: int
    percentage: str  # one decimal place, e.g. "66.7"


class AuthorCount(_Record):
    author: str
    count: int


class ReadingProfile(_Record):
    total_books: int = 0
    genre_counts: Dict[str, int] = Field(default_factory=dict)
    author_counts: Dict[str, int] = Field(default_factory=dict)
    series_counts: Dict[str, int] = Field(default_factory=dict)
    average_confidence: float = 0.0
    top_genres: List[GenreCount] = Field(default_factory=list)
    top_authors: List[AuthorCount] = Field(default_factory=list)
    reading_style: ReadingStyle = "unknown"
    diversity: float = Field(0.0, ge=0.0, le=1.0)
    summary: str = ""

    def top_genre(self, genre: Optional[str]) -> Optional[GenreCount]:
        """Return the top-genre entry for *genre*, if it made the top five."""
        if not genre:
            return None
        return next((g for g in self.top_genres if g.genre == genre), None)


# --------------------------------------------------------------------
# Candidates
# --------------------------------------------------------------------


class ExternalRatingData(_Record):
    rating: Optional[float] = None
    ratings_count: int = 0
    awards: List[str] = Field(default_factory=list)
    catalog_id: Optional[str] = None
    isbn: Optional[str] = None


class BookMetadata(_Record):
    isbn: Optional[str] = None
    published_date: Optional[str] = None
    page_count: Optional[int] = None
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    categories: List[str] = Field(default_factory=list)


class Recommendation(_Record):
    """A candidate title; ``final_score`` is only set once ranked."""

    title: str = Field(..., min_length=1)
    author: Optional[str] = None
    genre: Optional[str] = None
    reason: str = ""
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    themes: List[str] = Field(default_factory=list)
    publication_year: Optional[int] = None
    source: RecommendationSource
    similar_to: Optional[str] = None
    difficulty_level: Optional[str] = None
    external_rating_data: Optional[ExternalRatingData] = None
    metadata: Optional[BookMetadata] = None
    combination_source: Optional[CombinationSource] = None
    final_score: Optional[float] = Field(None, ge=0.0, le=1.0)

    @field_validator("themes")
    @classmethod
    def _unique_themes(cls, v: List[str]) -> List[str]:
        return _unique(v)


class CatalogBook(_Record):
    """A record as returned by the external catalog service."""

    id: str
    title: str
    author: Optional[str] = None
    isbn: Optional[str] = None
    rating: float = 0.0
    ratings_count: int = 0
    publication_year: Optional[int] = None
    genres: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    pages: Optional[int] = None
    awards: List[str] = Field(default_factory=list)


# --------------------------------------------------------------------
# Response envelope
# --------------------------------------------------------------------


class Explanations(_Record):
    why: str
    top_genres: List[GenreCount] = Field(default_factory=list)
    reading_style: ReadingStyle = "unknown"


class ResponseMetadata(_Record):
    total_recommendations: int
    processing_time_ms: int
    timestamp: str
    confidence: float
    based_on_books: int
    from_cache: bool = False


class RecommendationResult(_Record):
    """The envelope handed back to the routing layer."""

    recommendations: List[Recommendation]
    reading_profile: ReadingProfile
    explanations: Explanations
    metadata: ResponseMetadata
