"""Tunable constants for candidate generation, merging and scoring.

Scoring weights can be overridden from the environment (``SCORE_*``) or a
JSON file whose keys are the lower-case field names; unknown keys are ignored
and missing keys keep their defaults.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict

from common.structured_logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    """Additive adjustments applied on top of a candidate's confidence."""

    FAVORITE_GENRE_BONUS: float = 0.20
    AVOID_GENRE_PENALTY: float = 0.30
    TOP_GENRE_BONUS_CAP: float = 0.15
    TOP_GENRE_BONUS_FACTOR: float = 0.5
    EXTERNAL_RATING_FACTOR: float = 0.15
    RATING_BASELINE: float = 3.0
    MANY_REVIEWS_THRESHOLD: int = 10_000
    MANY_REVIEWS_BONUS: float = 0.10
    SOME_REVIEWS_THRESHOLD: int = 1_000
    SOME_REVIEWS_BONUS: float = 0.05
    METADATA_RATING_FACTOR: float = 0.10
    THRESHOLD_MET_BONUS: float = 0.05
    THRESHOLD_MISSED_PENALTY: float = 0.20
    AWARDS_BONUS: float = 0.10
    AI_SOURCE_BONUS: float = 0.05
    CATALOG_SOURCE_BONUS: float = 0.03
    EXPERIMENT_GENRE_BONUS: float = 0.08
    NEW_RELEASE_BONUS: float = 0.06
    NEW_RELEASE_WINDOW_YEARS: int = 2
    CLASSIC_BONUS: float = 0.05
    CLASSIC_BEFORE_YEAR: int = 1990
    CLASSIC_MIN_RATING: float = 4.0

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "ScoringWeights":
        known = {f.name: f.type for f in fields(cls)}
        overrides: Dict[str, Any] = {}
        for key, value in values.items():
            name = key.upper()
            if name not in known:
                continue
            overrides[name] = int(value) if known[name] in ("int", int) else float(value)
        return replace(cls(), **overrides)

    @classmethod
    def from_file(cls, path: str | Path) -> "ScoringWeights":
        """Load overrides from JSON; a missing file yields the defaults."""
        p = Path(path)
        if not p.exists():
            return cls()
        try:
            return cls.from_mapping(json.loads(p.read_text()))
        except (ValueError, TypeError) as e:
            logger.warning(
                "Ignoring unreadable weights file", extra={"path": str(p), "error": str(e)}
            )
            return cls()

    @classmethod
    def from_env(cls) -> "ScoringWeights":
        values = {
            f.name: os.environ[f"SCORE_{f.name}"]
            for f in fields(cls)
            if f"SCORE_{f.name}" in os.environ
        }
        return cls.from_mapping(values)


@dataclass(frozen=True)
class PipelineConfig:
    """Sizes, ratios and trust levels for the candidate sources."""

    # Combiner
    DEFAULT_COMBINED_SIZE: int = 20
    AI_SHARE: float = 0.7
    # Response truncation when the caller does not ask for a size
    DEFAULT_RESPONSE_SIZE: int = 10

    # Prompt
    MAX_PROMPT_BOOKS: int = 20

    # Rule-based fallback
    FALLBACK_GENRE_SHARE: float = 0.6
    FALLBACK_DISCOVERY_SHARE: float = 0.1
    FALLBACK_GENRE_CONFIDENCE: float = 0.6
    FALLBACK_DISCOVERY_CONFIDENCE: float = 0.5

    # LLM output
    LLM_MIN_CONFIDENCE: float = 0.1
    LLM_MAX_CONFIDENCE: float = 1.0
    LLM_DEFAULT_CONFIDENCE: float = 0.7

    # Catalog
    CATALOG_GENRE_LIMIT: int = 5
    CATALOG_HIGHLY_RATED_LIMIT: int = 10
    CATALOG_MAX_CANDIDATES: int = 20
    CATALOG_DEFAULT_MIN_RATING: float = 4.0
    CATALOG_DEFAULT_MIN_REVIEWS: int = 100
    CATALOG_MAX_CONFIDENCE: float = 0.9

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create configuration from environment variables."""
        return cls(
            DEFAULT_COMBINED_SIZE=int(os.getenv("PIPELINE_COMBINED_SIZE", "20")),
            AI_SHARE=float(os.getenv("PIPELINE_AI_SHARE", "0.7")),
            DEFAULT_RESPONSE_SIZE=int(os.getenv("PIPELINE_RESPONSE_SIZE", "10")),
            MAX_PROMPT_BOOKS=int(os.getenv("PIPELINE_MAX_PROMPT_BOOKS", "20")),
        )
