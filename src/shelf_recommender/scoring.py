"""Deterministic, hand-tuned scoring of combined candidates.

Each candidate starts from its own ``confidence`` and collects additive
adjustments from the reader's preferences, the reading profile, external
ratings, source and discovery settings. The sum is clamped into [0, 1] once,
at the end, so the adjustments commute.

All magnitudes come from ``ScoringWeights`` (defaults in code, overridable
from ``SCORE_*`` env vars or ``weights.json``). ``score_breakdown`` exposes
the individual terms for explanations and tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Sequence

from common.structured_logging import get_logger

from .config import ScoringWeights
from .models import ReadingProfile, Recommendation, UserPreferences

logger = get_logger(__name__)


def _current_year() -> int:
    return datetime.now(timezone.utc).year


def score_breakdown(
    rec: Recommendation,
    preferences: UserPreferences,
    profile: ReadingProfile,
    weights: ScoringWeights | None = None,
    current_year: int | None = None,
) -> Dict[str, float]:
    """Return the adjustments that apply to *rec*, keyed by factor name.

    Factors that do not apply are omitted, so ``sum(breakdown.values())`` is
    the total adjustment before clamping.
    """
    w = weights or ScoringWeights()
    year = current_year if current_year is not None else _current_year()
    out: Dict[str, float] = {}

    # --- Explicit genre preferences ----------------------------------------
    if rec.genre and rec.genre in preferences.favorite_genres:
        out["favorite_genre"] = w.FAVORITE_GENRE_BONUS
    if rec.genre and rec.genre in preferences.avoid_genres:
        out["avoid_genre"] = -w.AVOID_GENRE_PENALTY

    # --- Fit with the shelf --------------------------------------------------
    top = profile.top_genre(rec.genre)
    if top is not None:
        out["top_genre"] = min(
            w.TOP_GENRE_BONUS_CAP, float(top.percentage) / 100 * w.TOP_GENRE_BONUS_FACTOR
        )

    # --- External signals -----------------------------------------------------
    ext = rec.external_rating_data
    ext_rating = ext.rating if ext is not None else None
    if ext_rating:
        out["external_rating"] = (ext_rating - w.RATING_BASELINE) * w.EXTERNAL_RATING_FACTOR
        if ext.ratings_count > w.MANY_REVIEWS_THRESHOLD:
            out["review_volume"] = w.MANY_REVIEWS_BONUS
        elif ext.ratings_count > w.SOME_REVIEWS_THRESHOLD:
            out["review_volume"] = w.SOME_REVIEWS_BONUS
    elif rec.metadata is not None and rec.metadata.average_rating:
        out["metadata_rating"] = (
            rec.metadata.average_rating - w.RATING_BASELINE
        ) * w.METADATA_RATING_FACTOR

    minimum = preferences.rating_thresholds.minimum_rating
    if minimum is not None and ext_rating:
        if ext_rating >= minimum:
            out["rating_threshold"] = w.THRESHOLD_MET_BONUS
        else:
            out["rating_threshold"] = -w.THRESHOLD_MISSED_PENALTY

    if ext is not None and ext.awards:
        out["awards"] = w.AWARDS_BONUS

    # --- Source -----------------------------------------------------------
    if rec.source == "ai-generated":
        out["source"] = w.AI_SOURCE_BONUS
    elif rec.source == "goodreads-popular":
        out["source"] = w.CATALOG_SOURCE_BONUS

    # --- Discovery ----------------------------------------------------------
    discovery = preferences.discovery_settings
    if discovery.experiment_with_genres and top is None:
        out["experiment"] = w.EXPERIMENT_GENRE_BONUS
    if rec.publication_year is not None:
        if (
            discovery.include_new_releases
            and rec.publication_year >= year - w.NEW_RELEASE_WINDOW_YEARS
        ):
            out["new_release"] = w.NEW_RELEASE_BONUS
        if (
            discovery.include_classics
            and rec.publication_year < w.CLASSIC_BEFORE_YEAR
            and ext_rating is not None
            and ext_rating >= w.CLASSIC_MIN_RATING
        ):
            out["classic"] = w.CLASSIC_BONUS

    return out


def score_candidate(
    rec: Recommendation,
    preferences: UserPreferences,
    profile: ReadingProfile,
    weights: ScoringWeights | None = None,
    current_year: int | None = None,
) -> float:
    adjustments = score_breakdown(rec, preferences, profile, weights, current_year)
    return max(0.0, min(1.0, rec.confidence + sum(adjustments.values())))


def rank_candidates(
    candidates: Sequence[Recommendation],
    preferences: UserPreferences,
    profile: ReadingProfile,
    weights: ScoringWeights | None = None,
    current_year: int | None = None,
) -> List[Recommendation]:
    """Score every candidate and sort by descending ``final_score``.

    The sort is stable, so equal scores keep their combined order.
    """
    w = weights or ScoringWeights()
    year = current_year if current_year is not None else _current_year()
    scored = [
        rec.model_copy(
            update={"final_score": score_candidate(rec, preferences, profile, w, year)}
        )
        for rec in candidates
    ]
    scored.sort(key=lambda r: r.final_score, reverse=True)
    logger.debug(
        "Candidates ranked",
        extra={
            "candidate_count": len(scored),
            "top_score": scored[0].final_score if scored else None,
        },
    )
    return scored
