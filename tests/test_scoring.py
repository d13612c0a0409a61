import json

import pytest

from shelf_recommender.config import ScoringWeights
from shelf_recommender.models import (
    BookMetadata,
    DetectedBook,
    ExternalRatingData,
    Recommendation,
    UserPreferences,
)
from shelf_recommender.profile import analyze_reading_profile
from shelf_recommender.scoring import rank_candidates, score_breakdown, score_candidate

YEAR = 2024


def _rec(title="X", genre=None, confidence=0.6, source="rule-based-genre", **kw):
    return Recommendation(title=title, genre=genre, confidence=confidence, source=source, **kw)


@pytest.fixture
def sci_fi_profile():
    return analyze_reading_profile(
        [
            DetectedBook(title="Dune", genre="Science Fiction", confidence=0.9),
            DetectedBook(title="1984", genre="Science Fiction", confidence=0.8),
        ]
    )


def test_dune_1984_favorite_genre_outranks_equal_confidence(sci_fi_profile):
    prefs = UserPreferences(favorite_genres=["Science Fiction"])
    favorite = _rec("Hyperion", "Science Fiction")
    other = _rec("Piranesi", "Fantasy")

    breakdown = score_breakdown(favorite, prefs, sci_fi_profile, current_year=YEAR)
    assert breakdown["favorite_genre"] == pytest.approx(0.20)
    # 100% * 0.5 = 0.5, capped at 0.15
    assert breakdown["top_genre"] == pytest.approx(0.15)

    ranked = rank_candidates([other, favorite], prefs, sci_fi_profile, current_year=YEAR)
    assert [r.title for r in ranked] == ["Hyperion", "Piranesi"]
    assert ranked[0].final_score == pytest.approx(0.95)
    assert ranked[1].final_score == pytest.approx(0.6)


def test_avoided_genre_penalty_in_breakdown(sci_fi_profile):
    prefs = UserPreferences(avoid_genres=["Horror"])
    rec = _rec("The Shining", "Horror", confidence=0.6)
    breakdown = score_breakdown(rec, prefs, sci_fi_profile, current_year=YEAR)

    assert breakdown["avoid_genre"] == pytest.approx(-0.30)
    assert score_candidate(rec, prefs, sci_fi_profile, current_year=YEAR) == pytest.approx(0.3)


def test_catalog_signals(sci_fi_profile):
    prefs = UserPreferences(rating_thresholds={"minimum_rating": 4.0})
    rec = _rec(
        "Seven Husbands",
        "Fiction",
        confidence=0.85,
        source="goodreads-popular",
        external_rating_data=ExternalRatingData(
            rating=4.25, ratings_count=875432, awards=["Goodreads Choice Award Nominee"]
        ),
    )
    b = score_breakdown(rec, prefs, sci_fi_profile, current_year=YEAR)

    assert b["external_rating"] == pytest.approx(1.25 * 0.15)
    assert b["review_volume"] == pytest.approx(0.10)
    assert b["rating_threshold"] == pytest.approx(0.05)
    assert b["awards"] == pytest.approx(0.10)
    assert b["source"] == pytest.approx(0.03)
    assert "top_genre" not in b


def test_review_volume_tiers_and_missed_threshold(sci_fi_profile):
    prefs = UserPreferences(rating_thresholds={"minimum_rating": 4.5})
    rec = _rec(external_rating_data=ExternalRatingData(rating=4.0, ratings_count=5000))
    b = score_breakdown(rec, prefs, sci_fi_profile, current_year=YEAR)
    assert b["review_volume"] == pytest.approx(0.05)
    assert b["rating_threshold"] == pytest.approx(-0.20)

    few = _rec(external_rating_data=ExternalRatingData(rating=4.0, ratings_count=1000))
    assert "review_volume" not in score_breakdown(few, prefs, sci_fi_profile, current_year=YEAR)


def test_metadata_rating_only_without_external_rating(sci_fi_profile):
    prefs = UserPreferences()
    meta_only = _rec(metadata=BookMetadata(average_rating=4.5))
    b = score_breakdown(meta_only, prefs, sci_fi_profile, current_year=YEAR)
    assert b["metadata_rating"] == pytest.approx(0.15)

    both = _rec(
        metadata=BookMetadata(average_rating=4.5),
        external_rating_data=ExternalRatingData(rating=4.0),
    )
    assert "metadata_rating" not in score_breakdown(both, prefs, sci_fi_profile, current_year=YEAR)


def test_discovery_adjustments(sci_fi_profile):
    prefs = UserPreferences(
        discovery_settings={
            "include_new_releases": True,
            "include_classics": True,
            "experiment_with_genres": True,
        }
    )
    fresh = _rec("Fresh", "Fantasy", publication_year=YEAR - 2)
    stale = _rec("Stale", "Science Fiction", publication_year=YEAR - 3)
    classic = _rec(
        "Hyperion",
        "Science Fiction",
        publication_year=1989,
        external_rating_data=ExternalRatingData(rating=4.25),
    )
    unrated_classic = _rec("Old", "Science Fiction", publication_year=1950)

    fresh_b = score_breakdown(fresh, prefs, sci_fi_profile, current_year=YEAR)
    assert fresh_b["new_release"] == pytest.approx(0.06)
    assert fresh_b["experiment"] == pytest.approx(0.08)

    assert "new_release" not in score_breakdown(stale, prefs, sci_fi_profile, current_year=YEAR)
    assert "experiment" not in score_breakdown(stale, prefs, sci_fi_profile, current_year=YEAR)
    assert score_breakdown(classic, prefs, sci_fi_profile, current_year=YEAR)["classic"] == pytest.approx(0.05)
    assert "classic" not in score_breakdown(unrated_classic, prefs, sci_fi_profile, current_year=YEAR)


def test_scores_are_clamped(sci_fi_profile):
    prefs = UserPreferences(favorite_genres=["Science Fiction"], avoid_genres=["Horror"])
    high = _rec("High", "Science Fiction", confidence=0.95, source="ai-generated")
    low = _rec("Low", "Horror", confidence=0.1)
    assert score_candidate(high, prefs, sci_fi_profile, current_year=YEAR) == 1.0
    assert score_candidate(low, prefs, sci_fi_profile, current_year=YEAR) == 0.0


def test_ranking_is_stable_and_deterministic(sci_fi_profile):
    prefs = UserPreferences()
    recs = [_rec(f"Tie {i}", "Fantasy") for i in range(5)]
    first = rank_candidates(recs, prefs, sci_fi_profile, current_year=YEAR)
    second = rank_candidates(recs, prefs, sci_fi_profile, current_year=YEAR)
    assert [r.title for r in first] == [f"Tie {i}" for i in range(5)]
    assert first == second
    assert all(0.0 <= r.final_score <= 1.0 for r in first)


# ---------------------------------------------------------------------------
# Weight overrides
# ---------------------------------------------------------------------------


def test_custom_weights_change_breakdown(sci_fi_profile):
    weights = ScoringWeights.from_mapping({"favorite_genre_bonus": 0.5, "unknown_key": 1})
    prefs = UserPreferences(favorite_genres=["Fantasy"])
    b = score_breakdown(_rec(genre="Fantasy"), prefs, sci_fi_profile, weights, current_year=YEAR)
    assert b["favorite_genre"] == 0.5


def test_weights_from_file_and_env(tmp_path, monkeypatch):
    path = tmp_path / "weights.json"
    path.write_text(json.dumps({"awards_bonus": 0.2, "many_reviews_threshold": 500}))
    w = ScoringWeights.from_file(path)
    assert w.AWARDS_BONUS == 0.2
    assert w.MANY_REVIEWS_THRESHOLD == 500
    assert w.FAVORITE_GENRE_BONUS == 0.20

    assert ScoringWeights.from_file(tmp_path / "missing.json") == ScoringWeights()

    monkeypatch.setenv("SCORE_AI_SOURCE_BONUS", "0.07")
    assert ScoringWeights.from_env().AI_SOURCE_BONUS == 0.07
