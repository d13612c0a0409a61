"""Derive a reading profile from the books detected on a shelf.

Pure and deterministic: the same input list always yields the same profile.
Counts are accumulated in insertion-ordered dicts, so ties in the top-five
lists resolve by first appearance on the shelf.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from .models import AuthorCount, DetectedBook, GenreCount, ReadingProfile

TOP_N = 5
ECLECTIC_DIVERSITY = 0.7
SERIES_SHARE = 0.3
AUTHOR_SHARE = 0.5


def _count(values) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for v in values:
        if v:
            counts[v] = counts.get(v, 0) + 1
    return counts


def _top(counts: Dict[str, int]) -> List[tuple[str, int]]:
    # sorted() is stable, dict order is first-seen order
    return sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:TOP_N]


def determine_reading_style(
    total_books: int,
    diversity: float,
    distinct_series: int,
    distinct_authors: int,
) -> str:
    if total_books == 0:
        return "unknown"
    if diversity > ECLECTIC_DIVERSITY:
        return "eclectic"
    if distinct_series > total_books * SERIES_SHARE:
        return "series-focused"
    if distinct_authors < total_books * AUTHOR_SHARE:
        return "author-loyal"
    return "genre-focused"


def summarize_profile(profile: ReadingProfile) -> str:
    return (
        f"{profile.total_books} books, {profile.reading_style} reader, "
        f"{len(profile.genre_counts)} genres, diversity: {profile.diversity * 100:.1f}%"
    )


def analyze_reading_profile(books: Sequence[DetectedBook]) -> ReadingProfile:
    """Summarise genre/author/series distribution of *books*.

    An empty sequence yields the zero profile (``reading_style="unknown"``),
    meaning no personalisation is possible; it is not an error.
    """
    total = len(books)
    if total == 0:
        empty = ReadingProfile()
        return empty.model_copy(update={"summary": summarize_profile(empty)})

    genre_counts = _count(b.genre for b in books)
    author_counts = _count(b.author for b in books)
    series_counts = _count(b.series for b in books)
    average_confidence = sum(b.confidence for b in books) / total
    diversity = len(genre_counts) / total

    top_genres = [
        GenreCount(genre=g, count=c, percentage=f"{c / total * 100:.1f}")
        for g, c in _top(genre_counts)
    ]
    top_authors = [AuthorCount(author=a, count=c) for a, c in _top(author_counts)]

    profile = ReadingProfile(
        total_books=total,
        genre_counts=genre_counts,
        author_counts=author_counts,
        series_counts=series_counts,
        average_confidence=average_confidence,
        top_genres=top_genres,
        top_authors=top_authors,
        reading_style=determine_reading_style(
            total, diversity, len(series_counts), len(author_counts)
        ),
        diversity=diversity,
    )
    return profile.model_copy(update={"summary": summarize_profile(profile)})
