"""
External book-catalog candidates ("popular on Goodreads").

Two catalog clients share one small interface:

* ``InMemoryCatalogClient``: a seeded list of popular titles, used offline
  and in tests.
* ``HttpCatalogClient``: the catalog service over HTTP (httpx).

``CatalogRecommender`` fans out one popular-by-genre query per favorite genre
plus one highly-rated query, concurrently, and converts the merged result to
``Recommendation`` records. A failure of any query yields an empty candidate
list, never an exception.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Protocol, Sequence

import httpx
from pydantic import ValidationError

from common.retry import RetryConfig, retry_async
from common.settings import settings as S
from common.structured_logging import get_logger

from .config import PipelineConfig
from .errors import CatalogServiceError
from .models import (
    CatalogBook,
    DetectedBook,
    ExternalRatingData,
    Recommendation,
    UserPreferences,
)

logger = get_logger(__name__)


class CatalogClient(Protocol):
    async def search_popular_by_genre(self, genre: str, limit: int) -> List[CatalogBook]:
        ...

    async def get_highly_rated(
        self,
        min_rating: float,
        min_reviews: int,
        genres: Sequence[str],
        limit: int,
    ) -> List[CatalogBook]:
        ...


# --------------------------------------------------------------------
# In-memory catalog
# --------------------------------------------------------------------

SEED_BOOKS: List[Dict[str, Any]] = [
    {
        "id": "1",
        "title": "The Seven Husbands of Evelyn Hugo",
        "author": "Taylor Jenkins Reid",
        "isbn": "9781501161933",
        "rating": 4.25,
        "ratings_count": 875432,
        "publication_year": 2017,
        "genres": ["Fiction", "Historical Fiction", "Romance"],
        "description": "A reclusive Hollywood icon finally tells her story.",
        "pages": 400,
        "awards": ["Goodreads Choice Award Nominee"],
    },
    {
        "id": "2",
        "title": "Educated",
        "author": "Tara Westover",
        "isbn": "9780399590504",
        "rating": 4.47,
        "ratings_count": 654321,
        "publication_year": 2018,
        "genres": ["Memoir", "Non-Fiction", "Biography"],
        "description": "A powerful memoir about education and self-discovery.",
        "pages": 334,
        "awards": ["Goodreads Choice Award Winner", "New York Times Bestseller"],
    },
    {
        "id": "3",
        "title": "Where the Crawdads Sing",
        "author": "Delia Owens",
        "isbn": "9780735219090",
        "rating": 4.41,
        "ratings_count": 987654,
        "publication_year": 2018,
        "genres": ["Fiction", "Mystery", "Literary Fiction"],
        "description": "A mystery and coming-of-age story set in the marshes.",
        "pages": 370,
        "awards": ["Reese's Book Club Pick"],
    },
    {
        "id": "4",
        "title": "The Midnight Library",
        "author": "Matt Haig",
        "isbn": "9780525559474",
        "rating": 4.18,
        "ratings_count": 456789,
        "publication_year": 2020,
        "genres": ["Fiction", "Philosophy", "Fantasy"],
        "description": "A philosophical novel about life choices and regrets.",
        "pages": 288,
        "awards": ["Goodreads Choice Award Winner"],
    },
    {
        "id": "5",
        "title": "Project Hail Mary",
        "author": "Andy Weir",
        "isbn": "9780593135204",
        "rating": 4.52,
        "ratings_count": 512877,
        "publication_year": 2021,
        "genres": ["Science Fiction", "Fiction"],
        "description": "A lone astronaut must save the earth from disaster.",
        "pages": 476,
        "awards": ["Goodreads Choice Award Winner"],
    },
    {
        "id": "6",
        "title": "The Name of the Wind",
        "author": "Patrick Rothfuss",
        "isbn": "9780756404741",
        "rating": 4.52,
        "ratings_count": 943210,
        "publication_year": 2007,
        "genres": ["Fantasy", "Fiction"],
        "description": "The tale of Kvothe, told in his own words.",
        "pages": 662,
        "awards": [],
    },
    {
        "id": "7",
        "title": "The Thursday Murder Club",
        "author": "Richard Osman",
        "isbn": "9781984880963",
        "rating": 3.98,
        "ratings_count": 398765,
        "publication_year": 2020,
        "genres": ["Mystery", "Fiction"],
        "description": "Four retirees meet weekly to investigate cold cases.",
        "pages": 382,
        "awards": [],
    },
    {
        "id": "8",
        "title": "Hyperion",
        "author": "Dan Simmons",
        "isbn": "9780553283686",
        "rating": 4.25,
        "ratings_count": 234567,
        "publication_year": 1989,
        "genres": ["Science Fiction", "Fiction"],
        "description": "Seven pilgrims journey to the Time Tombs.",
        "pages": 482,
        "awards": ["Hugo Award"],
    },
    {
        "id": "9",
        "title": "Gone Girl",
        "author": "Gillian Flynn",
        "isbn": "9780307588371",
        "rating": 4.12,
        "ratings_count": 3012456,
        "publication_year": 2012,
        "genres": ["Thriller", "Mystery", "Fiction"],
        "description": "A marriage unravels after a woman disappears.",
        "pages": 415,
        "awards": [],
    },
    {
        "id": "10",
        "title": "Mexican Gothic",
        "author": "Silvia Moreno-Garcia",
        "isbn": "9780525620785",
        "rating": 3.72,
        "ratings_count": 301234,
        "publication_year": 2020,
        "genres": ["Horror", "Historical Fiction", "Fiction"],
        "description": "A debutante investigates her cousin's new home.",
        "pages": 301,
        "awards": ["Locus Award"],
    },
]


class InMemoryCatalogClient:
    """Catalog backed by a fixed list of records."""

    def __init__(self, books: Optional[Iterable[Dict[str, Any]]] = None):
        self.books = [CatalogBook.model_validate(b) for b in (books if books is not None else SEED_BOOKS)]

    async def search_popular_by_genre(self, genre: str, limit: int) -> List[CatalogBook]:
        matches = [b for b in self.books if genre in b.genres]
        matches.sort(key=lambda b: b.ratings_count, reverse=True)
        return matches[:limit]

    async def get_highly_rated(
        self,
        min_rating: float,
        min_reviews: int,
        genres: Sequence[str],
        limit: int,
    ) -> List[CatalogBook]:
        wanted = set(genres)
        matches = [
            b
            for b in self.books
            if b.rating >= min_rating
            and b.ratings_count >= min_reviews
            and (not wanted or wanted.intersection(b.genres))
        ]
        matches.sort(key=lambda b: b.rating, reverse=True)
        return matches[:limit]


# --------------------------------------------------------------------
# HTTP catalog
# --------------------------------------------------------------------


class HttpCatalogClient:
    """Catalog service client; every failure surfaces as ``CatalogServiceError``."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or S.catalog_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else S.catalog_api_key
        self.timeout = timeout or S.catalog_request_timeout
        self.retry_config = retry_config or RetryConfig.from_settings(S)
        self._transport = transport

    async def search_popular_by_genre(self, genre: str, limit: int) -> List[CatalogBook]:
        return await self._get_books("/books/popular", {"genre": genre, "limit": limit})

    async def get_highly_rated(
        self,
        min_rating: float,
        min_reviews: int,
        genres: Sequence[str],
        limit: int,
    ) -> List[CatalogBook]:
        params: Dict[str, Any] = {
            "min_rating": min_rating,
            "min_reviews": min_reviews,
            "limit": limit,
        }
        if genres:
            params["genres"] = ",".join(genres)
        return await self._get_books("/books/highly-rated", params)

    async def _get_books(self, path: str, params: Dict[str, Any]) -> List[CatalogBook]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async def _attempt() -> httpx.Response:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(path, params=params, headers=headers)
                response.raise_for_status()
                return response

        try:
            response = await retry_async(
                _attempt,
                self.retry_config,
                retry_exceptions=(httpx.TransportError,),
                operation=f"catalog GET {path}",
            )
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise CatalogServiceError(f"Catalog returned {e.response.status_code} for {path}") from e
        except httpx.HTTPError as e:
            raise CatalogServiceError(f"Catalog request failed for {path}: {e}") from e
        except ValueError as e:
            raise CatalogServiceError(f"Catalog returned invalid JSON for {path}") from e

        items = payload.get("books", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise CatalogServiceError(f"Unexpected catalog payload for {path}")
        try:
            return [CatalogBook.model_validate(item) for item in items]
        except ValidationError as e:
            raise CatalogServiceError(f"Invalid catalog record from {path}: {e}") from e


def make_catalog_client(settings=None) -> CatalogClient:
    """Build the catalog client selected by ``CATALOG_BACKEND``."""
    cfg = settings or S
    if cfg.catalog_backend == "http":
        return HttpCatalogClient(
            base_url=cfg.catalog_base_url,
            api_key=cfg.catalog_api_key,
            timeout=cfg.catalog_request_timeout,
            retry_config=RetryConfig.from_settings(cfg),
        )
    return InMemoryCatalogClient()


# --------------------------------------------------------------------
# Recommender
# --------------------------------------------------------------------


class CatalogCandidates(NamedTuple):
    recommendations: List[Recommendation]
    failure: Optional[str] = None


def catalog_to_recommendation(book: CatalogBook, max_confidence: float = 0.9) -> Recommendation:
    return Recommendation(
        title=book.title,
        author=book.author,
        genre=book.genres[0] if book.genres else None,
        reason=(
            f"Highly rated on Goodreads ({book.rating}/5 stars "
            f"with {book.ratings_count:,} reviews)"
        ),
        confidence=max(0.0, min(max_confidence, book.rating / 5)),
        themes=book.genres,
        publication_year=book.publication_year,
        source="goodreads-popular",
        external_rating_data=ExternalRatingData(
            rating=book.rating,
            ratings_count=book.ratings_count,
            awards=book.awards,
            catalog_id=book.id,
            isbn=book.isbn,
        ),
    )


class CatalogRecommender:
    def __init__(
        self,
        client: CatalogClient,
        config: PipelineConfig | None = None,
        timeout: float | None = None,
    ):
        self.client = client
        self.config = config or PipelineConfig()
        self.timeout = timeout or S.catalog_request_timeout

    async def recommend(
        self,
        books: Sequence[DetectedBook],
        preferences: UserPreferences,
    ) -> CatalogCandidates:
        cfg = self.config
        thresholds = preferences.rating_thresholds
        min_rating = (
            thresholds.minimum_rating
            if thresholds.minimum_rating is not None
            else cfg.CATALOG_DEFAULT_MIN_RATING
        )
        min_reviews = (
            thresholds.minimum_review_count
            if thresholds.minimum_review_count is not None
            else cfg.CATALOG_DEFAULT_MIN_REVIEWS
        )

        calls = [
            self.client.search_popular_by_genre(genre, cfg.CATALOG_GENRE_LIMIT)
            for genre in preferences.favorite_genres
        ]
        calls.append(
            self.client.get_highly_rated(
                min_rating,
                min_reviews,
                preferences.favorite_genres,
                cfg.CATALOG_HIGHLY_RATED_LIMIT,
            )
        )

        results = await asyncio.gather(
            *(asyncio.wait_for(c, timeout=self.timeout) for c in calls),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failure = (
                    "Timeout" if isinstance(result, asyncio.TimeoutError) else type(result).__name__
                )
                logger.warning(
                    "Catalog query failed, continuing without catalog candidates",
                    extra={"failure": failure, "detail": str(result)},
                )
                return CatalogCandidates([], failure=failure)

        owned = {b.title.casefold() for b in books}
        seen: set[str] = set()
        selected: List[CatalogBook] = []
        for batch in results:
            for book in batch:
                if book.title in seen or book.title.casefold() in owned:
                    continue
                seen.add(book.title)
                if thresholds.minimum_rating is not None and book.rating < thresholds.minimum_rating:
                    continue
                if (
                    thresholds.minimum_review_count is not None
                    and book.ratings_count < thresholds.minimum_review_count
                ):
                    continue
                selected.append(book)

        selected = selected[: cfg.CATALOG_MAX_CANDIDATES]
        logger.info(
            "Catalog candidates collected",
            extra={"queries": len(calls), "count": len(selected)},
        )
        return CatalogCandidates(
            [catalog_to_recommendation(b, cfg.CATALOG_MAX_CONFIDENCE) for b in selected]
        )
