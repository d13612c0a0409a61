"""
Google Books metadata enrichment for ranked recommendations.

Looks each recommendation up by title (and author when known) and attaches a
``BookMetadata`` record: ISBN, publication date, page count, ratings,
description, thumbnail and categories. Lookups run concurrently under a
semaphore with a small fixed delay per call to stay friendly with the API
quota. A failed lookup leaves that recommendation un-enriched; it never fails
the batch.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

import aiohttp
from pydantic import ValidationError

from common.settings import settings as S
from common.structured_logging import get_logger

from .errors import MetadataLookupError
from .models import BookMetadata, Recommendation

logger = get_logger(__name__)

GOOGLE_BOOKS_BASE_URL = "https://www.googleapis.com/books/v1/volumes"
MAX_DESCRIPTION_LENGTH = 2000

_TAG = re.compile(r"<[^>]+>")


def _clean_description(description: Optional[str]) -> Optional[str]:
    """Strip HTML tags and excessive whitespace, truncate long blurbs."""
    if not isinstance(description, str) or not description:
        return None
    clean = " ".join(_TAG.sub("", description).split())
    if len(clean) > MAX_DESCRIPTION_LENGTH:
        clean = clean[: MAX_DESCRIPTION_LENGTH - 3] + "..."
    return clean or None


def _pick_isbn(identifiers: List[Dict[str, Any]]) -> Optional[str]:
    by_type = {i.get("type"): i.get("identifier") for i in identifiers if isinstance(i, dict)}
    return by_type.get("ISBN_13") or by_type.get("ISBN_10")


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def volume_to_metadata(volume_info: Dict[str, Any]) -> BookMetadata:
    volume_info = _as_dict(volume_info)
    return BookMetadata(
        isbn=_pick_isbn(_as_list(volume_info.get("industryIdentifiers"))),
        published_date=volume_info.get("publishedDate"),
        page_count=volume_info.get("pageCount"),
        average_rating=volume_info.get("averageRating"),
        ratings_count=volume_info.get("ratingsCount"),
        description=_clean_description(volume_info.get("description")),
        thumbnail=_as_dict(volume_info.get("imageLinks")).get("thumbnail"),
        categories=[c for c in _as_list(volume_info.get("categories")) if isinstance(c, str)],
    )


class GoogleBooksClient:
    """Minimal Google Books volumes client (aiohttp)."""

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self.api_key = api_key if api_key is not None else S.google_books_api_key
        self.timeout = timeout or S.metadata_request_timeout

    async def lookup_by_title_author(
        self, title: str, author: Optional[str] = None
    ) -> Optional[BookMetadata]:
        """Return metadata for the best match, ``None`` when nothing matches.

        Raises:
            MetadataLookupError: on HTTP errors, network errors or bad payloads
        """
        query = f'intitle:"{title}"'
        if author:
            query += f' inauthor:"{author}"'
        params = {"q": query, "maxResults": "1"}
        if self.api_key:
            params["key"] = self.api_key

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(GOOGLE_BOOKS_BASE_URL, params=params) as response:
                    if response.status == 429:
                        raise MetadataLookupError("Rate limited (HTTP 429)")
                    if response.status != 200:
                        raise MetadataLookupError(f"Google Books API error: HTTP {response.status}")
                    data = await response.json()
        except aiohttp.ClientError as e:
            raise MetadataLookupError(f"Network error: {e}") from e
        except ValueError as e:
            raise MetadataLookupError(f"Invalid JSON from Google Books: {e}") from e

        items = _as_list(_as_dict(data).get("items"))
        if not items:
            logger.debug("No Google Books match", extra={"title": title, "author": author})
            return None
        volume_info = _as_dict(items[0]).get("volumeInfo")
        if not isinstance(volume_info, dict):
            logger.debug("Google Books match without volumeInfo", extra={"title": title})
            return None
        try:
            return volume_to_metadata(volume_info)
        except ValidationError as e:
            raise MetadataLookupError(f"Unexpected volume payload: {e}") from e


class EnrichmentResult(NamedTuple):
    recommendations: List[Recommendation]
    succeeded: int
    failed: int


class MetadataEnricher:
    def __init__(
        self,
        client: GoogleBooksClient | None = None,
        concurrency: int | None = None,
        delay_seconds: float | None = None,
        timeout: float | None = None,
    ):
        self.client = client or GoogleBooksClient()
        self.concurrency = concurrency or S.enrichment_concurrency
        self.delay_seconds = S.enrichment_delay_seconds if delay_seconds is None else delay_seconds
        self.timeout = timeout or S.metadata_request_timeout

    async def enrich(self, recommendations: Sequence[Recommendation]) -> EnrichmentResult:
        """Attach metadata to each recommendation; order is preserved."""
        semaphore = asyncio.Semaphore(max(1, self.concurrency))
        outcomes: Dict[str, int] = {"ok": 0, "failed": 0}

        async def _one(rec: Recommendation) -> Recommendation:
            async with semaphore:
                if self.delay_seconds:
                    await asyncio.sleep(self.delay_seconds)
                try:
                    meta = await asyncio.wait_for(
                        self.client.lookup_by_title_author(rec.title, rec.author),
                        timeout=self.timeout,
                    )
                except Exception as e:
                    # CancelledError is a BaseException and still propagates
                    outcomes["failed"] += 1
                    logger.warning(
                        "Metadata lookup failed, keeping recommendation as is",
                        extra={
                            "title": rec.title,
                            "error_type": type(e).__name__,
                            "error": str(e) or type(e).__name__,
                        },
                    )
                    return rec
                outcomes["ok"] += 1
                return rec.model_copy(update={"metadata": meta}) if meta else rec

        with logger.log_performance("metadata_enrichment", count=len(recommendations)):
            enriched = await asyncio.gather(*(_one(r) for r in recommendations))
        return EnrichmentResult(list(enriched), outcomes["ok"], outcomes["failed"])
