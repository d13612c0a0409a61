import asyncio

import httpx
import pytest

from shelf_recommender.catalog import (
    CatalogRecommender,
    HttpCatalogClient,
    InMemoryCatalogClient,
    catalog_to_recommendation,
)
from shelf_recommender.errors import CatalogServiceError
from shelf_recommender.models import CatalogBook, DetectedBook, UserPreferences


class _FailingCatalog(InMemoryCatalogClient):
    async def get_highly_rated(self, *args, **kwargs):
        raise CatalogServiceError("catalog down")


class _HangingCatalog(InMemoryCatalogClient):
    async def search_popular_by_genre(self, genre, limit):
        await asyncio.sleep(5)
        return []


def test_conversion_matches_catalog_record():
    book = CatalogBook(
        id="1",
        title="The Seven Husbands of Evelyn Hugo",
        author="Taylor Jenkins Reid",
        rating=4.25,
        ratings_count=875432,
        publication_year=2017,
        genres=["Fiction", "Historical Fiction", "Romance"],
        awards=["Goodreads Choice Award Nominee"],
    )
    rec = catalog_to_recommendation(book)

    assert rec.reason == "Highly rated on Goodreads (4.25/5 stars with 875,432 reviews)"
    assert rec.confidence == pytest.approx(0.85)
    assert rec.genre == "Fiction"
    assert rec.themes == ["Fiction", "Historical Fiction", "Romance"]
    assert rec.source == "goodreads-popular"
    assert rec.external_rating_data.rating == 4.25
    assert rec.external_rating_data.ratings_count == 875432
    assert rec.external_rating_data.awards == ["Goodreads Choice Award Nominee"]


def test_confidence_capped_at_point_nine():
    rec = catalog_to_recommendation(CatalogBook(id="x", title="Perfect", rating=5.0))
    assert rec.confidence == 0.9


@pytest.mark.asyncio
async def test_recommend_dedupes_and_excludes_owned_titles():
    recommender = CatalogRecommender(InMemoryCatalogClient())
    owned = [DetectedBook(title="where the crawdads sing")]
    prefs = UserPreferences(favorite_genres=["Fiction", "Mystery"])

    out = await recommender.recommend(owned, prefs)

    titles = [r.title for r in out.recommendations]
    assert out.failure is None
    assert len(titles) == len(set(titles))
    assert "Where the Crawdads Sing" not in titles
    assert "Gone Girl" in titles


@pytest.mark.asyncio
async def test_explicit_thresholds_are_enforced():
    recommender = CatalogRecommender(InMemoryCatalogClient())
    prefs = UserPreferences(
        favorite_genres=["Fiction"],
        rating_thresholds={"minimum_rating": 4.4, "minimum_review_count": 600000},
    )
    out = await recommender.recommend([], prefs)

    assert out.recommendations
    for rec in out.recommendations:
        assert rec.external_rating_data.rating >= 4.4
        assert rec.external_rating_data.ratings_count >= 600000


@pytest.mark.asyncio
async def test_no_favorite_genres_still_queries_highly_rated():
    out = await CatalogRecommender(InMemoryCatalogClient()).recommend([], UserPreferences())
    assert out.recommendations
    # default floor is 4.0 stars
    assert all(r.external_rating_data.rating >= 4.0 for r in out.recommendations)


@pytest.mark.asyncio
async def test_failure_yields_empty_list():
    recommender = CatalogRecommender(_FailingCatalog())
    out = await recommender.recommend([], UserPreferences(favorite_genres=["Fantasy"]))
    assert out.recommendations == []
    assert out.failure == "CatalogServiceError"


@pytest.mark.asyncio
async def test_timeout_yields_empty_list():
    recommender = CatalogRecommender(_HangingCatalog(), timeout=0.01)
    out = await recommender.recommend([], UserPreferences(favorite_genres=["Fantasy"]))
    assert out.recommendations == []
    assert out.failure == "Timeout"


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _http_client(handler):
    return HttpCatalogClient(
        base_url="http://catalog.test",
        api_key="k",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_http_client_parses_books():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(
            200,
            json={"books": [{"id": "9", "title": "Gone Girl", "rating": 4.12, "ratingsCount": 3012456}]},
        )

    books = await _http_client(handler).get_highly_rated(4.0, 100, ["Thriller"], 10)

    assert [b.title for b in books] == ["Gone Girl"]
    assert books[0].ratings_count == 3012456
    assert seen["path"] == "/books/highly-rated"
    assert seen["params"]["genres"] == "Thriller"
    assert seen["auth"] == "Bearer k"


@pytest.mark.asyncio
async def test_http_client_maps_errors():
    client = _http_client(lambda request: httpx.Response(502))
    with pytest.raises(CatalogServiceError):
        await client.search_popular_by_genre("Fantasy", 5)

    client = _http_client(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(CatalogServiceError):
        await client.search_popular_by_genre("Fantasy", 5)
