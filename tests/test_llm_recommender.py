import asyncio

import pytest

from common.llm_client import (
    LLMServiceRateLimitError,
    LLMServiceTimeoutError,
    LLMServiceUnavailableError,
)
from shelf_recommender.llm_recommender import LanguageModelRecommender
from shelf_recommender.models import UserPreferences
from shelf_recommender.profile import analyze_reading_profile

from conftest import FakeLLMClient, llm_payload


def _run(client, books, max_recommendations=10):
    rec = LanguageModelRecommender(client)
    return rec.recommend(
        books,
        analyze_reading_profile(books),
        UserPreferences(),
        max_recommendations=max_recommendations,
    )


@pytest.mark.asyncio
async def test_successful_completion_is_used(sci_fi_shelf):
    client = FakeLLMClient(llm_payload("Hyperion", "Foundation"))
    out = await _run(client, sci_fi_shelf)

    assert not out.used_fallback
    assert out.failure is None
    assert [r.title for r in out.recommendations] == ["Hyperion", "Foundation"]
    assert all(r.source == "ai-generated" for r in out.recommendations)
    assert len(client.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        LLMServiceTimeoutError("slow"),
        LLMServiceRateLimitError("quota"),
        LLMServiceUnavailableError("down"),
        RuntimeError("boom"),
    ],
)
async def test_client_failures_fall_back_to_rules(sci_fi_shelf, error):
    out = await _run(FakeLLMClient(error=error), sci_fi_shelf)

    assert out.used_fallback
    assert out.failure == type(error).__name__
    assert out.recommendations
    assert {r.source for r in out.recommendations} <= {"rule-based-genre", "rule-based-discovery"}


@pytest.mark.asyncio
async def test_malformed_completion_falls_back(sci_fi_shelf):
    out = await _run(FakeLLMClient("Sorry, I can't produce JSON today."), sci_fi_shelf)
    assert out.used_fallback
    assert out.failure == "MalformedResponse"
    assert all(r.source.startswith("rule-based") for r in out.recommendations)


@pytest.mark.asyncio
async def test_cancellation_is_not_swallowed(sci_fi_shelf):
    out = _run(FakeLLMClient(error=asyncio.CancelledError()), sci_fi_shelf)
    with pytest.raises(asyncio.CancelledError):
        await out


@pytest.mark.asyncio
async def test_fallback_uses_the_requested_llm_count(sci_fi_shelf):
    client = FakeLLMClient(error=LLMServiceTimeoutError("slow"))
    out = await _run(client, sci_fi_shelf, max_recommendations=None)

    assert "provide 10 personalized book recommendations" in client.calls[0]["user"]
    # N = 10: four table titles for Science Fiction plus max(1, floor(0.1 * 10)) discovery
    assert [r.source for r in out.recommendations].count("rule-based-discovery") == 1
    assert len(out.recommendations) == 5
