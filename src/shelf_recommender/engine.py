"""Core recommendation pipeline, independent of any HTTP layer.

One call to ``RecommendationEngine.generate_recommendations`` runs:

1.   Input validation (the only place a caller-visible error can originate).
2.   Cache lookup, keyed by the request content.
3.   Reading-profile analysis.
4.   LLM candidates and catalog candidates, concurrently; each falls back on
     its own (rule tables / empty list) without failing the request.
5.   Combination under the 70/30 source mix.
6.   Optional Google Books enrichment.
7.   Scoring, ranking, truncation and the response envelope.

Mutable state (result cache + admin statistics) belongs to the engine
instance via ``EngineState``. Statistics for a run are committed only when
the run finishes, so a cancelled request leaves no trace.
"""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from common.llm_client import LLMClient
from common.metrics import PIPELINE_LATENCY, record_external_call, record_request
from common.settings import settings as S
from common.structured_logging import (
    SERVICE_NAME,
    get_logger,
    log_error_with_context,
    set_request_context,
)

from .cache import ResultCache, make_cache_key, make_result_cache
from .catalog import CatalogClient, CatalogRecommender, make_catalog_client
from .combiner import combine_candidates
from .config import PipelineConfig, ScoringWeights
from .enrichment import MetadataEnricher
from .errors import InvalidInputError, RecommendationEngineError
from .llm_recommender import LanguageModelRecommender
from .models import (
    DetectedBook,
    Explanations,
    ReadingProfile,
    Recommendation,
    RecommendationOptions,
    RecommendationResult,
    ResponseMetadata,
    UserPreferences,
)
from .profile import analyze_reading_profile
from .rule_based import RuleBasedRecommender
from .scoring import rank_candidates

logger = get_logger(__name__)

BookInput = Union[DetectedBook, Mapping[str, Any]]

EXTERNALS = ("llm", "catalog", "metadata")
POPULAR_GENRES_LIMIT = 10


class _RunStats:
    """Per-request deltas, merged into ``EngineState`` on completion."""

    def __init__(self):
        self.external: Dict[str, Dict[str, int]] = {
            name: {"success": 0, "failure": 0} for name in EXTERNALS
        }
        self.llm_fallback = False
        self.cache_hit: Optional[bool] = None

    def call(self, external: str, ok: bool, count: int = 1) -> None:
        if count <= 0:
            return
        outcome = "success" if ok else "failure"
        self.external[external][outcome] += count
        record_external_call(external, outcome)


class EngineState:
    """Cache plus admin counters, guarded by one lock."""

    def __init__(self, cache: ResultCache):
        self.cache = cache
        self._lock = threading.Lock()
        self.requests_served = 0
        self.failed_requests = 0
        self.llm_fallbacks = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.total_books = 0
        self.sessions: set[str] = set()
        self.genre_requests: Dict[str, int] = {}
        self.external: Dict[str, Dict[str, int]] = {
            name: {"success": 0, "failure": 0} for name in EXTERNALS
        }

    def commit(
        self,
        run: _RunStats,
        session_id: Optional[str],
        result: RecommendationResult,
    ) -> None:
        with self._lock:
            self.requests_served += 1
            if session_id:
                self.sessions.add(session_id)
            self.total_books += result.metadata.based_on_books
            for g in result.reading_profile.top_genres:
                self.genre_requests[g.genre] = self.genre_requests.get(g.genre, 0) + 1
            if run.cache_hit is True:
                self.cache_hits += 1
            elif run.cache_hit is False:
                self.cache_misses += 1
            if run.llm_fallback:
                self.llm_fallbacks += 1
            for name, counts in run.external.items():
                for outcome, n in counts.items():
                    self.external[name][outcome] += n

    def record_failure(self) -> None:
        with self._lock:
            self.failed_requests += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            popular = sorted(self.genre_requests.items(), key=lambda kv: kv[1], reverse=True)
            return {
                "requests_served": self.requests_served,
                "failed_requests": self.failed_requests,
                "unique_sessions": len(self.sessions),
                "average_books_per_request": (
                    self.total_books / self.requests_served if self.requests_served else 0.0
                ),
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "llm_fallbacks": self.llm_fallbacks,
                "external_calls": {k: dict(v) for k, v in self.external.items()},
                "popular_genres": [
                    {"genre": g, "requests": n} for g, n in popular[:POPULAR_GENRES_LIMIT]
                ],
            }


def generate_explanation(
    book_count: int, recommendations: Sequence[Recommendation], profile: ReadingProfile
) -> str:
    if book_count == 0:
        return "No books were detected on your shelf, so there is nothing to base recommendations on yet."
    if profile.top_genres:
        top = profile.top_genres[0]
        text = (
            f"Based on your collection of {book_count} books, we noticed you enjoy "
            f"{top.genre.lower()} ({top.percentage}% of your collection). "
        )
    else:
        text = f"We looked at your collection of {book_count} books. "
    if profile.diversity > 0.7:
        text += (
            "You have a wonderfully diverse reading taste, so we've included "
            "recommendations across multiple genres. "
        )
    elif 0 < profile.diversity < 0.3:
        text += (
            "We've focused on your preferred genres but also included a few "
            "discoveries to broaden your horizons. "
        )
    text += (
        f"These {len(recommendations)} recommendations are carefully selected "
        "to complement your existing library."
    )
    return text


class RecommendationEngine:
    def __init__(
        self,
        llm_client: LLMClient | None = None,
        catalog_client: CatalogClient | None = None,
        enricher: MetadataEnricher | None = None,
        cache: ResultCache | None = None,
        config: PipelineConfig | None = None,
        weights: ScoringWeights | None = None,
        settings=None,
        current_year: int | None = None,
    ):
        self.settings = settings or S
        self.config = config or PipelineConfig.from_env()
        self.weights = weights or ScoringWeights.from_file(self.settings.weights_path)
        self.current_year = current_year

        self.llm = LanguageModelRecommender(
            llm_client or LLMClient(self.settings),
            RuleBasedRecommender(self.config),
            self.config,
        )
        self.catalog = CatalogRecommender(
            catalog_client or make_catalog_client(self.settings),
            self.config,
            timeout=self.settings.catalog_request_timeout,
        )
        if enricher is None and self.settings.enrichment_enabled:
            enricher = MetadataEnricher()
        self.enricher = enricher
        self.state = EngineState(cache or make_result_cache(self.settings))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_recommendations(
        self,
        books: Sequence[BookInput],
        preferences: UserPreferences | Mapping[str, Any] | None = None,
        session_id: str | None = None,
        options: RecommendationOptions | Mapping[str, Any] | None = None,
    ) -> RecommendationResult:
        """Produce the ranked recommendation envelope for one shelf.

        Raises:
            InvalidInputError: books, preferences or options fail validation
            RecommendationEngineError: any other unexpected pipeline failure
        """
        started = time.perf_counter()
        request_id = set_request_context(session_id=session_id)

        try:
            valid_books, prefs, opts = self._validate(books, preferences, options)
        except InvalidInputError:
            self.state.record_failure()
            record_request("error")
            raise

        run = _RunStats()
        try:
            if not valid_books:
                result = self._envelope([], 0, analyze_reading_profile([]), [], started)
                self.state.commit(run, session_id, result)
                record_request("empty")
                return result

            key = make_cache_key(valid_books, prefs, opts)
            cached = await self.state.cache.get(key)
            if cached is not None:
                run.cache_hit = True
                result = RecommendationResult.model_validate(cached)
                result = result.model_copy(
                    update={
                        "metadata": result.metadata.model_copy(update={"from_cache": True})
                    }
                )
                self.state.commit(run, session_id, result)
                record_request("cached")
                logger.info("Returning cached recommendations", extra={"cache_key": key})
                return result

            run.cache_hit = False
            with logger.log_performance("recommendation_pipeline", book_count=len(valid_books)):
                result = await self._run_pipeline(valid_books, prefs, opts, run, request_id, started)
            await self.state.cache.set(key, result.model_dump(mode="json"))
            self.state.commit(run, session_id, result)
            record_request("success")
            PIPELINE_LATENCY.labels(SERVICE_NAME).observe(time.perf_counter() - started)
            return result

        except RecommendationEngineError:
            self.state.record_failure()
            record_request("error")
            raise
        except Exception as e:
            self.state.record_failure()
            record_request("error")
            log_error_with_context(logger, e, "generate_recommendations", book_count=len(valid_books))
            raise RecommendationEngineError(
                f"Recommendation generation failed: {e}",
                details={"cause": type(e).__name__},
            ) from e

    async def get_stats(self) -> Dict[str, Any]:
        stats = self.state.snapshot()
        stats["cache_size"] = await self.state.cache.size()
        stats["as_of"] = datetime.now(timezone.utc).isoformat()
        return stats

    async def clear_cache(self) -> int:
        cleared = await self.state.cache.clear()
        logger.info("Recommendation cache cleared", extra={"entries": cleared})
        return cleared

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, books, preferences, options):
        try:
            if isinstance(books, (str, bytes)) or not isinstance(books, Sequence):
                raise InvalidInputError("books must be a list of detected books")
            parsed = [
                b if isinstance(b, DetectedBook) else DetectedBook.model_validate(b)
                for b in books
            ]
            prefs = (
                preferences
                if isinstance(preferences, UserPreferences)
                else UserPreferences.model_validate(preferences or {})
            )
            opts = (
                options
                if isinstance(options, RecommendationOptions)
                else RecommendationOptions.model_validate(options or {})
            )
        except ValidationError as e:
            raise InvalidInputError(
                "Malformed recommendation request", details={"errors": e.errors(include_url=False)}
            ) from e

        valid = [b for b in parsed if b.title]
        if len(valid) < len(parsed):
            logger.info(
                "Dropped detected books without a title",
                extra={"dropped": len(parsed) - len(valid)},
            )
        return valid, prefs, opts

    async def _run_pipeline(
        self,
        books: List[DetectedBook],
        prefs: UserPreferences,
        opts: RecommendationOptions,
        run: _RunStats,
        request_id: str,
        started: float,
    ) -> RecommendationResult:
        profile = analyze_reading_profile(books)
        logger.info("Reading profile analyzed", extra={"summary": profile.summary})

        llm_out, catalog_out = await asyncio.gather(
            self.llm.recommend(
                books,
                profile,
                prefs,
                max_recommendations=opts.max_recommendations,
                model=opts.model,
                request_id=request_id,
            ),
            self.catalog.recommend(books, prefs),
        )
        run.call("llm", not llm_out.used_fallback)
        run.llm_fallback = llm_out.used_fallback
        run.call("catalog", catalog_out.failure is None)

        combined = combine_candidates(
            llm_out.recommendations,
            catalog_out.recommendations,
            opts.max_recommendations,
            self.config,
        )

        if self.enricher is not None and opts.include_metadata and combined:
            enriched = await self.enricher.enrich(combined)
            combined = enriched.recommendations
            run.call("metadata", True, enriched.succeeded)
            run.call("metadata", False, enriched.failed)

        ranked = rank_candidates(combined, prefs, profile, self.weights, self.current_year)
        limit = opts.max_recommendations or self.config.DEFAULT_RESPONSE_SIZE
        return self._envelope(ranked[:limit], len(books), profile, ranked, started)

    def _envelope(
        self,
        returned: List[Recommendation],
        book_count: int,
        profile: ReadingProfile,
        ranked: List[Recommendation],
        started: float,
    ) -> RecommendationResult:
        confidence = (
            sum(r.final_score or 0.0 for r in ranked) / len(ranked) if ranked else 0.0
        )
        return RecommendationResult(
            recommendations=returned,
            reading_profile=profile,
            explanations=Explanations(
                why=generate_explanation(book_count, returned, profile),
                top_genres=profile.top_genres,
                reading_style=profile.reading_style,
            ),
            metadata=ResponseMetadata(
                total_recommendations=len(ranked),
                processing_time_ms=int((time.perf_counter() - started) * 1000),
                timestamp=datetime.now(timezone.utc).isoformat(),
                confidence=round(confidence, 4),
                based_on_books=book_count,
            ),
        )
