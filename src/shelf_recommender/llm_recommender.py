"""LLM-backed candidate generation with a rule-based safety net.

One prompt, one completion, one parse. Whatever goes wrong on that path
(transport, quota, auth, timeout, unparseable output) the caller still gets
a candidate list: the rule-based tables take over and the failure is only
reported through ``LLMCandidates.failure``.
"""

from __future__ import annotations

from typing import List, NamedTuple, Optional, Sequence

from common.llm_client import LLMClient, LLMServiceError
from common.structured_logging import get_logger

from .config import PipelineConfig
from .models import DetectedBook, ReadingProfile, Recommendation, UserPreferences
from .prompts import LLMResponseMalformed, build_prompt, parse_llm_response
from .rule_based import RuleBasedRecommender

logger = get_logger(__name__)


class LLMCandidates(NamedTuple):
    recommendations: List[Recommendation]
    used_fallback: bool
    failure: Optional[str] = None


class LanguageModelRecommender:
    def __init__(
        self,
        client: LLMClient,
        fallback: RuleBasedRecommender | None = None,
        config: PipelineConfig | None = None,
    ):
        self.client = client
        self.config = config or PipelineConfig()
        self.fallback = fallback or RuleBasedRecommender(self.config)

    async def recommend(
        self,
        books: Sequence[DetectedBook],
        profile: ReadingProfile,
        preferences: UserPreferences,
        max_recommendations: int | None = None,
        model: str | None = None,
        request_id: str | None = None,
    ) -> LLMCandidates:
        """Ask the LLM for candidates, falling back to the rule tables.

        ``asyncio.CancelledError`` is not a failure of the LLM path and is
        propagated untouched.
        """
        count = max_recommendations or self.config.DEFAULT_RESPONSE_SIZE
        system_prompt, user_prompt = build_prompt(
            books, profile, preferences, count, self.config
        )

        try:
            text = await self.client.complete(
                system_prompt, user_prompt, model=model, request_id=request_id
            )
        except LLMServiceError as e:
            return self._fallback(books, profile, count, type(e).__name__, str(e))
        except Exception as e:
            logger.exception("Unexpected error from LLM client")
            return self._fallback(books, profile, count, type(e).__name__, str(e))

        parsed = parse_llm_response(text, self.config)
        if isinstance(parsed, LLMResponseMalformed):
            return self._fallback(
                books,
                profile,
                count,
                "MalformedResponse",
                parsed.reason,
                raw_preview=parsed.raw_text[:200],
            )

        logger.info(
            "LLM recommendations parsed",
            extra={
                "count": len(parsed.recommendations),
                "strategy": parsed.reasoning.get("recommendation_strategy"),
            },
        )
        return LLMCandidates(parsed.recommendations, used_fallback=False)

    def _fallback(
        self,
        books: Sequence[DetectedBook],
        profile: ReadingProfile,
        count: int,
        failure: str,
        detail: str,
        **extra,
    ) -> LLMCandidates:
        logger.warning(
            "LLM path failed, using rule-based recommendations",
            extra={"failure": failure, "detail": detail, **extra},
        )
        recs = self.fallback.recommend(books, profile, count)
        return LLMCandidates(recs, used_fallback=True, failure=failure)
