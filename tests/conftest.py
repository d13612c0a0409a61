import sys
from pathlib import Path

# Ensure the project's `src/` directory is on sys.path so test modules
# can import `common` and `shelf_recommender` without installing the
# package first.
root_dir = Path(__file__).resolve().parents[1]
src_dir = root_dir / "src"
if src_dir.exists() and str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from common.testing import seed_random  # noqa: E402

seed_random(123)

# -----------------------------------------------------------------------------
# Fakes for the external collaborators
# -----------------------------------------------------------------------------

import json  # noqa: E402

import pytest  # noqa: E402

from shelf_recommender.cache import MemoryResultCache  # noqa: E402
from shelf_recommender.catalog import InMemoryCatalogClient  # noqa: E402
from shelf_recommender.config import ScoringWeights  # noqa: E402
from shelf_recommender.engine import RecommendationEngine  # noqa: E402
from shelf_recommender.models import DetectedBook  # noqa: E402


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLLMClient:
    """Stands in for ``common.llm_client.LLMClient``."""

    def __init__(self, text: str = "", error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls = []

    async def complete(self, system_prompt, user_prompt, model=None, request_id=None):
        self.calls.append({"system": system_prompt, "user": user_prompt, "model": model})
        if self.error is not None:
            raise self.error
        return self.text


def llm_payload(*titles, genre="Science Fiction", confidence=0.8):
    return json.dumps(
        {
            "recommendations": [
                {
                    "title": t,
                    "author": f"Author of {t}",
                    "genre": genre,
                    "reason": "Fits the shelf",
                    "confidence": confidence,
                    "themes": ["space"],
                    "publication_year": 2015,
                }
                for t in titles
            ],
            "reasoning": {"recommendation_strategy": "similar themes"},
        }
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sci_fi_shelf():
    return [
        DetectedBook(title="Dune", author="Frank Herbert", genre="Science Fiction", confidence=0.9),
        DetectedBook(title="1984", author="George Orwell", genre="Science Fiction", confidence=0.8),
    ]


@pytest.fixture
def make_engine(clock):
    """Engine wired to fakes: no network, no enrichment, default weights."""

    def _make(llm=None, catalog=None, enricher=None, **kwargs):
        engine = RecommendationEngine(
            llm_client=llm or FakeLLMClient(llm_payload("Hyperion", "Foundation")),
            catalog_client=catalog or InMemoryCatalogClient(),
            cache=MemoryResultCache(ttl_seconds=7200, clock=clock),
            weights=ScoringWeights(),
            current_year=2024,
            **kwargs,
        )
        engine.enricher = enricher
        return engine

    return _make
