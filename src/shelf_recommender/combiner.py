"""Merge LLM and catalog candidates under a fixed source mix.

The merge is a three-phase walk over two FIFO queues:

1. ``ai-primary``: LLM (or rule-based) candidates until ``ceil(AI_SHARE * N)``
   of them are admitted or the queue runs dry.
2. ``goodreads-diversity``: catalog candidates until ``N - ceil(AI_SHARE * N)``
   of them are admitted or the queue runs dry.
3. ``mixed-fill``: whatever is left, LLM queue first, until ``N`` is reached.

Admission is by normalized title; a later duplicate is skipped, never
swapped in for the earlier one.
"""

from __future__ import annotations

import math
import re
from collections import deque
from typing import Deque, List, Optional, Sequence

from common.structured_logging import get_logger

from .config import PipelineConfig
from .models import Recommendation

logger = get_logger(__name__)

_WS = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """Case-folded, whitespace-collapsed title used for de-duplication."""
    return _WS.sub(" ", title.casefold()).strip()


class _Admission:
    def __init__(self, target: int):
        self.target = target
        self.items: List[Recommendation] = []
        self.seen: set[str] = set()

    @property
    def full(self) -> bool:
        return len(self.items) >= self.target

    def drain(self, queue: Deque[Recommendation], label: str, quota: Optional[int] = None) -> int:
        admitted = 0
        while queue and not self.full and (quota is None or admitted < quota):
            rec = queue.popleft()
            key = normalize_title(rec.title)
            if key in self.seen:
                continue
            self.seen.add(key)
            self.items.append(rec.model_copy(update={"combination_source": label}))
            admitted += 1
        return admitted


def combine_candidates(
    llm_candidates: Sequence[Recommendation],
    catalog_candidates: Sequence[Recommendation],
    target_size: int | None = None,
    config: PipelineConfig | None = None,
) -> List[Recommendation]:
    cfg = config or PipelineConfig()
    n = target_size or cfg.DEFAULT_COMBINED_SIZE
    ai_quota = math.ceil(round(n * cfg.AI_SHARE, 9))

    llm_queue = deque(llm_candidates)
    catalog_queue = deque(catalog_candidates)
    merged = _Admission(n)

    ai_count = merged.drain(llm_queue, "ai-primary", ai_quota)
    catalog_count = merged.drain(catalog_queue, "goodreads-diversity", n - ai_quota)
    fill_count = merged.drain(llm_queue, "mixed-fill")
    fill_count += merged.drain(catalog_queue, "mixed-fill")

    logger.debug(
        "Candidates combined",
        extra={
            "target_size": n,
            "ai_primary": ai_count,
            "goodreads_diversity": catalog_count,
            "mixed_fill": fill_count,
            "total": len(merged.items),
        },
    )
    return merged.items
