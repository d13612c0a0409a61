from __future__ import annotations

import os
import random

__all__ = ["seed_random"]


def seed_random(seed: int | None = None) -> int:
    """Seed Python's RNG so retry jitter and fixtures are reproducible.

    If *seed* is ``None`` a deterministic seed is derived from the
    ``TEST_RANDOM_SEED`` environment variable or falls back to *42*.

    Returns the seed used so callers can log or assert against it.
    """
    if seed is None:
        seed = int(os.getenv("TEST_RANDOM_SEED", "42"))

    random.seed(seed)

    return seed
