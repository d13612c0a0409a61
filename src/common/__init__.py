"""
Shared utilities for the shelf recommender.
Import surface: `from common import settings`.
For settings, always import directly from `common.settings` for reliability.
"""

from .settings import settings

__all__ = [
    "settings",
]
