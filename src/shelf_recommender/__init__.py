"""Shelf-scan book recommendation pipeline."""

from .engine import RecommendationEngine
from .errors import InvalidInputError, RecommendationEngineError
from .models import (
    DetectedBook,
    RecommendationOptions,
    RecommendationResult,
    UserPreferences,
)

__all__ = [
    "RecommendationEngine",
    "RecommendationEngineError",
    "InvalidInputError",
    "DetectedBook",
    "UserPreferences",
    "RecommendationOptions",
    "RecommendationResult",
]
