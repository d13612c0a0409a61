"""
Error types for the recommendation pipeline.

Only ``RecommendationEngineError`` (and its subclasses) ever reaches a caller
of the engine; catalog and metadata errors are raised by the clients and
absorbed by the component that calls them.
"""

from typing import Any, Dict, Optional


class RecommendationEngineError(Exception):
    """Base exception for a failed recommendation run."""

    def __init__(
        self,
        message: str,
        error_type: str = "pipeline_error",
        error_code: str = "RECOMMENDATION_FAILED",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type,
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(RecommendationEngineError):
    """Detected books, preferences or options could not be validated."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_type="validation_error",
            error_code="INVALID_INPUT",
            details=details,
        )


class CatalogServiceError(Exception):
    """Raised by catalog clients for transport or payload failures."""
    pass


class MetadataLookupError(Exception):
    """Raised by the metadata client for a failed lookup."""
    pass
