# Path: core/errors.py
# Purpose: Define the exception hierarchy used by the search core.
# Layer: core.
# Details: Only SearchUnavailableError is allowed to cross the pipeline boundary; the rest degrade internally.

from __future__ import annotations


class SearchError(Exception):
    """Base class for search core errors."""


class EmbeddingProviderError(SearchError):
    """Raised when the embedding provider fails or returns an unusable payload."""


class LLMProviderError(SearchError):
    """Raised when the LLM expansion provider fails or times out."""


class SearchUnavailableError(SearchError):
    """Raised when the primary query vector cannot be produced."""

    code = "SEARCH_UNAVAILABLE"

    def __init__(self, message: str = "Search is temporarily unavailable.") -> None:
        super().__init__(message)
        self.message = message


__all__ = ["SearchError", "EmbeddingProviderError", "LLMProviderError", "SearchUnavailableError"]
