# Path: core/models/__init__.py
# Purpose: Package initializer for domain model definitions.
# Layer: core/models.
# Details: Exposes dataclasses used across expansion, retrieval, ranking and logging layers.

from .domain import (
    ALL_CATEGORIES,
    EXPANSION_SOURCE,
    SEARCHBAR_SOURCE,
    VIBEFILTER_SOURCE,
    Concept,
    ExtensionCacheEntry,
    ExtensionKey,
    HubStats,
    ImageCandidate,
    ImpressionItem,
    PopularityStats,
    RankedResult,
    ScoredCandidate,
    SearchQuery,
    SourceMode,
)

__all__ = [
    "ALL_CATEGORIES",
    "EXPANSION_SOURCE",
    "SEARCHBAR_SOURCE",
    "VIBEFILTER_SOURCE",
    "Concept",
    "ExtensionCacheEntry",
    "ExtensionKey",
    "HubStats",
    "ImageCandidate",
    "ImpressionItem",
    "PopularityStats",
    "RankedResult",
    "ScoredCandidate",
    "SearchQuery",
    "SourceMode",
]
