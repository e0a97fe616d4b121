# Path: core/models/domain.py
# Purpose: Define domain models shared across expansion, retrieval, reranking and logging.
# Layer: core/models.
# Details: Lightweight dataclasses; everything except ExtensionCacheEntry lives for one request only.

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

import numpy as np


class SourceMode(str, Enum):
    """Where a query came from: the literal search bar or the vibe filter."""

    CONCRETE = "concrete"
    VIBE = "vibe"


# Source names under which cached extensions are persisted.
SEARCHBAR_SOURCE = "searchbar"
VIBEFILTER_SOURCE = "vibefilter"
EXPANSION_SOURCE = "expansion"
ALL_CATEGORIES = "all"


@dataclass(frozen=True)
class SearchQuery:
    """User-facing query structure supplied by API and script layers."""

    text: str = ""
    category: Optional[str] = None
    source_mode: Optional[SourceMode] = None
    main_concept: Optional[str] = None
    additions: Tuple[str, ...] = ()
    sliders: Mapping[str, float] = field(default_factory=dict)
    debug: bool = False
    limit: Optional[int] = None
    image: Optional[bytes] = None

    @property
    def is_composite(self) -> bool:
        """True for assistant refinements carrying a main concept plus additions."""

        return bool(self.main_concept and self.main_concept.strip() and any(a.strip() for a in self.additions))

    @property
    def combined_text(self) -> str:
        """Main concept and additions joined the way the assistant phrases them."""

        if not self.is_composite:
            return self.text
        parts = [self.main_concept.strip()] + [a.strip() for a in self.additions if a.strip()]  # type: ignore[union-attr]
        return ", ".join(parts)


class ExtensionKey(NamedTuple):
    """Cache key of one generated extension."""

    term: str
    category: str
    source: str

    @classmethod
    def of(cls, term: str, category: str, source: str) -> "ExtensionKey":
        return cls(term.strip().lower(), category, source)


@dataclass
class ExtensionCacheEntry:
    """Generated extension text and the unit-norm embedding of "term, extension"."""

    key: ExtensionKey
    text: str
    embedding: np.ndarray
    model: str = "unknown"
    last_used_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class HubStats:
    """Over-exposure statistics computed out-of-band for one image."""

    hub_count: int
    hub_score: float
    avg_similarity: float
    avg_similarity_margin: float


@dataclass(frozen=True)
class PopularityStats:
    """Impression and click counts within the recent window."""

    show_count: int
    click_count: int

    @property
    def ctr(self) -> float:
        if self.show_count <= 0:
            return 0.0
        return round(self.click_count / self.show_count, 4)


@dataclass
class ImageCandidate:
    """An embedded design image owned by a collection (site, brand, product)."""

    id: str
    collection_id: str
    category: str
    embedding: np.ndarray
    hub: Optional[HubStats] = None
    popularity: Optional[PopularityStats] = None


@dataclass
class ScoredCandidate:
    """Candidate plus every score component produced by the reranker."""

    candidate: ImageCandidate
    base_score: float
    adjusted_base_score: float = 0.0
    hub_multiplier: float = 1.0
    boost: float = 0.0
    penalty: float = 0.0
    popularity_penalty: float = 0.0
    final_score: float = 0.0
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.candidate.id


@dataclass
class RankedResult:
    """Ordered, collection-deduplicated results of one search."""

    items: List[ScoredCandidate] = field(default_factory=list)
    total: int = 0
    route: str = "direct"
    extensions: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Concept:
    """Vocabulary entry with an optional embedding and recorded opposites."""

    id: str
    label: str
    embedding: Optional[np.ndarray] = None
    opposites: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ImpressionItem:
    """One shown result as recorded for reranker training."""

    candidate_id: str
    position: int
    base_score: float
    features: Dict[str, Any] = field(default_factory=dict)
