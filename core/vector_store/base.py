# Path: core/vector_store/base.py
# Purpose: Define the VectorIndex interface for nearest-neighbor retrieval of image embeddings.
# Layer: core/vector_store.
# Details: Provides async search by cosine similarity, batched candidate lookup and persistence.

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, NamedTuple, Optional, Sequence

import numpy as np

from core.models.domain import ImageCandidate


class Neighbor(NamedTuple):
    """One nearest-neighbor hit."""

    candidate_id: str
    similarity: float
    category: str


class VectorIndex(ABC):
    """Abstract base class for pluggable vector index backends."""

    name: str
    dim: int

    @abstractmethod
    def add(self, ids: Sequence[str], vectors: np.ndarray, payloads: Optional[Sequence[Dict]] = None) -> None:
        """Add vectors with their payloads (collection_id, category) into the index."""

    @abstractmethod
    async def nearest(self, query: np.ndarray, k: int, category: Optional[str] = None) -> List[Neighbor]:
        """Return up to k neighbors ordered by descending similarity, ties by candidate id."""

    @abstractmethod
    async def get_candidates(self, ids: Sequence[str]) -> Dict[str, ImageCandidate]:
        """Return candidates (embedding, category, collection) for the given identifiers."""

    @abstractmethod
    def save(self, path: str) -> None:
        """Persist the index to disk."""

    @abstractmethod
    def load(self, path: str) -> None:
        """Load a serialized index from disk."""
