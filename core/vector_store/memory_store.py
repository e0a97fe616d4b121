# Path: core/vector_store/memory_store.py
# Purpose: Provide an in-memory cosine-similarity vector index.
# Layer: core/vector_store.
# Details: Implements add/nearest/save/load with numpy; rows are kept unit-normalized so dot product is cosine.

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from core.models.domain import ImageCandidate
from .base import Neighbor, VectorIndex


class InMemoryVectorIndex(VectorIndex):
    """Exact nearest-neighbor index compatible with the search pipeline.

    Scans every row, which keeps ordering exact and deterministic: similarity
    descending, then candidate id ascending.
    """

    def __init__(self, dim: int, name: str = "memory") -> None:
        self.dim = dim
        self.name = name
        self._ids: List[str] = []
        self._positions: Dict[str, int] = {}
        self._vectors: Optional[np.ndarray] = None
        self._payloads: Dict[str, Dict] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, ids: Sequence[str], vectors: np.ndarray, payloads: Optional[Sequence[Dict]] = None) -> None:
        """Add vectors to the index with payload metadata."""

        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.dim:
            raise ValueError(f"Vector dimensionality {vectors.shape} does not match index dimension {self.dim}.")

        payloads = list(payloads) if payloads is not None else [{} for _ in ids]
        if len(payloads) != len(ids) or len(ids) != vectors.shape[0]:
            raise ValueError("Ids, vectors and payloads must have the same length.")

        duplicates = [item_id for item_id in ids if item_id in self._positions]
        if duplicates or len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate candidate ids: {sorted(set(duplicates)) or 'within batch'}")

        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        vectors = vectors / norms

        offset = len(self._ids)
        self._vectors = vectors if self._vectors is None else np.vstack([self._vectors, vectors])
        for position, (item_id, payload) in enumerate(zip(ids, payloads)):
            self._ids.append(item_id)
            self._positions[item_id] = offset + position
            self._payloads[item_id] = {
                "collection_id": str(payload.get("collection_id", item_id)),
                "category": str(payload.get("category", "")),
            }

    async def nearest(self, query: np.ndarray, k: int, category: Optional[str] = None) -> List[Neighbor]:
        """Return the k most similar rows, optionally restricted to one category."""

        if self._vectors is None or not self._ids or k <= 0:
            return []
        if query.shape[-1] != self.dim:
            raise ValueError(f"Query dimensionality {query.shape[-1]} does not match index dimension {self.dim}.")

        similarities = self._vectors @ query.astype(np.float32).reshape(-1)
        rows = range(len(self._ids))
        if category:
            rows = [row for row in rows if self._payloads[self._ids[row]]["category"] == category]
        ordered = sorted(rows, key=lambda row: (-float(similarities[row]), self._ids[row]))

        return [
            Neighbor(self._ids[row], float(similarities[row]), self._payloads[self._ids[row]]["category"])
            for row in ordered[:k]
        ]

    async def get_candidates(self, ids: Sequence[str]) -> Dict[str, ImageCandidate]:
        """Return stored embeddings and payloads for the given identifiers; unknown ids are skipped."""

        candidates: Dict[str, ImageCandidate] = {}
        if self._vectors is None:
            return candidates
        for item_id in ids:
            row = self._positions.get(item_id)
            if row is None:
                continue
            payload = self._payloads[item_id]
            candidates[item_id] = ImageCandidate(
                id=item_id,
                collection_id=payload["collection_id"],
                category=payload["category"],
                embedding=self._vectors[row],
            )
        return candidates

    def save(self, path: str) -> None:
        """Persist vectors and payloads to disk as lightweight JSON + numpy arrays."""

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        np.save(target.with_suffix(".npy"), self._vectors if self._vectors is not None else np.empty((0, self.dim)))
        target.with_suffix(".json").write_text(json.dumps({"ids": self._ids, "payloads": self._payloads}))

    def load(self, path: str) -> None:
        """Load vectors and payloads previously saved by :meth:`save`."""

        target = Path(path)
        vector_path = target.with_suffix(".npy")
        metadata_path = target.with_suffix(".json")
        if not vector_path.exists() or not metadata_path.exists():
            raise FileNotFoundError(f"Missing vector index files for {path}.")

        vectors = np.load(vector_path).astype(np.float32)
        metadata = json.loads(metadata_path.read_text())
        self._ids = [str(item_id) for item_id in metadata.get("ids", [])]
        self._positions = {item_id: row for row, item_id in enumerate(self._ids)}
        self._payloads = {str(k): v for k, v in metadata.get("payloads", {}).items()}
        self._vectors = vectors if self._ids else None
