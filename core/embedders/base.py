# Path: core/embedders/base.py
# Purpose: Define the Embedder interface for text and image embeddings.
# Layer: core/embedders.
# Details: Async, batched contract; every returned vector is L2-normalized and has a fixed dimension.

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np


class Embedder(ABC):
    """Abstract base class for the embedding provider used by the search pipeline."""

    name: str
    dim: int

    @abstractmethod
    async def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        """Return a (len(texts), dim) matrix of unit-length text embeddings in one call."""

    @abstractmethod
    async def embed_image(self, image_bytes: bytes) -> np.ndarray:
        """Return a unit-length embedding for encoded image bytes."""

    async def embed_text(self, text: str) -> np.ndarray:
        """Return the embedding of a single text."""

        return (await self.embed_texts([text]))[0]

    async def aclose(self) -> None:
        """Release network resources held by the provider, if any."""

    @staticmethod
    def _normalize(vector: np.ndarray) -> np.ndarray:
        """Normalize embedding vectors to unit length to simplify similarity comparisons."""

        norm = np.linalg.norm(vector)
        if norm == 0:
            return vector.astype(np.float32)
        return (vector / norm).astype(np.float32)

    @staticmethod
    def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
        """Row-wise variant of :meth:`_normalize`; zero rows stay zero."""

        matrix = np.asarray(matrix, dtype=np.float32)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return (matrix / norms).astype(np.float32)
