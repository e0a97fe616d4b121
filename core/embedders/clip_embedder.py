# Path: core/embedders/clip_embedder.py
# Purpose: Provide a lightweight local CLIP-style embedder.
# Layer: core/embedders.
# Details: Deterministic numpy projections used offline and in tests in place of a hosted CLIP model.

from __future__ import annotations

import hashlib
import io
import re
from typing import Sequence

import numpy as np
from PIL import Image, UnidentifiedImageError

from core.errors import EmbeddingProviderError
from .base import Embedder

TOKEN_RE = re.compile(r"[a-z0-9]+")


class ClipEmbedder(Embedder):
    """Stub implementation that mimics CLIP behavior with lightweight operations.

    Text vectors are a bag of hashed token directions, so texts sharing words
    are similar; image vectors pool pixel statistics.
    """

    def __init__(self, model_name: str = "clip-vit-large-patch14", dim: int = 512) -> None:
        self.model_name = model_name
        self.dim = dim
        self.name = "clip"

    async def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        """Generate deterministic text embeddings based on token hashing."""

        if not texts:
            return np.empty((0, self.dim), dtype=np.float32)
        return self._normalize_rows(np.vstack([self._text_vector(text) for text in texts]))

    async def embed_image(self, image_bytes: bytes) -> np.ndarray:
        """Generate a deterministic image embedding based on pixel statistics."""

        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                resized = image.convert("RGB").resize((32, 32))
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise EmbeddingProviderError(f"Could not decode query image: {exc}") from exc
        vector = np.asarray(resized, dtype=np.float32).flatten()
        pooled = np.concatenate([
            [vector.mean(), vector.std()],
            np.percentile(vector, [25, 50, 75]).astype(np.float32),
        ])
        padded = np.pad(pooled, (0, max(0, self.dim - pooled.size)), mode="wrap")
        return self._normalize(padded[: self.dim])

    def _text_vector(self, text: str) -> np.ndarray:
        tokens = TOKEN_RE.findall(text.lower()) or [text.strip().lower()]
        vector = np.zeros(self.dim, dtype=np.float32)
        for token in tokens:
            vector += self._token_direction(token)
        return vector

    def _token_direction(self, token: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(token.encode("utf-8")).digest()[:8], "little")
        rng = np.random.default_rng(seed)
        return rng.standard_normal(self.dim).astype(np.float32)
