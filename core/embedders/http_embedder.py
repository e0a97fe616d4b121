# Path: core/embedders/http_embedder.py
# Purpose: Call a remote CLIP embedding service over HTTP.
# Layer: core/embedders.
# Details: Speaks the /embed/text and /embed/image JSON protocol with bearer authentication.

from __future__ import annotations

import base64
import logging
from typing import Optional, Sequence

import httpx
import numpy as np

from core.errors import EmbeddingProviderError
from .base import Embedder

logger = logging.getLogger(__name__)


class HttpEmbedder(Embedder):
    """Embedder backed by the standalone embedding service."""

    def __init__(
        self,
        service_url: str,
        api_key: Optional[str] = None,
        dim: int = 512,
        timeout_s: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.name = "http"
        self.dim = dim
        self.service_url = service_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._timeout = timeout_s
        self._client = client

    async def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        """Embed a batch of texts with one service call."""

        if not texts:
            return np.empty((0, self.dim), dtype=np.float32)
        payload = await self._post("/embed/text", {"texts": list(texts)})
        matrix = self._matrix(payload.get("embeddings"), expected=len(texts))
        return self._normalize_rows(matrix)

    async def embed_image(self, image_bytes: bytes) -> np.ndarray:
        """Embed one encoded image."""

        encoded = base64.b64encode(image_bytes).decode("ascii")
        payload = await self._post("/embed/image", {"image": encoded})
        matrix = self._matrix([payload.get("embedding")], expected=1)
        return self._normalize(matrix[0])

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, body: dict) -> dict:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        try:
            response = await self._client.post(f"{self.service_url}{path}", json=body, headers=self._headers)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Embedding service call %s failed: %s", path, exc)
            raise EmbeddingProviderError(f"Embedding service call {path} failed: {exc}") from exc

    def _matrix(self, rows: object, expected: int) -> np.ndarray:
        try:
            matrix = np.asarray(rows, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise EmbeddingProviderError("Embedding service returned a malformed payload.") from exc
        if matrix.ndim != 2 or matrix.shape[0] != expected or matrix.shape[1] != self.dim:
            raise EmbeddingProviderError(
                f"Embedding service returned shape {matrix.shape}, expected ({expected}, {self.dim})."
            )
        return matrix
