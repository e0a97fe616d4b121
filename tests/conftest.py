"""Shared fakes and fixtures for the search pipeline tests."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

from config.settings import DEFAULT_CATEGORIES, AppSettings
from core.bootstrap import build_pipeline
from core.embedders.base import Embedder
from core.errors import EmbeddingProviderError, LLMProviderError
from core.vector_store.memory_store import InMemoryVectorIndex

VOCABULARY = (
    "3d", "models", "glossy", "techy", "minimal", "calm", "loud", "love",
) + DEFAULT_CATEGORIES

TOKEN_RE = re.compile(r"[a-z0-9]+")

GROUNDINGS = '```json\n["glossy rendered 3d objects", "isometric scenes with soft shadows"]\n```'
STRUCTURED = '["flat glossy style", "blue palette", "bold sans-serif", "centered composition"]'
EXPANSIONS = '{"expansions": ["soft pink gradient", "rounded warm shapes"]}'


class KeywordEmbedder(Embedder):
    """One axis per known word; every unknown word lands on the last axis."""

    def __init__(self, vocabulary: Sequence[str] = VOCABULARY, fail: bool = False) -> None:
        self.name = "keyword"
        self.axes = {word: position for position, word in enumerate(vocabulary)}
        self.dim = len(self.axes) + 1
        self.fail = fail
        self.calls: List[List[str]] = []

    def vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dim, dtype=np.float32)
        for token in TOKEN_RE.findall(text.lower()):
            vector[self.axes.get(token, self.dim - 1)] += 1.0
        return self._normalize(vector)

    async def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingProviderError("embedding service down")
        if not texts:
            return np.empty((0, self.dim), dtype=np.float32)
        return np.vstack([self.vector(text) for text in texts])

    async def embed_image(self, image_bytes: bytes) -> np.ndarray:
        if self.fail:
            raise EmbeddingProviderError("embedding service down")
        return self.vector(image_bytes.decode("utf-8", errors="ignore"))


class FakeLLM:
    """Answers by prompt type; can be slowed down or made to fail."""

    def __init__(
        self,
        delay: float = 0.0,
        fail: bool = False,
        classification: str = "concrete",
        overrides: Optional[Dict[str, str]] = None,
    ) -> None:
        self.model = "fake-llm"
        self.delay = delay
        self.fail = fail
        self.classification = classification
        self.overrides = overrides or {}
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise LLMProviderError("provider down")
        for marker, answer in self.overrides.items():
            if marker in prompt:
                return answer
        if "Classify the design search query" in prompt:
            return f'["{self.classification}"]'
        if "Expand the abstract query" in prompt:
            return EXPANSIONS
        if "exactly four short phrases" in prompt:
            return STRUCTURED
        return GROUNDINGS


class ClosableEmbedder(KeywordEmbedder):
    """Records whether the pipeline released it."""

    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class ClosableLLM(FakeLLM):
    """Records whether the pipeline released it."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


CATALOG = (
    ("1", "3d models glossy"),
    ("2", "techy 3d"),
    ("3", "techy minimal"),
    ("4", "calm minimal"),
)


def build_index(embedder: KeywordEmbedder, categories: Sequence[str] = DEFAULT_CATEGORIES) -> InMemoryVectorIndex:
    """Four images per category, each in its own collection."""

    index = InMemoryVectorIndex(dim=embedder.dim)
    ids, vectors, payloads = [], [], []
    for category in categories:
        for suffix, description in CATALOG:
            ids.append(f"{category}-{suffix}")
            vectors.append(embedder.vector(f"{description} {category}"))
            payloads.append({"collection_id": f"{category}-col{suffix}", "category": category})
    index.add(ids, np.vstack(vectors), payloads)
    return index


def make_settings(tmp_path: Path, **ranking) -> AppSettings:
    settings = AppSettings()
    settings.expansion.cache_db_path = tmp_path / "extensions.sqlite3"
    settings.metrics_db_path = tmp_path / "metrics.sqlite3"
    settings.vector_store.index_path = tmp_path / "index"
    for name, value in ranking.items():
        setattr(settings.ranking, name, value)
    return settings


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return make_settings(tmp_path)


@pytest.fixture
def make_pipeline(settings: AppSettings, embedder: KeywordEmbedder):
    """Factory building a fully wired pipeline over the fake catalog."""

    def factory(llm=None, embedder_override: Optional[Embedder] = None, index=None):
        active = embedder_override or embedder
        return build_pipeline(settings, embedder=active, index=index if index is not None else build_index(embedder), llm=llm)

    return factory
