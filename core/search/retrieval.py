# Path: core/search/retrieval.py
# Purpose: Turn a routed query into query vectors and fetch nearest-neighbor candidate pools.
# Layer: core/search.
# Details: Extension and expansion work is bounded by the request deadline and degrades to direct embedding.

from __future__ import annotations

import asyncio
import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from config.settings import RankingSettings
from core.embedders.base import Embedder
from core.errors import EmbeddingProviderError, SearchUnavailableError
from core.expansion.generator import ExpansionGenerator
from core.models.domain import ExtensionCacheEntry, SourceMode
from core.vector_store.base import Neighbor, VectorIndex
from .analyzer import ROUTE_DIRECT, ROUTE_EXPANSION, QueryAnalyzer, RouteDecision

logger = logging.getLogger(__name__)


@dataclass
class ResolvedQuery:
    """Vectors representing one query for retrieval."""

    text: str
    decision: RouteDecision
    route: str
    vector: np.ndarray
    extensions: Dict[str, ExtensionCacheEntry] = field(default_factory=dict)

    @property
    def extension_active(self) -> bool:
        return bool(self.extensions)

    @property
    def extension_categories(self) -> FrozenSet[str]:
        return frozenset(self.extensions)

    def uses_extension(self, category: Optional[str]) -> bool:
        return category is not None and category in self.extensions

    def vector_for(self, category: Optional[str]) -> np.ndarray:
        """Extension vector of the category when one exists, the primary vector otherwise."""

        entry = self.extensions.get(category) if category else None
        return entry.embedding if entry is not None else self.vector


class QueryResolver:
    """Runs query analysis and produces the vectors the chosen route calls for."""

    def __init__(
        self,
        embedder: Embedder,
        analyzer: Optional[QueryAnalyzer] = None,
        generator: Optional[ExpansionGenerator] = None,
    ) -> None:
        self.embedder = embedder
        self.analyzer = analyzer or QueryAnalyzer()
        self.generator = generator

    async def resolve(
        self,
        text: str,
        source_mode: Optional[SourceMode],
        category: Optional[str],
        deadline: float,
        image: Optional[bytes] = None,
    ) -> ResolvedQuery:
        """
        Resolve a query into its retrieval vectors.

        External calls:
        - core/search/analyzer.py::QueryAnalyzer.analyze - route selection.
        - core/expansion/generator.py::ExpansionGenerator.extensions_for / expansion_for - cached LLM extensions.
        - core/embedders/base.py::Embedder.embed_text / embed_image - direct (fallback) vector.
        """

        text = text.strip()
        if image is not None:
            decision = RouteDecision(ROUTE_DIRECT, 0, False)
            return ResolvedQuery(text, decision, ROUTE_DIRECT, await self._embed_direct(text, image))

        decision = await self.analyzer.analyze(text, source_mode, category)
        extensions: Dict[str, ExtensionCacheEntry] = {}
        vector: Optional[np.ndarray] = None
        route = decision.route

        if decision.uses_extensions and self.generator is not None and source_mode is not None:
            extensions = await self._bounded(self.generator.extensions_for(text, source_mode), deadline, text) or {}
            if category is not None:
                extensions = {category: extensions[category]} if category in extensions else {}
        elif route == ROUTE_EXPANSION and self.generator is not None:
            entry = await self._bounded(self.generator.expansion_for(text), deadline, text)
            if entry is not None:
                vector = entry.embedding

        if decision.route != ROUTE_DIRECT and not extensions and vector is None:
            logger.info("No extension available for %r, falling back to direct embedding", text)
            route = ROUTE_DIRECT
        if category is not None and category in extensions:
            vector = extensions[category].embedding
        if vector is None:
            vector = await self._embed_direct(text)

        return ResolvedQuery(text, decision, route, vector, extensions)

    async def _bounded(self, coro, deadline: float, text: str):
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            coro.close()
            logger.warning("Request budget exhausted before expanding %r", text)
            return None
        try:
            return await asyncio.wait_for(coro, timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning("Expanding %r exceeded the request budget (%.1fs left)", text, remaining)
            return None

    async def _embed_direct(self, text: str, image: Optional[bytes] = None) -> np.ndarray:
        try:
            if image is not None:
                return await self.embedder.embed_image(image)
            return await self.embedder.embed_text(text)
        except EmbeddingProviderError as exc:
            logger.error("Embedding provider failed for %r: %s", text, exc)
            raise SearchUnavailableError() from exc


class RetrievalEngine:
    """Issues nearest-neighbor queries sized by route and category filter."""

    def __init__(self, index: VectorIndex, ranking: RankingSettings, categories: Iterable[str]) -> None:
        self.index = index
        self.ranking = ranking
        self.categories: Tuple[str, ...] = tuple(categories)

    def pool_size(self, resolved: ResolvedQuery, category: Optional[str]) -> int:
        """Pool for a single nearest call; multi-word literal queries stay narrow even without a category."""

        if resolved.extension_active:
            return self.ranking.extension_pool_size
        if resolved.route == ROUTE_DIRECT and resolved.decision.word_count >= 3:
            return self.ranking.literal_pool_size
        if category is None:
            return self.ranking.unrestricted_pool_size
        return self.ranking.default_pool_size

    async def retrieve(self, resolved: ResolvedQuery, category: Optional[str]) -> List[Neighbor]:
        """Return the candidate pool ordered by (-similarity, candidate id)."""

        if category is None and resolved.extension_active:
            k = self.ranking.per_category_pool_size
            batches = await asyncio.gather(
                *(self.index.nearest(resolved.vector_for(name), k, category=name) for name in self.categories)
            )
            pool = _merge(batches)
        else:
            pool = await self.index.nearest(resolved.vector_for(category), self.pool_size(resolved, category), category=category)

        logger.debug("Retrieved %d candidates for %r (category=%s)", len(pool), resolved.text, category or "all")
        return pool


def _merge(batches: Sequence[List[Neighbor]]) -> List[Neighbor]:
    seen = set()
    merged: List[Neighbor] = []
    for neighbor in heapq.merge(*batches, key=lambda n: (-n.similarity, n.candidate_id)):
        if neighbor.candidate_id in seen:
            continue
        seen.add(neighbor.candidate_id)
        merged.append(neighbor)
    return merged
