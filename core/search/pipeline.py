# Path: core/search/pipeline.py
# Purpose: Orchestrate one search: resolve, retrieve, collect signals, rerank, balance and log.
# Layer: core/search.
# Details: A wall-clock budget applies to the whole request; only SearchUnavailableError escapes.

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

import numpy as np

from core.embedders.base import Embedder
from core.errors import EmbeddingProviderError
from core.metrics.impressions import ImpressionLogger
from core.models.domain import ImageCandidate, ImpressionItem, RankedResult, ScoredCandidate, SearchQuery
from core.vector_store.base import Neighbor, VectorIndex
from .analyzer import ROUTE_DIRECT, word_count
from .balancer import CategoryBalancer
from .reranker import Reranker
from .retrieval import QueryResolver, ResolvedQuery, RetrievalEngine
from .signals import SignalCollector

logger = logging.getLogger(__name__)


class SearchPipeline:
    """High-level service bridging the API and script layers with the retrieval and ranking stages."""

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        resolver: QueryResolver,
        retrieval: RetrievalEngine,
        signals: SignalCollector,
        reranker: Optional[Reranker] = None,
        balancer: Optional[CategoryBalancer] = None,
        impressions: Optional[ImpressionLogger] = None,
        request_timeout_s: float = 30.0,
        default_limit: int = 60,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.resolver = resolver
        self.retrieval = retrieval
        self.signals = signals
        self.reranker = reranker or Reranker()
        self.balancer = balancer or CategoryBalancer(retrieval.categories)
        self.impressions = impressions
        self.request_timeout_s = request_timeout_s
        self.default_limit = default_limit

    async def search(self, query: SearchQuery) -> RankedResult:
        """
        Execute a search query end to end.

        External calls:
        - core/search/retrieval.py::QueryResolver.resolve - route and query vectors.
        - core/search/retrieval.py::RetrievalEngine.retrieve - candidate pool.
        - core/search/signals.py::SignalCollector.collect - hub, popularity, tag and slider signals.
        - core/search/reranker.py::Reranker.rank - scoring and deterministic order.
        - core/metrics/impressions.py::ImpressionLogger.record - fire-and-forget logging.
        """

        if not self._query_text(query) and query.image is None:
            return RankedResult(route=ROUTE_DIRECT)

        composite = self._is_composite(query)
        resolved = await self._resolve(query)
        neighbors = await self.retrieval.retrieve(resolved, query.category)
        candidates = await self.index.get_candidates([n.candidate_id for n in neighbors])
        scored = [
            ScoredCandidate(candidate=candidates[n.candidate_id], base_score=n.similarity)
            for n in neighbors
            if n.candidate_id in candidates
        ]

        concept_text = query.combined_text if composite else self._query_text(query)
        signals = await self.signals.collect([item.id for item in scored], concept_text, query.sliders)
        additions = await self._addition_similarity(query, candidates) if composite else None

        ranked = self.reranker.rank(
            scored,
            signals,
            extension_categories=resolved.extension_categories,
            addition_similarity=additions,
        )
        total = len(ranked)
        limit = query.limit if query.limit is not None else self.default_limit
        if query.category is None and resolved.extension_active:
            items = self.balancer.balance(ranked, limit)
        else:
            items = ranked[:limit]

        logger.info(
            "Search %r route=%s category=%s pool=%d returned=%d",
            concept_text,
            resolved.route,
            query.category or "all",
            len(neighbors),
            len(items),
        )
        self._log_impressions(concept_text, resolved, items)
        return RankedResult(
            items=items,
            total=total,
            route=resolved.route,
            extensions={category: entry.text for category, entry in resolved.extensions.items()},
        )

    async def aclose(self) -> None:
        """Finish background writes and close provider clients."""

        generator = self.resolver.generator
        if generator is not None:
            await generator.drain()
        if self.impressions is not None:
            await self.impressions.drain()
        await self.embedder.aclose()
        llm = generator.llm if generator is not None else None
        close = getattr(llm, "aclose", None)
        if close is not None:
            await close()

    async def retrieve_pool(self, query: SearchQuery) -> List[Neighbor]:
        """Candidate pool the query would be ranked over."""

        if not self._query_text(query) and query.image is None:
            return []
        resolved = await self._resolve(query)
        return await self.retrieval.retrieve(resolved, query.category)

    @staticmethod
    def _query_text(query: SearchQuery) -> str:
        return (query.text or query.main_concept or "").strip()

    @staticmethod
    def _is_composite(query: SearchQuery) -> bool:
        return query.is_composite and word_count(query.combined_text) >= 2

    async def _resolve(self, query: SearchQuery) -> ResolvedQuery:
        deadline = asyncio.get_running_loop().time() + self.request_timeout_s
        # A composite retrieves exactly what a standalone main-concept query would.
        text = query.main_concept if self._is_composite(query) else self._query_text(query)
        return await self.resolver.resolve(text or "", query.source_mode, query.category, deadline, image=query.image)

    async def _addition_similarity(
        self, query: SearchQuery, candidates: Dict[str, ImageCandidate]
    ) -> Optional[Dict[str, float]]:
        phrases = [addition.strip() for addition in query.additions if addition.strip()]
        try:
            vectors = await self.embedder.embed_texts(phrases)
        except EmbeddingProviderError as exc:
            logger.warning("Could not embed additions %s, ranking by main concept only: %s", phrases, exc)
            return None
        if not candidates:
            return {}
        ids = list(candidates)
        matrix = np.stack([np.asarray(candidates[item_id].embedding, dtype=np.float32) for item_id in ids])
        similarity = (matrix @ np.asarray(vectors, dtype=np.float32).T).mean(axis=1)
        return {item_id: float(value) for item_id, value in zip(ids, similarity)}

    def _log_impressions(self, text: str, resolved: ResolvedQuery, items: List[ScoredCandidate]) -> None:
        if self.impressions is None or not items:
            return
        rows = [
            ImpressionItem(
                candidate_id=item.id,
                position=position,
                base_score=item.base_score,
                features={
                    "final_score": item.final_score,
                    "adjusted_base_score": item.adjusted_base_score,
                    "hub_multiplier": item.hub_multiplier,
                    "popularity_penalty": item.popularity_penalty,
                    "boost": item.boost,
                    "penalty": item.penalty,
                    "category": item.candidate.category,
                    "route": resolved.route,
                },
            )
            for position, item in enumerate(items)
        ]
        self.impressions.record(text, resolved.vector, rows)
