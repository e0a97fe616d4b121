# Path: core/search/signals.py
# Purpose: Gather per-candidate reranking signals in batched, concurrent lookups.
# Layer: core/search.
# Details: Hub statistics, popularity, concept tags and, when sliders are active, opposite-concept vectors.

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

import numpy as np

from config.settings import RankingSettings
from core.concepts.store import ConceptStore
from core.embedders.base import Embedder
from core.errors import EmbeddingProviderError
from core.metrics.store import SqliteMetricsStore
from core.models.domain import Concept, HubStats, PopularityStats

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SliderSignal:
    """One active slider: the concept, its position and the vector of its opposites (if recorded)."""

    concept_id: str
    position: float
    opposite_vector: Optional[np.ndarray] = None


@dataclass
class Signals:
    """Everything the reranker needs besides the candidates themselves."""

    hub: Dict[str, HubStats] = field(default_factory=dict)
    popularity: Dict[str, PopularityStats] = field(default_factory=dict)
    tags: Dict[str, Dict[str, float]] = field(default_factory=dict)
    concepts: List[Concept] = field(default_factory=list)
    opposite_ids: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    sliders: List[SliderSignal] = field(default_factory=list)


def slider_position(sliders: Mapping[str, float], concept: Concept) -> Optional[float]:
    """Slider value for a concept, looked up by id or label (case-insensitive)."""

    normalized = {str(key).strip().lower(): value for key, value in sliders.items()}
    for name in (concept.id.lower(), concept.label.lower()):
        if name in normalized:
            return float(normalized[name])
    return None


class SignalCollector:
    """Loads hub, popularity, tag and slider signals for a candidate pool."""

    def __init__(
        self,
        metrics: Optional[SqliteMetricsStore],
        concepts: Optional[ConceptStore] = None,
        embedder: Optional[Embedder] = None,
        ranking: Optional[RankingSettings] = None,
    ) -> None:
        self.metrics = metrics
        self.concepts = concepts if concepts is not None else ConceptStore()
        self.embedder = embedder
        self.ranking = ranking or RankingSettings()

    async def collect(self, ids: Sequence[str], query_text: str, sliders: Optional[Mapping[str, float]] = None) -> Signals:
        """
        Collect signals for the given candidate identifiers.

        External calls:
        - core/metrics/store.py::SqliteMetricsStore.hub_stats / popularity / tag_scores - batched, concurrent.
        - core/embedders/base.py::Embedder.embed_texts - opposite labels without stored embeddings.
        """

        ids = list(ids)
        matched = self.concepts.match_query(query_text) if query_text else []
        opposite_ids = {concept.id: concept.opposites for concept in matched}
        tag_concepts = sorted({concept.id for concept in matched} | {opp for opps in opposite_ids.values() for opp in opps})

        hub: Dict[str, HubStats] = {}
        popularity: Dict[str, PopularityStats] = {}
        tags: Dict[str, Dict[str, float]] = {}
        if self.metrics is not None and ids:
            hub, popularity, tags = await asyncio.gather(
                self._guarded(self.metrics.hub_stats(ids), "hub stats", {}),
                self._guarded(
                    self.metrics.popularity(
                        ids,
                        top_n_window=self.ranking.popularity_top_n,
                        window_limit=self.ranking.popularity_window,
                    ),
                    "popularity",
                    {},
                ),
                self._guarded(self.metrics.tag_scores(ids, tag_concepts), "tag scores", {}) if tag_concepts else _empty(),
            )

        slider_signals = await self._slider_signals(matched, sliders or {})
        return Signals(
            hub=hub,
            popularity=popularity,
            tags=tags,
            concepts=matched,
            opposite_ids=opposite_ids,
            sliders=slider_signals,
        )

    async def _slider_signals(self, matched: List[Concept], sliders: Mapping[str, float]) -> List[SliderSignal]:
        active: List[Tuple[Concept, float]] = []
        for concept in matched:
            position = slider_position(sliders, concept)
            if position is not None:
                active.append((concept, position))
        if not active:
            return []

        # Opposites with a stored embedding are used as-is; the rest are embedded by label in one call.
        stored: Dict[str, List[np.ndarray]] = {}
        pending: List[Tuple[str, str]] = []
        for concept, position in active:
            stored[concept.id] = []
            if position >= 0.5:
                continue
            for opposite_id in concept.opposites:
                opposite = self.concepts.get(opposite_id)
                if opposite is not None and opposite.embedding is not None:
                    stored[concept.id].append(np.asarray(opposite.embedding, dtype=np.float32))
                else:
                    pending.append((concept.id, opposite.label if opposite is not None else opposite_id))

        if pending and self.embedder is not None:
            try:
                vectors = await self.embedder.embed_texts([label for _, label in pending])
            except EmbeddingProviderError as exc:
                logger.warning("Could not embed %d opposite concepts: %s", len(pending), exc)
            else:
                for (concept_id, _), vector in zip(pending, vectors):
                    stored[concept_id].append(vector)

        signals: List[SliderSignal] = []
        for concept, position in active:
            vectors = stored[concept.id]
            opposite = Embedder._normalize(np.mean(vectors, axis=0)) if vectors else None
            signals.append(SliderSignal(concept.id, position, opposite))
        return signals

    @staticmethod
    async def _guarded(coro: Awaitable[T], label: str, default: T) -> T:
        try:
            return await coro
        except Exception as exc:  # noqa: BLE001 - missing statistics are neutral
            logger.warning("Loading %s failed, continuing without it: %s", label, exc)
            return default


async def _empty() -> Dict[str, Dict[str, float]]:
    return {}
