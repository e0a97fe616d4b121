# Path: core/search/reranker.py
# Purpose: Compose similarity, hub, popularity, tag and slider signals into a deterministic ranking.
# Layer: core/search.
# Details: Scores are rounded to 4 decimals before any comparison; ties break on candidate id.

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence

import numpy as np

from core.models.domain import HubStats, PopularityStats, ScoredCandidate
from .signals import Signals, SliderSignal

logger = logging.getLogger(__name__)

SCORE_DECIMALS = 4

# Popularity suppression
POPULARITY_MIN_SHOWS = 5
POPULARITY_CTR_THRESHOLD = 0.1
POPULARITY_MAX_PENALTY = 0.1
EXTENSION_POPULARITY_SCALE = 0.1

# Hub suppression
HUB_SCORE_THRESHOLD = 0.05
HUB_MARGIN_FACTOR = 4.8
HUB_FREQUENCY_FACTOR = 0.09
HUB_MAX_PENALTY_PCT = 0.20
HUB_MIN_MULTIPLIER = 0.5
EXTENSION_HUB_MIN_MULTIPLIER = 0.95

# Concept tags
TAG_BOOST = 0.05
OPPOSITE_TAG_PENALTY = 0.03

# Sliders
SLIDER_NEUTRAL = 0.5
SLIDER_SPAN = 0.49

# Main concept + additions
MAIN_RANK_WEIGHT = 0.90
ADDITION_RANK_WEIGHT = 0.10


def popularity_penalty(popularity: Optional[PopularityStats]) -> float:
    """Penalty for images shown often in top positions but rarely clicked."""

    if popularity is None or popularity.show_count < POPULARITY_MIN_SHOWS:
        return 0.0
    ctr = popularity.ctr
    if ctr >= POPULARITY_CTR_THRESHOLD:
        return 0.0
    exposure = min(popularity.show_count / 100.0, 1.0)
    penalty = exposure * ((POPULARITY_CTR_THRESHOLD - ctr) / POPULARITY_CTR_THRESHOLD) * 0.1
    return min(penalty, POPULARITY_MAX_PENALTY)


def hub_multiplier(hub: Optional[HubStats], base_score: float, extension_used: bool = False) -> float:
    """Relative hub penalty as a multiplier in [0.5, 1.0] applied to the base score."""

    if hub is None or hub.hub_score <= HUB_SCORE_THRESHOLD:
        return 1.0

    margin = hub.avg_similarity_margin or 0.0
    margin_penalty = max(0.0, margin * HUB_MARGIN_FACTOR)
    frequency_penalty = hub.hub_score * HUB_FREQUENCY_FACTOR * (0.5 if margin < 0 else 1.0)
    absolute_penalty = margin_penalty + frequency_penalty

    penalty_pct = min(absolute_penalty / base_score, HUB_MAX_PENALTY_PCT) if base_score > 0 else 0.0
    multiplier = max(HUB_MIN_MULTIPLIER, 1.0 - penalty_pct)
    if extension_used:
        multiplier = max(EXTENSION_HUB_MIN_MULTIPLIER, 1.0 - (1.0 - multiplier) * 0.5)
    return multiplier


def _score_range(scores: np.ndarray) -> float:
    return float(scores.max() + scores.min())


def apply_slider(scores: np.ndarray, slider: SliderSignal, opposite_scores: Optional[np.ndarray]) -> np.ndarray:
    """
    Blend scores for one slider position.

    1.0 and 0.5 leave the ranking untouched. Between 0.51 and 1.0 the scores move
    toward their inversion (fully inverted at 0.51). Below 0.5 they move toward the
    opposite concept's similarity, which is itself inverted near 0.49 and raw at 0.0.
    """

    position = slider.position
    if scores.size == 0 or position >= 1.0 or position == SLIDER_NEUTRAL:
        return scores

    inverted = _score_range(scores) - scores
    if position > SLIDER_NEUTRAL:
        weight = min((1.0 - position) / SLIDER_SPAN, 1.0)
        return (1.0 - weight) * scores + weight * inverted

    weight = (SLIDER_NEUTRAL - position) / SLIDER_NEUTRAL
    if opposite_scores is None:
        target = inverted
    else:
        inversion = min(position / SLIDER_SPAN, 1.0)
        target = (1.0 - inversion) * opposite_scores + inversion * (_score_range(opposite_scores) - opposite_scores)
    return (1.0 - weight) * scores + weight * target


def rank_positions(values: Mapping[str, float]) -> Dict[str, int]:
    """1-based ranks by value descending, ties by id."""

    ordered = sorted(values, key=lambda item_id: (-values[item_id], item_id))
    return {item_id: position for position, item_id in enumerate(ordered, start=1)}


def sort_key(item: ScoredCandidate):
    return (-item.final_score, item.id)


class Reranker:
    """Applies every scoring adjustment and produces the final, collection-deduplicated order."""

    def rank(
        self,
        scored: Sequence[ScoredCandidate],
        signals: Optional[Signals] = None,
        extension_categories: FrozenSet[str] = frozenset(),
        addition_similarity: Optional[Mapping[str, float]] = None,
    ) -> List[ScoredCandidate]:
        """
        Score and order candidates.

        ``addition_similarity`` marks a main concept + additions query: it maps
        candidate id to the mean similarity against the addition phrases, while
        ``base_score`` holds the similarity to the main concept.
        """

        signals = signals or Signals()
        items = list(scored)
        if not items:
            return []

        for item in items:
            self._score(item, signals, item.candidate.category in extension_categories)

        if signals.sliders:
            self._apply_sliders(items, signals.sliders)

        if addition_similarity is not None:
            self._apply_composite(items, addition_similarity)

        for item in items:
            item.final_score = round(item.final_score, SCORE_DECIMALS)

        best: Dict[str, ScoredCandidate] = {}
        for item in sorted(items, key=sort_key):
            best.setdefault(item.candidate.collection_id, item)
        return sorted(best.values(), key=sort_key)

    def _score(self, item: ScoredCandidate, signals: Signals, extension_used: bool) -> None:
        candidate = item.candidate
        candidate.hub = signals.hub.get(candidate.id, candidate.hub)
        candidate.popularity = signals.popularity.get(candidate.id, candidate.popularity)

        pop_penalty = popularity_penalty(candidate.popularity)
        if extension_used:
            pop_penalty *= EXTENSION_POPULARITY_SCALE
        multiplier = hub_multiplier(candidate.hub, item.base_score, extension_used)

        tags = signals.tags.get(candidate.id, {})
        boost = sum(TAG_BOOST * tags.get(concept.id, 0.0) for concept in signals.concepts)
        penalty = sum(
            OPPOSITE_TAG_PENALTY * tags.get(opposite_id, 0.0)
            for opposites in signals.opposite_ids.values()
            for opposite_id in opposites
        )

        item.hub_multiplier = multiplier
        item.popularity_penalty = pop_penalty
        item.boost = boost
        item.penalty = penalty
        item.adjusted_base_score = round(item.base_score * multiplier, 6)
        item.final_score = item.adjusted_base_score + boost - penalty - pop_penalty
        item.diagnostics.update(
            {
                "base_score": item.base_score,
                "hub_multiplier": multiplier,
                "popularity_penalty": pop_penalty,
                "tag_boost": boost,
                "tag_penalty": penalty,
                "extension_used": extension_used,
            }
        )

    @staticmethod
    def _apply_sliders(items: List[ScoredCandidate], sliders: Sequence[SliderSignal]) -> None:
        embeddings = np.stack([np.asarray(item.candidate.embedding, dtype=np.float32) for item in items])
        scores = np.array([item.final_score for item in items], dtype=np.float64)
        for slider in sliders:
            opposite_scores = None
            if slider.opposite_vector is not None:
                opposite_scores = (embeddings @ slider.opposite_vector).astype(np.float64)
            scores = apply_slider(scores, slider, opposite_scores)
            logger.debug("Applied slider %s=%.2f to %d candidates", slider.concept_id, slider.position, len(items))
        for item, score in zip(items, scores):
            item.diagnostics["slider_score"] = float(score)
            item.final_score = float(score)

    @staticmethod
    def _apply_composite(items: List[ScoredCandidate], addition_similarity: Mapping[str, float]) -> None:
        main_ranks = rank_positions({item.id: item.base_score for item in items})
        addition_ranks = rank_positions({item.id: addition_similarity.get(item.id, 0.0) for item in items})
        for item in items:
            combined = MAIN_RANK_WEIGHT * main_ranks[item.id] + ADDITION_RANK_WEIGHT * addition_ranks[item.id]
            score = 1.0 / (1.0 + combined)
            item.diagnostics.update(
                {
                    "main_similarity": item.base_score,
                    "addition_similarity": addition_similarity.get(item.id, 0.0),
                    "main_rank": main_ranks[item.id],
                    "addition_rank": addition_ranks[item.id],
                }
            )
            item.base_score = round(score, SCORE_DECIMALS)
            item.final_score = score
