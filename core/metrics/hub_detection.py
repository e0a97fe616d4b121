# Path: core/metrics/hub_detection.py
# Purpose: Recompute hub statistics out-of-band from the impression log.
# Layer: core/metrics.
# Details: An image shown across many distinct queries with above-average similarity is a hub.

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Set

from tqdm import tqdm

from core.models.domain import HubStats
from .store import SqliteMetricsStore

logger = logging.getLogger(__name__)


async def compute_hub_stats(store: SqliteMetricsStore, show_progress: bool = False) -> Dict[str, HubStats]:
    """
    Derive hub statistics for every candidate present in the impression log and persist them.

    - hub_count: distinct queries the candidate was shown for.
    - hub_score: hub_count divided by the number of distinct queries overall.
    - avg_similarity: mean logged base score of the candidate.
    - avg_similarity_margin: avg_similarity minus the global mean base score.
    """

    rows = await store.impression_rows()
    if not rows:
        logger.info("No impressions logged; hub statistics left untouched.")
        return {}

    queries_by_candidate: Dict[str, Set[str]] = defaultdict(set)
    scores_by_candidate: Dict[str, List[float]] = defaultdict(list)
    all_queries: Set[str] = set()
    total_score = 0.0
    for query, candidate_id, base_score in rows:
        normalized = query.strip().lower()
        all_queries.add(normalized)
        queries_by_candidate[candidate_id].add(normalized)
        scores_by_candidate[candidate_id].append(base_score)
        total_score += base_score

    global_avg = total_score / len(rows)
    total_queries = len(all_queries)

    stats: Dict[str, HubStats] = {}
    for candidate_id in tqdm(sorted(queries_by_candidate), desc="Hub stats", unit="img", disable=not show_progress):
        scores = scores_by_candidate[candidate_id]
        hub_count = len(queries_by_candidate[candidate_id])
        avg_similarity = sum(scores) / len(scores)
        stats[candidate_id] = HubStats(
            hub_count=hub_count,
            hub_score=hub_count / total_queries if total_queries else 0.0,
            avg_similarity=avg_similarity,
            avg_similarity_margin=avg_similarity - global_avg,
        )

    await store.upsert_hub_stats(stats)
    logger.info("Updated hub statistics for %d candidates over %d queries.", len(stats), total_queries)
    return stats
