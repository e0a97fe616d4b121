# Path: core/search/balancer.py
# Purpose: Interleave top results per category so one category cannot dominate an unfiltered view.
# Layer: core/search.
# Details: Round-robin over a fixed category order; unknown categories follow in sorted order.

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, List, Tuple

from core.models.domain import ScoredCandidate


class CategoryBalancer:
    """Round-robin category interleaving of an already ranked list."""

    def __init__(self, categories: Iterable[str], per_category: int = 10) -> None:
        self.categories: Tuple[str, ...] = tuple(categories)
        self.per_category = per_category

    def balance(self, ranked: List[ScoredCandidate], limit: int) -> List[ScoredCandidate]:
        groups: Dict[str, List[ScoredCandidate]] = OrderedDict((name, []) for name in self.categories)
        extra: Dict[str, List[ScoredCandidate]] = {}
        for item in ranked:
            bucket = groups.get(item.candidate.category)
            if bucket is None:
                bucket = extra.setdefault(item.candidate.category, [])
            if len(bucket) < self.per_category:
                bucket.append(item)
        for name in sorted(extra):
            groups[name] = extra[name]

        queues = [bucket for bucket in groups.values() if bucket]
        balanced: List[ScoredCandidate] = []
        for round_index in range(self.per_category):
            for bucket in queues:
                if len(balanced) >= limit:
                    return balanced
                if round_index < len(bucket):
                    balanced.append(bucket[round_index])
        return balanced
