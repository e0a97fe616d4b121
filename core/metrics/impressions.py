# Path: core/metrics/impressions.py
# Purpose: Record the final ranking of each search for future reranker training.
# Layer: core/metrics.
# Details: Fire-and-forget: writes run as detached asyncio tasks whose failures are only logged.

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence, Set

import numpy as np

from core.models.domain import ImpressionItem
from .store import SqliteMetricsStore

logger = logging.getLogger(__name__)


class ImpressionLogger:
    """Best-effort, non-blocking impression recorder."""

    def __init__(self, store: SqliteMetricsStore, enabled: bool = True) -> None:
        self._store = store
        self.enabled = enabled
        self._pending: Set[asyncio.Task] = set()

    def record(self, query: str, query_vector: Optional[np.ndarray], items: Sequence[ImpressionItem]) -> None:
        """Schedule the write and return immediately."""

        if not self.enabled or not items:
            return
        task = asyncio.get_running_loop().create_task(self._write(query, query_vector, list(items)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, query: str, query_vector: Optional[np.ndarray], items: Sequence[ImpressionItem]) -> None:
        try:
            await self._store.record_impressions(query, query_vector, items)
        except Exception as exc:  # noqa: BLE001 - logging must never reach the caller
            logger.warning("Failed to log %d impressions for %r: %s", len(items), query, exc)

    async def drain(self) -> None:
        """Wait for every scheduled write to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
