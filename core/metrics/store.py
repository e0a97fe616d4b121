# Path: core/metrics/store.py
# Purpose: Persist impressions, clicks, hub statistics and concept tags, and serve batched lookups.
# Layer: core/metrics.
# Details: SQLite file accessed from worker threads; one connection per call keeps the store safe to share.

from __future__ import annotations

import asyncio
import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from core.models.domain import HubStats, ImpressionItem, PopularityStats

# SQLite caps host parameters per statement.
_CHUNK = 500

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS impressions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        query TEXT NOT NULL,
        query_embedding BLOB,
        candidate_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        base_score REAL,
        features TEXT,
        clicked INTEGER NOT NULL DEFAULT 0,
        saved INTEGER NOT NULL DEFAULT 0,
        dwell_ms INTEGER,
        created_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_impressions_candidate ON impressions(candidate_id)",
    "CREATE INDEX IF NOT EXISTS idx_impressions_query_candidate ON impressions(query, candidate_id)",
    """
    CREATE TABLE IF NOT EXISTS hub_stats (
        candidate_id TEXT PRIMARY KEY,
        hub_count INTEGER NOT NULL,
        hub_score REAL NOT NULL,
        avg_similarity REAL NOT NULL,
        avg_similarity_margin REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS image_tags (
        candidate_id TEXT NOT NULL,
        concept_id TEXT NOT NULL,
        score REAL NOT NULL,
        PRIMARY KEY (candidate_id, concept_id)
    )
    """,
)


def _chunks(items: Sequence[str]) -> Iterator[Sequence[str]]:
    for start in range(0, len(items), _CHUNK):
        yield items[start:start + _CHUNK]


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


class SqliteMetricsStore:
    """Metrics store for hub statistics, popularity and impression logging."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close it."""

        conn = sqlite3.connect(self.path, timeout=10.0)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    # Lookups used at query time
    async def hub_stats(self, ids: Sequence[str]) -> Dict[str, HubStats]:
        """Return hub statistics for the ids that have them; absent ids were never computed."""

        return await asyncio.to_thread(self._hub_stats, list(dict.fromkeys(ids)))

    def _hub_stats(self, ids: List[str]) -> Dict[str, HubStats]:
        result: Dict[str, HubStats] = {}
        with self._connect() as conn:
            for chunk in _chunks(ids):
                rows = conn.execute(
                    "SELECT candidate_id, hub_count, hub_score, avg_similarity, avg_similarity_margin "
                    f"FROM hub_stats WHERE candidate_id IN ({_placeholders(len(chunk))})",
                    tuple(chunk),
                ).fetchall()
                for candidate_id, hub_count, hub_score, avg_similarity, margin in rows:
                    result[candidate_id] = HubStats(int(hub_count), float(hub_score), float(avg_similarity), float(margin))
        return result

    async def popularity(
        self, ids: Sequence[str], top_n_window: int = 20, window_limit: int = 10000
    ) -> Dict[str, PopularityStats]:
        """Count shows (position < top_n_window) and clicks among the most recent impressions."""

        return await asyncio.to_thread(self._popularity, list(dict.fromkeys(ids)), top_n_window, window_limit)

    def _popularity(self, ids: List[str], top_n_window: int, window_limit: int) -> Dict[str, PopularityStats]:
        result: Dict[str, PopularityStats] = {}
        with self._connect() as conn:
            for chunk in _chunks(ids):
                rows = conn.execute(
                    "SELECT candidate_id, COUNT(*), COALESCE(SUM(clicked), 0) FROM ("
                    "  SELECT candidate_id, clicked FROM impressions"
                    "  WHERE position >= 0 AND position < ? ORDER BY id DESC LIMIT ?"
                    f") WHERE candidate_id IN ({_placeholders(len(chunk))}) GROUP BY candidate_id",
                    (top_n_window, window_limit, *chunk),
                ).fetchall()
                for candidate_id, shows, clicks in rows:
                    result[candidate_id] = PopularityStats(int(shows), int(clicks))
        return result

    async def tag_scores(self, ids: Sequence[str], concept_ids: Sequence[str]) -> Dict[str, Dict[str, float]]:
        """Return stored tag confidences for (candidate, concept) pairs."""

        if not ids or not concept_ids:
            return {}
        return await asyncio.to_thread(self._tag_scores, list(dict.fromkeys(ids)), list(dict.fromkeys(concept_ids)))

    def _tag_scores(self, ids: List[str], concept_ids: List[str]) -> Dict[str, Dict[str, float]]:
        result: Dict[str, Dict[str, float]] = {}
        with self._connect() as conn:
            for chunk in _chunks(ids):
                rows = conn.execute(
                    "SELECT candidate_id, concept_id, score FROM image_tags "
                    f"WHERE candidate_id IN ({_placeholders(len(chunk))}) "
                    f"AND concept_id IN ({_placeholders(len(concept_ids))})",
                    (*chunk, *concept_ids),
                ).fetchall()
                for candidate_id, concept_id, score in rows:
                    result.setdefault(candidate_id, {})[concept_id] = float(score)
        return result

    # Writes
    async def record_impressions(
        self, query: str, query_vector: Optional[np.ndarray], items: Sequence[ImpressionItem]
    ) -> None:
        """Insert one row per shown result."""

        await asyncio.to_thread(self._record_impressions, query, query_vector, list(items))

    def _record_impressions(self, query: str, query_vector: Optional[np.ndarray], items: List[ImpressionItem]) -> None:
        blob = query_vector.astype(np.float32).tobytes() if query_vector is not None else None
        now = time.time()
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO impressions (query, query_embedding, candidate_id, position, base_score, features, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (query, blob, item.candidate_id, item.position, item.base_score, json.dumps(item.features), now)
                    for item in items
                ],
            )

    async def record_click(
        self,
        query: str,
        candidate_id: str,
        clicked: bool = True,
        saved: bool = False,
        dwell_ms: Optional[int] = None,
    ) -> None:
        """Attach a user action to the latest impression of (query, candidate), creating one if missing."""

        await asyncio.to_thread(self._record_click, query, candidate_id, clicked, saved, dwell_ms)

    def _record_click(self, query: str, candidate_id: str, clicked: bool, saved: bool, dwell_ms: Optional[int]) -> None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id FROM impressions WHERE query = ? AND candidate_id = ? ORDER BY id DESC LIMIT 1",
                (query, candidate_id),
            ).fetchone()
            if row is not None:
                conn.execute(
                    "UPDATE impressions SET clicked = ?, saved = ?, dwell_ms = ? WHERE id = ?",
                    (int(clicked), int(saved), dwell_ms, row[0]),
                )
                return
            # Action without a logged impression; position -1 keeps it out of show counts.
            conn.execute(
                "INSERT INTO impressions (query, candidate_id, position, clicked, saved, dwell_ms, created_at) "
                "VALUES (?, ?, -1, ?, ?, ?, ?)",
                (query, candidate_id, int(clicked), int(saved), dwell_ms, time.time()),
            )

    async def upsert_hub_stats(self, stats: Dict[str, HubStats]) -> None:
        await asyncio.to_thread(self._upsert_hub_stats, dict(stats))

    def _upsert_hub_stats(self, stats: Dict[str, HubStats]) -> None:
        now = time.time()
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO hub_stats (candidate_id, hub_count, hub_score, avg_similarity, avg_similarity_margin, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(candidate_id) DO UPDATE SET
                    hub_count = excluded.hub_count,
                    hub_score = excluded.hub_score,
                    avg_similarity = excluded.avg_similarity,
                    avg_similarity_margin = excluded.avg_similarity_margin,
                    updated_at = excluded.updated_at
                """,
                [
                    (cid, s.hub_count, s.hub_score, s.avg_similarity, s.avg_similarity_margin, now)
                    for cid, s in stats.items()
                ],
            )

    async def upsert_tags(self, rows: Iterable[Tuple[str, str, float]]) -> None:
        """Store (candidate_id, concept_id, score) tag confidences."""

        await asyncio.to_thread(self._upsert_tags, list(rows))

    def _upsert_tags(self, rows: List[Tuple[str, str, float]]) -> None:
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO image_tags (candidate_id, concept_id, score) VALUES (?, ?, ?)
                ON CONFLICT(candidate_id, concept_id) DO UPDATE SET score = excluded.score
                """,
                rows,
            )

    # Offline readers
    async def impression_rows(self) -> List[Tuple[str, str, float]]:
        """Return (query, candidate_id, base_score) for every shown impression."""

        return await asyncio.to_thread(self._impression_rows)

    def _impression_rows(self) -> List[Tuple[str, str, float]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT query, candidate_id, COALESCE(base_score, 0) FROM impressions WHERE position >= 0 ORDER BY id"
            ).fetchall()
        return [(str(query), str(candidate_id), float(score)) for query, candidate_id, score in rows]

    async def interaction_stats(self) -> Dict[str, Any]:
        """Return totals for monitoring the impression log."""

        return await asyncio.to_thread(self._interaction_stats)

    def _interaction_stats(self) -> Dict[str, Any]:
        with self._connect() as conn:
            impressions, clicks, saves = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(clicked), 0), COALESCE(SUM(saved), 0) FROM impressions"
            ).fetchone()
            unique_queries = conn.execute("SELECT COUNT(DISTINCT query) FROM impressions").fetchone()[0]
        return {
            "total_impressions": int(impressions),
            "total_clicks": int(clicks),
            "total_saves": int(saves),
            "unique_queries": int(unique_queries),
            "click_through_rate": round(clicks / impressions, 4) if impressions else 0.0,
        }
