# Path: core/expansion/cache.py
# Purpose: Two-tier cache of generated extensions keyed by (term, category, source).
# Layer: core/expansion.
# Details: In-process tier with atomic first-writer-wins upserts; SQLite tier written in the background.

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

import numpy as np

from core.models.domain import ExtensionCacheEntry, ExtensionKey

logger = logging.getLogger(__name__)


class InMemoryExtensionTier:
    """Thread-safe in-process map of extension entries."""

    def __init__(self) -> None:
        self._entries: Dict[ExtensionKey, ExtensionCacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: ExtensionKey) -> Optional[ExtensionCacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def upsert(self, entry: ExtensionCacheEntry) -> ExtensionCacheEntry:
        """Insert the entry unless the key already exists; return the canonical entry either way."""

        with self._lock:
            existing = self._entries.get(entry.key)
            if existing is not None:
                existing.last_used_at = max(existing.last_used_at, entry.last_used_at)
                return existing
            self._entries[entry.key] = entry
            return entry

    def invalidate(self, term: Optional[str] = None, source: Optional[str] = None) -> int:
        normalized = term.strip().lower() if term else None
        with self._lock:
            doomed = [
                key for key in self._entries
                if (normalized is None or key.term == normalized) and (source is None or key.source == source)
            ]
            for key in doomed:
                del self._entries[key]
        return len(doomed)


class SqliteExtensionStore:
    """Durable extension cache; one row per key, first extension kept on conflicting writes."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS query_extensions (
                    term TEXT NOT NULL,
                    category TEXT NOT NULL,
                    source TEXT NOT NULL,
                    extension TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    model TEXT,
                    created_at REAL NOT NULL,
                    last_used_at REAL NOT NULL,
                    PRIMARY KEY (term, category, source)
                )
                """
            )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=10.0)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    async def get_many(self, keys: Iterable[ExtensionKey]) -> Dict[ExtensionKey, ExtensionCacheEntry]:
        return await asyncio.to_thread(self._get_many, list(keys))

    def _get_many(self, keys: List[ExtensionKey]) -> Dict[ExtensionKey, ExtensionCacheEntry]:
        grouped: Dict[Tuple[str, str], Set[str]] = defaultdict(set)
        for key in keys:
            grouped[(key.term, key.source)].add(key.category)

        found: Dict[ExtensionKey, ExtensionCacheEntry] = {}
        with self._connect() as conn:
            for (term, source), categories in grouped.items():
                ordered = sorted(categories)
                rows = conn.execute(
                    "SELECT category, extension, embedding, model, last_used_at FROM query_extensions "
                    f"WHERE term = ? AND source = ? AND category IN ({','.join('?' for _ in ordered)})",
                    (term, source, *ordered),
                ).fetchall()
                for category, extension, blob, model, last_used_at in rows:
                    key = ExtensionKey(term, category, source)
                    found[key] = ExtensionCacheEntry(
                        key=key,
                        text=extension,
                        embedding=np.frombuffer(blob, dtype=np.float32).copy(),
                        model=model or "unknown",
                        last_used_at=float(last_used_at),
                    )
        return found

    async def upsert(self, entry: ExtensionCacheEntry) -> None:
        await asyncio.to_thread(self._upsert, entry)

    def _upsert(self, entry: ExtensionCacheEntry) -> None:
        key = entry.key
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO query_extensions (term, category, source, extension, embedding, model, created_at, last_used_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(term, category, source) DO UPDATE SET last_used_at = excluded.last_used_at
                """,
                (
                    key.term,
                    key.category,
                    key.source,
                    entry.text,
                    entry.embedding.astype(np.float32).tobytes(),
                    entry.model,
                    time.time(),
                    entry.last_used_at,
                ),
            )

    async def touch(self, keys: Iterable[ExtensionKey]) -> None:
        await asyncio.to_thread(self._touch, list(keys))

    def _touch(self, keys: List[ExtensionKey]) -> None:
        now = time.time()
        with self._connect() as conn:
            conn.executemany(
                "UPDATE query_extensions SET last_used_at = ? WHERE term = ? AND category = ? AND source = ?",
                [(now, key.term, key.category, key.source) for key in keys],
            )

    async def invalidate(self, term: Optional[str] = None, source: Optional[str] = None) -> int:
        return await asyncio.to_thread(self._invalidate, term, source)

    def _invalidate(self, term: Optional[str], source: Optional[str]) -> int:
        clauses: List[str] = []
        params: List[str] = []
        if term:
            clauses.append("term = ?")
            params.append(term.strip().lower())
        if source:
            clauses.append("source = ?")
            params.append(source)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            return conn.execute(f"DELETE FROM query_extensions{where}", params).rowcount

    async def count(self) -> int:
        return await asyncio.to_thread(self._count)

    def _count(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM query_extensions").fetchone()[0])


class ExpansionCache:
    """Facade over the in-process and persistent tiers.

    Reads never wait on a pending persistent write: ``put`` lands in memory
    synchronously and the durable write is a detached task.
    """

    def __init__(
        self,
        persistent: Optional[SqliteExtensionStore] = None,
        memory: Optional[InMemoryExtensionTier] = None,
    ) -> None:
        self.memory = memory if memory is not None else InMemoryExtensionTier()
        self.persistent = persistent
        self._pending: Set[asyncio.Task] = set()

    def peek(self, key: ExtensionKey) -> Optional[ExtensionCacheEntry]:
        """In-process lookup only."""

        return self.memory.get(key)

    async def get_many(self, keys: Iterable[ExtensionKey]) -> Dict[ExtensionKey, ExtensionCacheEntry]:
        """Look keys up in memory, then the remainder in the persistent tier with one batch."""

        found: Dict[ExtensionKey, ExtensionCacheEntry] = {}
        missing: List[ExtensionKey] = []
        for key in dict.fromkeys(keys):
            entry = self.memory.get(key)
            if entry is not None:
                found[key] = entry
            else:
                missing.append(key)

        if missing and self.persistent is not None:
            try:
                stored = await self.persistent.get_many(missing)
            except Exception as exc:  # noqa: BLE001 - a broken durable tier is a cache miss
                logger.warning("Persistent extension cache read failed: %s", exc)
                stored = {}
            for key, entry in stored.items():
                found[key] = self.memory.upsert(entry)
            if stored:
                self._spawn(self.persistent.touch(list(stored)), "touch")

        logger.debug("Extension cache: %d hits, %d memory misses", len(found), len(missing))
        return found

    def put(self, entry: ExtensionCacheEntry) -> ExtensionCacheEntry:
        """Upsert into memory now, persist in the background; returns the canonical entry."""

        canonical = self.memory.upsert(entry)
        if canonical is entry and self.persistent is not None:
            self._spawn(self.persistent.upsert(canonical), f"persist {canonical.key}")
        return canonical

    async def invalidate(self, term: Optional[str] = None, source: Optional[str] = None) -> int:
        """Drop matching entries from both tiers; returns the number of persisted rows removed."""

        self.memory.invalidate(term, source)
        if self.persistent is None:
            return 0
        return await self.persistent.invalidate(term, source)

    def _spawn(self, coro, label: str) -> None:
        task = asyncio.get_running_loop().create_task(self._guard(coro, label))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _guard(coro, label: str) -> None:
        try:
            await coro
        except Exception as exc:  # noqa: BLE001 - cache writes are best-effort
            logger.warning("Extension cache write failed (%s): %s", label, exc)

    async def drain(self) -> None:
        """Wait for outstanding background writes."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
