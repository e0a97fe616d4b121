# Path: core/expansion/generator.py
# Purpose: Generate, embed and cache category extensions and abstract-query expansions.
# Layer: core/expansion.
# Details: Concurrent misses on one key share a single generation; LLM failures degrade to "no extension".

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from core.embedders.base import Embedder
from core.errors import LLMProviderError
from core.models.domain import (
    ALL_CATEGORIES,
    EXPANSION_SOURCE,
    SEARCHBAR_SOURCE,
    VIBEFILTER_SOURCE,
    ExtensionCacheEntry,
    ExtensionKey,
    SourceMode,
)
from .cache import ExpansionCache
from .llm import LLMProvider
from .parsing import ParseFailure, parse_extensions
from .prompts import CURATED_EXPANSIONS, build_expansion_prompt, build_extension_prompt, format_extension

logger = logging.getLogger(__name__)

MAX_EXPANSIONS = 6


def source_for(mode: SourceMode) -> str:
    """Cache source name for extensions generated in the given source mode."""

    return VIBEFILTER_SOURCE if mode is SourceMode.VIBE else SEARCHBAR_SOURCE


class ExpansionGenerator:
    """Produces the vectors behind the extension and expansion routes."""

    def __init__(
        self,
        embedder: Embedder,
        cache: ExpansionCache,
        llm: Optional[LLMProvider] = None,
        categories: Iterable[str] = (),
        grounding_categories: Iterable[str] = (),
        llm_timeout_s: float = 10.0,
    ) -> None:
        self.embedder = embedder
        self.cache = cache
        self.llm = llm
        self.categories: Tuple[str, ...] = tuple(categories)
        self.grounding_categories = frozenset(grounding_categories)
        self.llm_timeout_s = llm_timeout_s
        self._inflight: Dict[ExtensionKey, asyncio.Future] = {}
        self._tasks: Set[asyncio.Task] = set()

    # Public API
    async def extensions_for(
        self, term: str, source_mode: SourceMode, categories: Optional[Iterable[str]] = None
    ) -> Dict[str, ExtensionCacheEntry]:
        """
        Return the extension entry of every category that has (or now gets) one.

        External calls:
        - core/expansion/cache.py::ExpansionCache.get_many - in-process then persistent lookup.
        - core/expansion/llm.py::LLMProvider.generate - one call per missing category, time-bounded.
        - core/embedders/base.py::Embedder.embed_texts - one batch for every generated "term, extension".
        """

        source = source_for(source_mode)
        keys = {category: ExtensionKey.of(term, category, source) for category in (categories or self.categories)}
        if not keys or not keys[next(iter(keys))].term:
            return {}

        found = await self.cache.get_many(keys.values())
        results = {category: found[key] for category, key in keys.items() if key in found}
        pending = {category: key for category, key in keys.items() if category not in results}
        if not pending or self.llm is None:
            return results

        waiting, claimed = self._claim(pending, results)
        if claimed:
            self._spawn(self._settle(claimed, lambda: self._generate_extensions(claimed, source_mode)))
        results.update(await self._collect(waiting))
        return results

    async def expansion_for(self, term: str) -> Optional[ExtensionCacheEntry]:
        """Return the mean-pooled embedding of curated and generated visual descriptions of an abstract term."""

        key = ExtensionKey.of(term, ALL_CATEGORIES, EXPANSION_SOURCE)
        if not key.term:
            return None
        found = await self.cache.get_many([key])
        if key in found:
            return found[key]

        results: Dict[str, ExtensionCacheEntry] = {}
        waiting, claimed = self._claim({ALL_CATEGORIES: key}, results)
        if claimed:
            self._spawn(self._settle(claimed, lambda: self._generate_expansion(key)))
        results.update(await self._collect(waiting))
        return results.get(ALL_CATEGORIES)

    async def drain(self) -> None:
        """Wait for in-flight generations and their cache writes."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.cache.drain()

    # Single-flight bookkeeping
    def _claim(
        self, pending: Dict[str, ExtensionKey], results: Dict[str, ExtensionCacheEntry]
    ) -> Tuple[Dict[str, asyncio.Future], Dict[str, ExtensionKey]]:
        """Join generations already in flight and claim the rest for this caller."""

        loop = asyncio.get_running_loop()
        waiting: Dict[str, asyncio.Future] = {}
        claimed: Dict[str, ExtensionKey] = {}
        for category, key in pending.items():
            # Another request may have finished while the persistent tier was read.
            entry = self.cache.peek(key)
            if entry is not None:
                results[category] = entry
                continue
            future = self._inflight.get(key)
            if future is None:
                future = loop.create_future()
                self._inflight[key] = future
                claimed[category] = key
            waiting[category] = future
        return waiting, claimed

    @staticmethod
    async def _collect(waiting: Dict[str, asyncio.Future]) -> Dict[str, ExtensionCacheEntry]:
        collected: Dict[str, ExtensionCacheEntry] = {}
        for category, future in waiting.items():
            # Shielded: a caller hitting its deadline must not cancel a generation others share.
            entry = await asyncio.shield(future)
            if entry is not None:
                collected[category] = entry
        return collected

    async def _settle(
        self,
        claimed: Dict[str, ExtensionKey],
        generate: Callable[[], Awaitable[Dict[str, ExtensionCacheEntry]]],
    ) -> None:
        entries: Dict[str, ExtensionCacheEntry] = {}
        try:
            entries = await generate()
        except Exception as exc:  # noqa: BLE001 - generation failure means "no extension"
            logger.warning("Extension generation failed for %s: %s", sorted(claimed.values()), exc)
        finally:
            for category, key in claimed.items():
                future = self._inflight.pop(key, None)
                if future is not None and not future.done():
                    future.set_result(entries.get(category))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Generation
    async def _ask(self, prompt: str, label: str) -> Optional[Tuple[str, ...]]:
        """One time-bounded LLM call, parsed defensively."""

        assert self.llm is not None
        try:
            raw = await asyncio.wait_for(self.llm.generate(prompt), timeout=self.llm_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("LLM call for %s timed out after %.1fs", label, self.llm_timeout_s)
            return None
        except LLMProviderError as exc:
            logger.warning("LLM call for %s failed: %s", label, exc)
            return None

        parsed = parse_extensions(raw)
        if isinstance(parsed, ParseFailure):
            logger.warning("Discarding LLM output for %s: %s", label, parsed.reason)
            return None
        return parsed.items

    async def _extension_text(self, key: ExtensionKey, source_mode: SourceMode) -> Optional[str]:
        grounding = key.category in self.grounding_categories
        prompt = build_extension_prompt(key.term, key.category, source_mode, grounding)
        items = await self._ask(prompt, f"{key.term!r}/{key.category}/{key.source}")
        return format_extension(items, grounding) if items else None

    async def _generate_extensions(
        self, claimed: Dict[str, ExtensionKey], source_mode: SourceMode
    ) -> Dict[str, ExtensionCacheEntry]:
        texts = await asyncio.gather(*(self._extension_text(key, source_mode) for key in claimed.values()))
        produced = {category: text for category, text in zip(claimed, texts) if text}
        if not produced:
            return {}

        # The vector represents "term, extension" jointly, never the extension alone.
        combined = [f"{claimed[category].term}, {text}" for category, text in produced.items()]
        vectors = await self.embedder.embed_texts(combined)

        model = getattr(self.llm, "model", "unknown")
        entries: Dict[str, ExtensionCacheEntry] = {}
        for (category, text), vector in zip(produced.items(), vectors):
            entry = ExtensionCacheEntry(key=claimed[category], text=text, embedding=Embedder._normalize(vector), model=model)
            entries[category] = self.cache.put(entry)
        logger.info("Generated %d/%d extensions for %r", len(entries), len(claimed), next(iter(claimed.values())).term)
        return entries

    async def _generate_expansion(self, key: ExtensionKey) -> Dict[str, ExtensionCacheEntry]:
        descriptions: List[str] = list(CURATED_EXPANSIONS.get(key.term, []))
        model = "curated"
        if self.llm is not None:
            generated = await self._ask(build_expansion_prompt(key.term), f"expansion {key.term!r}")
            if generated:
                model = getattr(self.llm, "model", "unknown")
                descriptions.extend(item for item in generated if item not in descriptions)
        descriptions = descriptions[:MAX_EXPANSIONS]
        if not descriptions:
            return {}

        vectors = await self.embedder.embed_texts(descriptions)
        pooled = Embedder._normalize(np.mean(vectors, axis=0))
        entry = ExtensionCacheEntry(key=key, text="; ".join(descriptions), embedding=pooled, model=model)
        return {ALL_CATEGORIES: self.cache.put(entry)}
