# Path: core/search/analyzer.py
# Purpose: Classify an incoming query and decide which embedding represents it for retrieval.
# Layer: core/search.
# Details: Word counting, abstractness detection (word lists, then an optional LLM check) and route selection.

from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Optional

from core.errors import LLMProviderError
from core.expansion.llm import LLMProvider
from core.expansion.parsing import ParseFailure, parse_extensions
from core.expansion.prompts import CURATED_EXPANSIONS, build_classifier_prompt
from core.models.domain import SourceMode

logger = logging.getLogger(__name__)

ROUTE_VIBE_EXTENSION = "vibe_extension"
ROUTE_SEARCH_EXTENSION = "search_extension"
ROUTE_EXPANSION = "expansion"
ROUTE_DIRECT = "direct"

EXPANSION_MAX_WORDS = 2
MEMO_MAX_TERMS = 4096

ABSTRACT_PATTERNS = (
    re.compile(
        r"^(love|hate|joy|sad|happy|angry|calm|chaotic|peaceful|energetic|cozy|serious|fun|playful|"
        r"melancholic|euphoric|anxious|relaxed|tense|excited|bored)$"
    ),
    re.compile(r"^(warm|cold|bright|dark|soft|harsh|gentle|intense|mellow|vibrant|muted|bold|subtle)$"),
    re.compile(r"^(romantic|intimate|distant|close|open|closed|free|restricted)$"),
)


def word_count(text: str) -> int:
    """Count words; "ui/ux" counts as two."""

    count = 0
    for token in text.split():
        if "/" in token:
            count += sum(1 for part in token.split("/") if part)
        else:
            count += 1
    return count


@dataclass(frozen=True)
class RouteDecision:
    """Outcome of query analysis."""

    route: str
    word_count: int
    use_expansion: bool
    is_abstract: bool = False

    @property
    def uses_extensions(self) -> bool:
        return self.route in (ROUTE_VIBE_EXTENSION, ROUTE_SEARCH_EXTENSION)


class AbstractnessClassifier:
    """Decides whether a short query names a mood rather than something visible."""

    def __init__(self, llm: Optional[LLMProvider] = None, timeout_s: float = 10.0, memo_size: int = MEMO_MAX_TERMS) -> None:
        self.llm = llm
        self.timeout_s = timeout_s
        self.memo_size = memo_size
        self._memo: "OrderedDict[str, bool]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Task] = {}

    @staticmethod
    def matches_word_lists(term: str) -> bool:
        normalized = term.strip().lower()
        if normalized in CURATED_EXPANSIONS:
            return True
        return any(pattern.match(normalized) for pattern in ABSTRACT_PATTERNS)

    async def is_abstract(self, term: str) -> bool:
        normalized = term.strip().lower()
        if not normalized:
            return False
        if normalized in self._memo:
            self._memo.move_to_end(normalized)
            return self._memo[normalized]
        if self.matches_word_lists(normalized):
            self._remember(normalized, True)
            return True
        if self.llm is None:
            return False

        task = self._inflight.get(normalized)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._classify(normalized))
            self._inflight[normalized] = task
            task.add_done_callback(lambda _: self._inflight.pop(normalized, None))
        # Shielded: one caller giving up must not cancel the check others are waiting on.
        return await asyncio.shield(task)

    async def _classify(self, term: str) -> bool:
        verdict = await self._ask_llm(term)
        if verdict is None:
            # Failed checks route as concrete for this request only.
            return False
        self._remember(term, verdict)
        return verdict

    def _remember(self, term: str, verdict: bool) -> None:
        self._memo[term] = verdict
        self._memo.move_to_end(term)
        while len(self._memo) > self.memo_size:
            self._memo.popitem(last=False)

    async def _ask_llm(self, term: str) -> Optional[bool]:
        assert self.llm is not None
        try:
            raw = await asyncio.wait_for(self.llm.generate(build_classifier_prompt(term)), timeout=self.timeout_s)
        except (asyncio.TimeoutError, LLMProviderError) as exc:
            logger.warning("Abstractness check for %r failed, treating as concrete: %s", term, exc)
            return None
        parsed = parse_extensions(raw)
        if isinstance(parsed, ParseFailure):
            logger.warning("Abstractness check for %r unparseable: %s", term, parsed.reason)
            return None
        return parsed.items[0].strip().lower() == "abstract"


class QueryAnalyzer:
    """Maps (text, source mode) to one of four retrieval routes."""

    def __init__(self, classifier: Optional[AbstractnessClassifier] = None) -> None:
        self.classifier = classifier or AbstractnessClassifier()

    async def analyze(self, text: str, source_mode: Optional[SourceMode], category: Optional[str] = None) -> RouteDecision:
        """
        Decide the route for one query.

        Extension routes win for short queries with an explicit source mode; the
        abstractness classifier only runs when neither applies.
        """

        words = word_count(text)
        use_expansion = words < 3

        if use_expansion and source_mode is SourceMode.VIBE:
            decision = RouteDecision(ROUTE_VIBE_EXTENSION, words, use_expansion)
        elif use_expansion and source_mode is SourceMode.CONCRETE:
            decision = RouteDecision(ROUTE_SEARCH_EXTENSION, words, use_expansion)
        elif use_expansion and 0 < words <= EXPANSION_MAX_WORDS and await self.classifier.is_abstract(text):
            decision = RouteDecision(ROUTE_EXPANSION, words, use_expansion, is_abstract=True)
        else:
            decision = RouteDecision(ROUTE_DIRECT, words, use_expansion)

        logger.debug("Route for %r (%s, %s): %s", text, source_mode, category or "all", decision.route)
        return decision
