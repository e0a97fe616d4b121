"""Query analysis: word counting, abstractness and route selection."""

from __future__ import annotations

import asyncio

import pytest

from core.models.domain import SourceMode
from core.search.analyzer import (
    ROUTE_DIRECT,
    ROUTE_EXPANSION,
    ROUTE_SEARCH_EXTENSION,
    ROUTE_VIBE_EXTENSION,
    AbstractnessClassifier,
    QueryAnalyzer,
    word_count,
)

from .conftest import FakeLLM


@pytest.mark.parametrize(
    "text, expected",
    [
        ("", 0),
        ("3d", 1),
        ("  dark   mode ", 2),
        ("ui/ux", 2),
        ("ui/ux design", 3),
        ("a//b", 2),
        ("/", 0),
        ("brutalist landing page", 3),
    ],
)
def test_word_count(text, expected):
    assert word_count(text) == expected


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text, mode, route",
    [
        ("3d", SourceMode.CONCRETE, ROUTE_SEARCH_EXTENSION),
        ("dark mode", SourceMode.CONCRETE, ROUTE_SEARCH_EXTENSION),
        ("love", SourceMode.VIBE, ROUTE_VIBE_EXTENSION),
        ("ui/ux", SourceMode.VIBE, ROUTE_VIBE_EXTENSION),
        ("love", None, ROUTE_EXPANSION),
        ("3d", None, ROUTE_DIRECT),
        ("love is warm", SourceMode.VIBE, ROUTE_DIRECT),
        ("ui/ux design", SourceMode.CONCRETE, ROUTE_DIRECT),
    ],
)
async def test_routing_table(text, mode, route):
    decision = await QueryAnalyzer().analyze(text, mode)

    assert decision.route == route
    assert decision.use_expansion == (word_count(text) < 3)


@pytest.mark.asyncio
async def test_extension_route_skips_abstractness_check():
    llm = FakeLLM(classification="abstract")
    analyzer = QueryAnalyzer(AbstractnessClassifier(llm=llm))

    decision = await analyzer.analyze("neon", SourceMode.CONCRETE)

    assert decision.route == ROUTE_SEARCH_EXTENSION
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_llm_classification_is_memoised():
    llm = FakeLLM(classification="abstract")
    analyzer = QueryAnalyzer(AbstractnessClassifier(llm=llm))

    first = await analyzer.analyze("Nostalgic", None)
    second = await analyzer.analyze("nostalgic ", None)

    assert first.route == second.route == ROUTE_EXPANSION
    assert first.is_abstract
    assert len(llm.prompts) == 1


@pytest.mark.asyncio
async def test_word_lists_decide_without_llm():
    llm = FakeLLM(classification="concrete")
    classifier = AbstractnessClassifier(llm=llm)

    assert await classifier.is_abstract("Cozy")
    assert await classifier.is_abstract("vibrant")
    assert llm.prompts == []


@pytest.mark.asyncio
@pytest.mark.parametrize("llm", [FakeLLM(fail=True), FakeLLM(delay=0.5), FakeLLM(overrides={"Classify": "no idea"})])
async def test_classifier_failure_means_concrete(llm):
    classifier = AbstractnessClassifier(llm=llm, timeout_s=0.05)

    assert not await classifier.is_abstract("nostalgic")


class SlowFirstLLM(FakeLLM):
    """Times out on its first call, answers normally afterwards."""

    async def generate(self, prompt: str) -> str:
        self.delay = 0.5 if not self.prompts else 0.0
        return await super().generate(prompt)


@pytest.mark.asyncio
async def test_failed_check_is_retried_on_next_request():
    llm = SlowFirstLLM(classification="abstract")
    classifier = AbstractnessClassifier(llm=llm, timeout_s=0.05)

    first = await classifier.is_abstract("serene")
    second = await classifier.is_abstract("serene")

    assert not first
    assert second
    assert len(llm.prompts) == 2


@pytest.mark.asyncio
async def test_concurrent_checks_share_one_llm_call():
    llm = FakeLLM(delay=0.05, classification="abstract")
    classifier = AbstractnessClassifier(llm=llm)

    verdicts = await asyncio.gather(*(classifier.is_abstract("serene") for _ in range(5)))

    assert verdicts == [True] * 5
    assert len(llm.prompts) == 1


@pytest.mark.asyncio
async def test_memo_keeps_most_recent_terms():
    llm = FakeLLM(classification="concrete")
    classifier = AbstractnessClassifier(llm=llm, memo_size=2)

    for term in ("neon", "chrome", "marble"):
        await classifier.is_abstract(term)
    await classifier.is_abstract("neon")

    assert len(llm.prompts) == 4
    assert list(classifier._memo) == ["marble", "neon"]
