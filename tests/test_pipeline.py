"""End-to-end pipeline behaviour over the fake catalog."""

from __future__ import annotations

import pytest

from config.settings import DEFAULT_CATEGORIES
from core.errors import SearchUnavailableError
from core.models.domain import SearchQuery, SourceMode
from core.search.analyzer import ROUTE_DIRECT, ROUTE_EXPANSION, ROUTE_SEARCH_EXTENSION

from core.embedders.clip_embedder import ClipEmbedder

from .conftest import ClosableEmbedder, ClosableLLM, FakeLLM, KeywordEmbedder


def _scores(result):
    return [item.final_score for item in result.items]


@pytest.mark.asyncio
async def test_single_word_concrete_query_uses_search_extensions(make_pipeline):
    pipeline = make_pipeline(llm=FakeLLM())

    result = await pipeline.search(SearchQuery(text="3d", source_mode=SourceMode.CONCRETE))
    await pipeline.resolver.generator.drain()

    assert result.route == ROUTE_SEARCH_EXTENSION
    assert set(result.extensions) == set(DEFAULT_CATEGORIES)
    assert await pipeline.resolver.generator.cache.persistent.count() == len(DEFAULT_CATEGORIES)
    assert result.items
    assert {item.candidate.category for item in result.items} == set(DEFAULT_CATEGORIES)
    for category in DEFAULT_CATEGORIES:
        scores = [item.final_score for item in result.items if item.candidate.category == category]
        assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_filtered_extension_query_is_monotonic(make_pipeline):
    pipeline = make_pipeline(llm=FakeLLM())

    result = await pipeline.search(SearchQuery(text="3d", category="website", source_mode=SourceMode.CONCRETE))

    assert result.route == ROUTE_SEARCH_EXTENSION
    assert set(result.extensions) == {"website"}
    assert {item.candidate.category for item in result.items} == {"website"}
    assert _scores(result) == sorted(_scores(result), reverse=True)


@pytest.mark.asyncio
async def test_second_search_is_served_from_cache(make_pipeline):
    llm = FakeLLM()
    pipeline = make_pipeline(llm=llm)
    query = SearchQuery(text="3d", source_mode=SourceMode.CONCRETE)

    first = await pipeline.search(query)
    calls = len(llm.prompts)
    second = await pipeline.search(query)

    assert len(llm.prompts) == calls
    assert [item.id for item in first.items] == [item.id for item in second.items]
    assert _scores(first) == _scores(second)


@pytest.mark.asyncio
async def test_llm_timeout_degrades_to_direct_embedding(make_pipeline, settings):
    settings.expansion.llm_timeout_s = 0.05
    pipeline = make_pipeline(llm=FakeLLM(delay=1.0))

    result = await pipeline.search(SearchQuery(text="techy", source_mode=SourceMode.CONCRETE, category="logo"))

    assert result.route == ROUTE_DIRECT
    assert result.extensions == {}
    assert result.items[0].candidate.category == "logo"
    assert result.items[0].id == "logo-2"


@pytest.mark.asyncio
async def test_request_budget_bounds_extension_work(make_pipeline):
    pipeline = make_pipeline(llm=FakeLLM(delay=1.0))
    pipeline.request_timeout_s = 0.05

    result = await pipeline.search(SearchQuery(text="3d", source_mode=SourceMode.CONCRETE))

    assert result.route == ROUTE_DIRECT
    assert result.items
    await pipeline.resolver.generator.drain()


@pytest.mark.asyncio
async def test_abstract_assistant_query_uses_expansion(make_pipeline):
    pipeline = make_pipeline(llm=FakeLLM())

    result = await pipeline.search(SearchQuery(text="love"))

    assert result.route == ROUTE_EXPANSION
    assert result.items


@pytest.mark.asyncio
async def test_embedding_failure_is_search_unavailable(make_pipeline):
    pipeline = make_pipeline(embedder_override=KeywordEmbedder(fail=True))

    with pytest.raises(SearchUnavailableError) as excinfo:
        await pipeline.search(SearchQuery(text="3d"))

    assert excinfo.value.code == "SEARCH_UNAVAILABLE"


@pytest.mark.asyncio
async def test_empty_query_returns_empty_result(make_pipeline):
    result = await make_pipeline().search(SearchQuery(text="   "))

    assert result.items == []
    assert result.total == 0


@pytest.mark.asyncio
async def test_composite_pool_matches_standalone_main_concept(make_pipeline):
    pipeline = make_pipeline()
    standalone = SearchQuery(text="techy")
    composite = SearchQuery(text="techy, 3d models", main_concept="techy", additions=("3d models",))

    standalone_pool = await pipeline.retrieve_pool(standalone)
    composite_pool = await pipeline.retrieve_pool(composite)

    assert {n.candidate_id for n in composite_pool} == {n.candidate_id for n in standalone_pool}


@pytest.mark.asyncio
async def test_composite_keeps_standalone_top_result(make_pipeline):
    pipeline = make_pipeline()

    standalone = await pipeline.search(SearchQuery(text="techy"))
    composite = await pipeline.search(
        SearchQuery(text="techy, 3d models", main_concept="techy", additions=("3d models",), debug=True)
    )

    assert composite.items[0].id == standalone.items[0].id
    assert composite.items[0].id.endswith("-2")
    assert composite.items[0].diagnostics["main_rank"] == 1
    assert _scores(composite) == sorted(_scores(composite), reverse=True)


@pytest.mark.asyncio
async def test_results_respect_limit_and_log_impressions(make_pipeline):
    pipeline = make_pipeline()

    result = await pipeline.search(SearchQuery(text="minimal", limit=5))
    await pipeline.impressions.drain()

    assert len(result.items) == 5
    assert result.total == len(DEFAULT_CATEGORIES) * 4
    stats = await pipeline.signals.metrics.interaction_stats()
    assert stats["total_impressions"] == 5
    assert stats["unique_queries"] == 1


@pytest.mark.asyncio
async def test_hub_statistics_demote_over_exposed_images(make_pipeline):
    from core.models.domain import HubStats

    pipeline = make_pipeline()
    baseline = await pipeline.search(SearchQuery(text="techy", category="app"))
    top = baseline.items[0]
    await pipeline.signals.metrics.upsert_hub_stats({top.id: HubStats(50, 0.9, 0.6, 0.1)})

    result = await pipeline.search(SearchQuery(text="techy", category="app"))

    demoted = next(item for item in result.items if item.id == top.id)
    assert demoted.hub_multiplier == pytest.approx(0.8)
    assert result.items[0].id != top.id


@pytest.mark.asyncio
async def test_image_query_ranks_by_image_embedding(make_pipeline):
    pipeline = make_pipeline(llm=FakeLLM())

    result = await pipeline.search(SearchQuery(image=b"techy 3d", category="logo"))

    assert result.route == ROUTE_DIRECT
    assert result.extensions == {}
    assert result.items[0].id == "logo-2"


@pytest.mark.asyncio
async def test_unreadable_image_is_search_unavailable(make_pipeline):
    pipeline = make_pipeline(embedder_override=ClipEmbedder(dim=16))

    with pytest.raises(SearchUnavailableError):
        await pipeline.search(SearchQuery(image=b"definitely not a png"))


@pytest.mark.asyncio
async def test_default_limit_applies_when_query_has_none(make_pipeline):
    pipeline = make_pipeline()
    pipeline.default_limit = 3

    result = await pipeline.search(SearchQuery(text="minimal"))

    assert len(result.items) == 3
    assert result.total == len(DEFAULT_CATEGORIES) * 4


@pytest.mark.asyncio
async def test_aclose_flushes_background_writes_and_closes_clients(make_pipeline):
    llm = ClosableLLM()
    embedder = ClosableEmbedder()
    pipeline = make_pipeline(llm=llm, embedder_override=embedder)

    await pipeline.search(SearchQuery(text="3d", source_mode=SourceMode.CONCRETE))
    await pipeline.aclose()

    assert await pipeline.resolver.generator.cache.persistent.count() == len(DEFAULT_CATEGORIES)
    assert (await pipeline.signals.metrics.interaction_stats())["total_impressions"] > 0
    assert llm.closed
    assert embedder.closed
