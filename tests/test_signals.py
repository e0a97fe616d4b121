"""Signal collection: batched lookups, concept matching and slider vectors."""

from __future__ import annotations

import numpy as np
import pytest

from core.concepts.store import ConceptStore
from core.metrics.store import SqliteMetricsStore
from core.models.domain import Concept, HubStats
from core.search.signals import SignalCollector

from .conftest import KeywordEmbedder


def _concepts():
    return ConceptStore(
        [
            Concept(id="calm", label="Calm", opposites=("loud", "chaotic")),
            Concept(id="loud", label="Loud", embedding=np.array([0, 1, 0], dtype=np.float32)),
            Concept(id="minimal", label="Minimal"),
        ]
    )


def test_concept_matching_by_label_and_token():
    store = _concepts()

    assert [c.id for c in store.match_query("Calm")] == ["calm"]
    assert [c.id for c in store.match_query("minimal, calm posters")] == ["minimal", "calm"]
    assert store.match_query("a") == []
    assert [c.id for c in store.opposites_of(store.get("CALM"))] == ["loud"]


@pytest.mark.asyncio
async def test_collects_hub_popularity_and_tags(tmp_path):
    metrics = SqliteMetricsStore(tmp_path / "m.sqlite3")
    await metrics.upsert_hub_stats({"a": HubStats(3, 0.3, 0.5, 0.1)})
    await metrics.upsert_tags([("a", "calm", 0.9), ("b", "loud", 0.7)])
    collector = SignalCollector(metrics, concepts=_concepts())

    signals = await collector.collect(["a", "b"], "calm")

    assert set(signals.hub) == {"a"}
    assert signals.popularity == {}
    assert signals.tags == {"a": {"calm": 0.9}, "b": {"loud": 0.7}}
    assert signals.opposite_ids == {"calm": ("loud", "chaotic")}
    assert signals.sliders == []


@pytest.mark.asyncio
async def test_slider_opposite_vector_mixes_stored_and_embedded(tmp_path):
    embedder = KeywordEmbedder(vocabulary=("chaotic", "x"))
    collector = SignalCollector(None, concepts=_concepts(), embedder=embedder)

    signals = await collector.collect(["a"], "calm", sliders={"CALM": 0.2})

    assert len(signals.sliders) == 1
    slider = signals.sliders[0]
    assert slider.concept_id == "calm" and slider.position == 0.2
    assert embedder.calls == [["chaotic"]]
    expected = np.array([1, 1, 0], dtype=np.float32) / np.sqrt(2)
    np.testing.assert_allclose(slider.opposite_vector, expected, rtol=1e-6)


@pytest.mark.asyncio
async def test_upper_half_slider_needs_no_opposite(tmp_path):
    embedder = KeywordEmbedder(vocabulary=("chaotic", "x"))
    collector = SignalCollector(None, concepts=_concepts(), embedder=embedder)

    signals = await collector.collect(["a"], "calm", sliders={"calm": 0.8})

    assert signals.sliders[0].opposite_vector is None
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_store_errors_are_treated_as_missing(tmp_path, caplog):
    class Broken(SqliteMetricsStore):
        async def hub_stats(self, ids):
            raise RuntimeError("locked")

    collector = SignalCollector(Broken(tmp_path / "m.sqlite3"), concepts=_concepts())

    signals = await collector.collect(["a"], "nothing")

    assert signals.hub == {}
    assert "Loading hub stats failed" in caplog.text
