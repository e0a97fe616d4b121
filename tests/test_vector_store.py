"""In-memory cosine index: ordering, filtering and persistence."""

from __future__ import annotations

import numpy as np
import pytest

from core.vector_store.memory_store import InMemoryVectorIndex


def _index() -> InMemoryVectorIndex:
    index = InMemoryVectorIndex(dim=2)
    index.add(
        ["b", "a", "c", "d"],
        np.array([[1, 0], [2, 0], [0, 1], [1, 1]], dtype=np.float32),
        [
            {"collection_id": "s1", "category": "website"},
            {"collection_id": "s2", "category": "website"},
            {"collection_id": "s3", "category": "logo"},
            {"collection_id": "s4", "category": "logo"},
        ],
    )
    return index


@pytest.mark.asyncio
async def test_nearest_orders_by_similarity_then_id():
    hits = await _index().nearest(np.array([1, 0], dtype=np.float32), k=3)

    assert [hit.candidate_id for hit in hits] == ["a", "b", "d"]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[0].category == "website"


@pytest.mark.asyncio
async def test_nearest_with_category_filter():
    hits = await _index().nearest(np.array([1, 0], dtype=np.float32), k=10, category="logo")

    assert [hit.candidate_id for hit in hits] == ["d", "c"]


def test_rejects_duplicates_and_wrong_dimensions():
    index = _index()

    with pytest.raises(ValueError):
        index.add(["a"], np.ones((1, 2), dtype=np.float32))
    with pytest.raises(ValueError):
        index.add(["z"], np.ones((1, 3), dtype=np.float32))


@pytest.mark.asyncio
async def test_save_and_load_round_trip(tmp_path):
    index = _index()
    index.save(str(tmp_path / "images"))

    restored = InMemoryVectorIndex(dim=2)
    restored.load(str(tmp_path / "images"))
    candidates = await restored.get_candidates(["c", "unknown"])

    assert len(restored) == 4
    assert set(candidates) == {"c"}
    assert candidates["c"].collection_id == "s3"
    np.testing.assert_allclose(candidates["c"].embedding, [0, 1])


def test_load_missing_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        InMemoryVectorIndex(dim=2).load(str(tmp_path / "nothing"))
