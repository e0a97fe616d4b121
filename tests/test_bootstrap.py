"""Settings and pipeline wiring."""

from __future__ import annotations

import pytest

from config.settings import AppSettings
from core.bootstrap import build_embedder, build_llm, build_pipeline
from core.embedders.http_embedder import HttpEmbedder


def test_from_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("EMBEDDING_SERVICE_URL", "http://embed.local")
    monkeypatch.setenv("GROQ_API_KEY", "key")
    monkeypatch.setenv("SEARCH_TIMEOUT_S", "12.5")
    monkeypatch.setenv("CACHE_DB_PATH", str(tmp_path / "ext.sqlite3"))

    settings = AppSettings.from_env()

    assert settings.embedder.name == "http"
    assert settings.expansion.llm_api_key == "key"
    assert settings.request_timeout_s == 12.5
    assert isinstance(build_embedder(settings), HttpEmbedder)
    assert build_llm(settings).model == settings.expansion.llm_model


def test_http_embedder_requires_url():
    settings = AppSettings()
    settings.embedder.name = "http"

    with pytest.raises(ValueError):
        build_embedder(settings)


def test_pipeline_starts_with_empty_index(settings):
    pipeline = build_pipeline(settings)

    assert len(pipeline.index) == 0
    assert pipeline.resolver.generator.llm is None
    assert pipeline.retrieval.categories == settings.expansion.categories
