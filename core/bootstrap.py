# Path: core/bootstrap.py
# Purpose: Build a fully wired SearchPipeline from application settings.
# Layer: core.
# Details: Every collaborator is constructed here and injected; nothing in core keeps module-level state.

from __future__ import annotations

import logging
from typing import Optional

from config.settings import AppSettings
from core.concepts.store import ConceptStore
from core.embedders.base import Embedder
from core.embedders.clip_embedder import ClipEmbedder
from core.embedders.http_embedder import HttpEmbedder
from core.expansion.cache import ExpansionCache, SqliteExtensionStore
from core.expansion.generator import ExpansionGenerator
from core.expansion.llm import ChatCompletionsProvider, LLMProvider
from core.metrics.impressions import ImpressionLogger
from core.metrics.store import SqliteMetricsStore
from core.search.analyzer import AbstractnessClassifier, QueryAnalyzer
from core.search.balancer import CategoryBalancer
from core.search.pipeline import SearchPipeline
from core.search.retrieval import QueryResolver, RetrievalEngine
from core.search.signals import SignalCollector
from core.vector_store.base import VectorIndex
from core.vector_store.memory_store import InMemoryVectorIndex

logger = logging.getLogger(__name__)


def build_embedder(settings: AppSettings) -> Embedder:
    """Instantiate the configured embedding provider."""

    config = settings.embedder
    if config.name == "http":
        if not config.service_url:
            raise ValueError("EMBEDDING_SERVICE_URL is required for the http embedder.")
        return HttpEmbedder(config.service_url, api_key=config.api_key, dim=config.dim, timeout_s=config.timeout_s)
    if config.name == "clip":
        return ClipEmbedder(model_name=config.model_name, dim=config.dim)
    raise ValueError(f"Unknown embedder: {config.name}")


def build_index(settings: AppSettings) -> VectorIndex:
    """Instantiate the vector index and load it from disk when files exist."""

    config = settings.vector_store
    if config.name != "memory":
        raise ValueError(f"Unknown vector index: {config.name}")
    index = InMemoryVectorIndex(dim=config.dim)
    try:
        index.load(str(config.index_path))
    except FileNotFoundError:
        logger.warning("No vector index at %s, starting empty", config.index_path)
    else:
        logger.info("Loaded %d vectors from %s", len(index), config.index_path)
    return index


def build_llm(settings: AppSettings) -> Optional[LLMProvider]:
    config = settings.expansion
    if not config.llm_api_key:
        logger.warning("No LLM API key configured; extensions are served from cache only")
        return None
    return ChatCompletionsProvider(
        base_url=config.llm_base_url,
        api_key=config.llm_api_key,
        model=config.llm_model,
        timeout_s=config.llm_timeout_s,
        temperature=config.temperature,
    )


def build_pipeline(
    settings: Optional[AppSettings] = None,
    embedder: Optional[Embedder] = None,
    index: Optional[VectorIndex] = None,
    llm: Optional[LLMProvider] = None,
) -> SearchPipeline:
    """
    Wire the search pipeline.

    Explicit ``embedder``/``index``/``llm`` arguments replace the ones settings describe.
    """

    settings = settings or AppSettings.from_env()
    embedder = embedder if embedder is not None else build_embedder(settings)
    index = index if index is not None else build_index(settings)
    llm = llm if llm is not None else build_llm(settings)
    expansion = settings.expansion

    cache = ExpansionCache(persistent=SqliteExtensionStore(expansion.cache_db_path))
    generator = ExpansionGenerator(
        embedder=embedder,
        cache=cache,
        llm=llm,
        categories=expansion.categories,
        grounding_categories=expansion.grounding_categories,
        llm_timeout_s=expansion.llm_timeout_s,
    )
    classifier = AbstractnessClassifier(
        llm=llm if expansion.classify_with_llm else None,
        timeout_s=expansion.llm_timeout_s,
    )
    resolver = QueryResolver(embedder, analyzer=QueryAnalyzer(classifier), generator=generator)

    metrics = SqliteMetricsStore(settings.metrics_db_path)
    concepts = ConceptStore.from_file(settings.concepts_path) if settings.concepts_path else ConceptStore()

    return SearchPipeline(
        embedder=embedder,
        index=index,
        resolver=resolver,
        retrieval=RetrievalEngine(index, settings.ranking, expansion.categories),
        signals=SignalCollector(metrics, concepts=concepts, embedder=embedder, ranking=settings.ranking),
        balancer=CategoryBalancer(expansion.categories, per_category=settings.ranking.balance_per_category),
        impressions=ImpressionLogger(metrics),
        request_timeout_s=settings.request_timeout_s,
        default_limit=settings.ranking.default_limit,
    )
