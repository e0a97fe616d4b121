# Path: core/search/__init__.py
# Purpose: Package initializer for query analysis, retrieval, reranking and pipeline orchestration.
# Layer: core/search.
# Details: Exposes each stage and the main search pipeline entrypoint.

from .analyzer import (
    ROUTE_DIRECT,
    ROUTE_EXPANSION,
    ROUTE_SEARCH_EXTENSION,
    ROUTE_VIBE_EXTENSION,
    AbstractnessClassifier,
    QueryAnalyzer,
    RouteDecision,
    word_count,
)
from .balancer import CategoryBalancer
from .pipeline import SearchPipeline
from .reranker import Reranker, hub_multiplier, popularity_penalty
from .retrieval import QueryResolver, ResolvedQuery, RetrievalEngine
from .signals import SignalCollector, Signals, SliderSignal

__all__ = [
    "ROUTE_DIRECT",
    "ROUTE_EXPANSION",
    "ROUTE_SEARCH_EXTENSION",
    "ROUTE_VIBE_EXTENSION",
    "AbstractnessClassifier",
    "CategoryBalancer",
    "QueryAnalyzer",
    "QueryResolver",
    "Reranker",
    "ResolvedQuery",
    "RetrievalEngine",
    "RouteDecision",
    "SearchPipeline",
    "SignalCollector",
    "Signals",
    "SliderSignal",
    "hub_multiplier",
    "popularity_penalty",
    "word_count",
]
