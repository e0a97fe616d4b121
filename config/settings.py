# Path: config/settings.py
# Purpose: Provide typed application configuration models.
# Layer: config.
# Details: Centralizes settings for embedders, vector index, query expansion, ranking pools and storage paths.

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, Field

DEFAULT_CATEGORIES: Tuple[str, ...] = ("website", "packaging", "brand", "graphic", "logo", "app", "fonts")
GROUNDING_CATEGORIES: Tuple[str, ...] = ("website", "logo", "graphic", "packaging", "brand")


class EmbedderSettings(BaseModel):
    """Settings describing which embedding provider to use and how to reach it."""

    name: str = Field(default="clip", description="Identifier of the embedder implementation ('clip' or 'http').")
    model_name: str = Field(default="clip-vit-large-patch14", description="Model variant used by the embedder.")
    dim: int = Field(default=512, description="Embedding dimensionality produced by the provider.")
    service_url: Optional[str] = Field(default=None, description="Base URL of the remote embedding service.")
    api_key: Optional[str] = Field(default=None, description="Bearer token for the remote embedding service.")
    timeout_s: float = Field(default=15.0, description="Per-call timeout for the remote embedding service.")


class VectorStoreSettings(BaseModel):
    """Settings controlling vector index selection and persistence paths."""

    name: str = Field(default="memory", description="Identifier of the vector index implementation.")
    dim: int = Field(default=512, description="Expected embedding dimensionality for the index.")
    index_path: Path = Field(default=Path("storage/indexes/images"), description="Path prefix of the serialized index files.")


class ExpansionSettings(BaseModel):
    """Settings for LLM-driven query extensions and their cache."""

    llm_base_url: str = Field(default="https://api.groq.com/openai/v1", description="OpenAI-compatible API base URL.")
    llm_model: str = Field(default="llama-3.3-70b-versatile", description="Chat model used to generate extensions.")
    llm_api_key: Optional[str] = Field(default=None, description="API key for the LLM provider.")
    llm_timeout_s: float = Field(default=10.0, description="Hard upper bound on a single LLM call.")
    temperature: float = Field(default=0.7, description="Sampling temperature for extension generation.")
    categories: Tuple[str, ...] = Field(default=DEFAULT_CATEGORIES, description="Categories that receive extensions.")
    grounding_categories: Tuple[str, ...] = Field(
        default=GROUNDING_CATEGORIES,
        description="Categories prompted for literal visual groundings; the rest get a fixed-slot phrase.",
    )
    classify_with_llm: bool = Field(default=True, description="Ask the LLM when the word lists cannot decide abstractness.")
    cache_db_path: Path = Field(default=Path("storage/db/extensions.sqlite3"), description="Persistent extension cache.")


class RankingSettings(BaseModel):
    """Candidate pool sizes and result shaping parameters."""

    extension_pool_size: int = Field(default=400, description="Pool size when an extension vector drives retrieval.")
    per_category_pool_size: int = Field(default=150, description="Pool size per category for fan-out retrieval.")
    unrestricted_pool_size: int = Field(default=400, description="Pool size when no category filter is applied.")
    default_pool_size: int = Field(default=200, description="Pool size for short literal queries in one category.")
    literal_pool_size: int = Field(default=100, description="Pool size for multi-word literal queries.")
    balance_per_category: int = Field(default=10, description="Top results taken from each category when balancing.")
    default_limit: int = Field(default=60, description="Default number of results returned.")
    popularity_top_n: int = Field(default=20, description="Only impressions above this position count as shows.")
    popularity_window: int = Field(default=10000, description="Number of most recent impressions considered.")


class AppSettings(BaseModel):
    """Top-level application settings shared across services and interfaces."""

    embedder: EmbedderSettings = Field(default_factory=EmbedderSettings)
    vector_store: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    expansion: ExpansionSettings = Field(default_factory=ExpansionSettings)
    ranking: RankingSettings = Field(default_factory=RankingSettings)
    metrics_db_path: Path = Field(default=Path("storage/db/metrics.sqlite3"), description="Impressions and hub statistics.")
    concepts_path: Optional[Path] = Field(default=None, description="JSON file with concepts and their opposites.")
    request_timeout_s: float = Field(default=30.0, description="Wall-clock budget for one search request.")
    log_level: str = Field(default="INFO", description="Verbosity level for application logs.")

    @classmethod
    def from_env(cls) -> "AppSettings":
        """Instantiate settings, applying overrides from environment variables when present."""

        settings = cls()
        env = os.environ

        if env.get("EMBEDDER"):
            settings.embedder.name = env["EMBEDDER"]
        if env.get("EMBEDDING_SERVICE_URL"):
            settings.embedder.service_url = env["EMBEDDING_SERVICE_URL"]
            if not env.get("EMBEDDER"):
                settings.embedder.name = "http"
        if env.get("EMBEDDING_SERVICE_API_KEY"):
            settings.embedder.api_key = env["EMBEDDING_SERVICE_API_KEY"]
        if env.get("GROQ_API_KEY"):
            settings.expansion.llm_api_key = env["GROQ_API_KEY"]
        if env.get("LLM_BASE_URL"):
            settings.expansion.llm_base_url = env["LLM_BASE_URL"]
        if env.get("LLM_MODEL"):
            settings.expansion.llm_model = env["LLM_MODEL"]
        if env.get("INDEX_PATH"):
            settings.vector_store.index_path = Path(env["INDEX_PATH"])
        if env.get("CACHE_DB_PATH"):
            settings.expansion.cache_db_path = Path(env["CACHE_DB_PATH"])
        if env.get("METRICS_DB_PATH"):
            settings.metrics_db_path = Path(env["METRICS_DB_PATH"])
        if env.get("CONCEPTS_PATH"):
            settings.concepts_path = Path(env["CONCEPTS_PATH"])
        if env.get("SEARCH_TIMEOUT_S"):
            settings.request_timeout_s = float(env["SEARCH_TIMEOUT_S"])
        if env.get("LOG_LEVEL"):
            settings.log_level = env["LOG_LEVEL"]
        return settings


__all__ = [
    "AppSettings",
    "EmbedderSettings",
    "ExpansionSettings",
    "RankingSettings",
    "VectorStoreSettings",
    "DEFAULT_CATEGORIES",
    "GROUNDING_CATEGORIES",
]
