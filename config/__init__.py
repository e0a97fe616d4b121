# Path: config/__init__.py
# Purpose: Package initializer for configuration module.
# Layer: config.
# Details: Exposes settings models and the logging setup helper.

from .log_setup import configure_logging
from .settings import AppSettings, EmbedderSettings, ExpansionSettings, RankingSettings, VectorStoreSettings

__all__ = [
    "AppSettings",
    "EmbedderSettings",
    "ExpansionSettings",
    "RankingSettings",
    "VectorStoreSettings",
    "configure_logging",
]
