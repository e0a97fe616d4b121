# Path: core/metrics/__init__.py
# Purpose: Package initializer for interaction metrics.
# Layer: core/metrics.
# Details: Exposes the SQLite metrics store, the impression logger and the hub detection job.

from .hub_detection import compute_hub_stats
from .impressions import ImpressionLogger
from .store import SqliteMetricsStore

__all__ = ["ImpressionLogger", "SqliteMetricsStore", "compute_hub_stats"]
