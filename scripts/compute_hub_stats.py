# Path: scripts/compute_hub_stats.py
# Purpose: Recompute hub statistics from the impression log.
# Layer: scripts.
# Details: Out-of-band job; the search path only reads the stored results.

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import AppSettings, configure_logging
from core.metrics.hub_detection import compute_hub_stats
from core.metrics.store import SqliteMetricsStore


def main() -> None:
    """Run hub detection over the configured metrics database."""

    parser = argparse.ArgumentParser(description="Recompute hub statistics from logged impressions")
    parser.add_argument("--db", type=Path, default=None, help="Metrics database (defaults to METRICS_DB_PATH)")
    parser.add_argument("--top", type=int, default=10, help="Print the strongest hubs")
    args = parser.parse_args()

    settings = AppSettings.from_env()
    configure_logging(settings.log_level)
    store = SqliteMetricsStore(args.db or settings.metrics_db_path)

    stats = asyncio.run(compute_hub_stats(store, show_progress=True))
    strongest = sorted(stats.items(), key=lambda item: (-item[1].hub_score, item[0]))[: args.top]
    for candidate_id, hub in strongest:
        print(
            f"{candidate_id}: hub_count={hub.hub_count} hub_score={hub.hub_score:.4f} "
            f"avg_similarity={hub.avg_similarity:.4f} margin={hub.avg_similarity_margin:+.4f}"
        )


if __name__ == "__main__":
    main()
