# Path: scripts/clear_extensions.py
# Purpose: Manually invalidate cached query extensions.
# Layer: scripts.
# Details: Cached extensions are never evicted automatically; this is the only way to regenerate them.

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
from core.expansion.cache import SqliteExtensionStore
from core.models.domain import EXPANSION_SOURCE, SEARCHBAR_SOURCE, VIBEFILTER_SOURCE


def main() -> None:
    """Delete cached extensions, optionally filtered by term and source."""

    parser = argparse.ArgumentParser(description="Clear cached query extensions")
    parser.add_argument("--term", type=str, default=None, help="Only this term (case-insensitive)")
    parser.add_argument(
        "--source",
        choices=[SEARCHBAR_SOURCE, VIBEFILTER_SOURCE, EXPANSION_SOURCE],
        default=None,
        help="Only extensions generated for this source",
    )
    parser.add_argument("--all", action="store_true", help="Required to clear everything without filters")
    args = parser.parse_args()

    if not args.term and not args.source and not args.all:
        parser.error("Pass --term and/or --source, or --all to clear the whole cache")

    settings = AppSettings.from_env()
    configure_logging(settings.log_level)
    store = SqliteExtensionStore(settings.expansion.cache_db_path)
    removed = asyncio.run(store.invalidate(term=args.term, source=args.source))
    print(f"Removed {removed} cached extensions from {settings.expansion.cache_db_path}")


if __name__ == "__main__":
    main()
