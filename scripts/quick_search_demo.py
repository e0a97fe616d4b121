# Path: scripts/quick_search_demo.py
# Purpose: Simple CLI to run a search query against a stored index.
# Layer: scripts.
# Details: Builds the pipeline from environment settings and prints the ranked results.

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
from core.bootstrap import build_pipeline
from core.errors import SearchUnavailableError
from core.models.domain import SearchQuery, SourceMode


def _slider(value: str):
    name, _, position = value.partition("=")
    if not name or not position:
        raise argparse.ArgumentTypeError("Sliders are given as concept=position")
    return name, float(position)


async def _run(args: argparse.Namespace) -> int:
    settings = AppSettings.from_env()
    configure_logging(args.log_level or settings.log_level)
    pipeline = build_pipeline(settings)

    query = SearchQuery(
        text=args.text,
        category=args.category,
        source_mode=SourceMode(args.mode) if args.mode else None,
        main_concept=args.main,
        additions=tuple(args.addition),
        sliders=dict(args.slider),
        debug=args.debug,
        limit=args.k,
        image=Path(args.image).read_bytes() if args.image else None,
    )
    try:
        result = await pipeline.search(query)
    except SearchUnavailableError as exc:
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await pipeline.aclose()

    print(f"route={result.route} total={result.total}")
    for category, text in sorted(result.extensions.items()):
        print(f"  extension[{category}] {text}")
    for position, item in enumerate(result.items, start=1):
        line = f"{position:>3}. id={item.id} collection={item.candidate.collection_id} category={item.candidate.category} score={item.final_score:.4f}"
        if args.debug:
            line += f" base={item.base_score:.4f} hub={item.hub_multiplier:.3f} pop={item.popularity_penalty:.4f}"
        print(line)
    return 0


def main() -> None:
    """Execute a quick search from the command line."""

    parser = argparse.ArgumentParser(description="Run a quick search against the design image index")
    parser.add_argument("--text", type=str, default="", help="Text query to search for")
    parser.add_argument("--category", type=str, default=None, help="Restrict results to one category")
    parser.add_argument("--mode", choices=[mode.value for mode in SourceMode], default=None, help="Query source mode")
    parser.add_argument("--main", type=str, default=None, help="Main concept of a composite query")
    parser.add_argument("--addition", action="append", default=[], help="Addition phrase (repeatable)")
    parser.add_argument("--slider", action="append", type=_slider, default=[], help="concept=position (repeatable)")
    parser.add_argument("--k", type=int, default=None, help="Number of results to return (default from settings)")
    parser.add_argument("--image", type=str, default=None, help="Search by this image file instead of text")
    parser.add_argument("--debug", action="store_true", help="Print score components")
    parser.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
