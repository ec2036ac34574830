"""Manual source runner for testing and debugging adapters.

Fetches from one configured source, runs the batch through normalize,
dedup and score against an in-memory store, and prints the ranked result.

Usage:
    python scripts/run_source.py --list
    python scripts/run_source.py --source "DealNews Electronics"
    python scripts/run_source.py --source "Best Buy Deals" --limit 5
    python scripts/run_source.py --source "Slickdeals Frontpage" --query "airpods"
"""

import argparse
import asyncio
import os
import sys

# Add backend to path so we can import dealflow modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from dealflow.config import load_engine_config, settings
from dealflow.core.exceptions import AllSourcesFailedError
from dealflow.core.logging import configure_logging
from dealflow.engine import Engine
from dealflow.sources.base import FetchContext


def list_sources(engine: Engine) -> None:
    print(f"\n{'='*70}")
    print("  Configured sources")
    print(f"{'='*70}")
    for adapter in sorted(engine.sources.all(), key=lambda a: (a.kind, a.name)):
        state = "on " if adapter.enabled else "off"
        minutes = adapter.poll_interval.total_seconds() / 60
        print(f"  [{state}] {adapter.kind:<10} {adapter.name:<32} every {minutes:g} min")
    print()


async def run_source(engine: Engine, name: str, query: str = None, limit: int = 10) -> None:
    """Run one source through the pipeline and display the scored offers.

    Args:
        engine: Engine wired against an in-memory store
        name: Source name as configured
        query: Optional search query; uses search_products instead of fetch
        limit: Maximum number of offers to display
    """
    adapter = engine.sources.get(name)
    if adapter is None:
        print(f"\nError: unknown source '{name}' (use --list)\n")
        return

    print(f"\n{'='*70}")
    print(f"  Running {adapter.name} ({adapter.kind})")
    if query:
        print(f"  Query: {query}")
    print(f"{'='*70}\n")

    ctx = FetchContext(timeout=settings.REQUEST_TIMEOUT_SECONDS)

    if query:
        result = await adapter.search_products(ctx, query)
        if not result.ok:
            print(f"Search failed: [{result.error.kind.value}] {result.error.message}\n")
            return
        for i, raw in enumerate(result.offers[:limit], 1):
            print(f"[{i}] {raw.title}")
            print(f"    Price: {raw.current_price} {raw.currency}   Merchant: {raw.merchant}")
            print(f"    URL: {(raw.url or '')[:80]}")
        print(f"\nFound {len(result.offers)} offers\n")
        return

    try:
        stats = await engine.pipeline.run([adapter], ctx, job="manual")
    except AllSourcesFailedError as e:
        print(f"Fetch failed: {e.errors.get(adapter.name)}\n")
        return

    top = engine.query.top_n(limit)
    for i, scored in enumerate(top, 1):
        offer = scored.offer
        print(f"[{i}] {offer.title}")
        print(f"    Price: {offer.current_price} {offer.currency}", end="")
        if offer.original_price is not None:
            print(f"  (was {offer.original_price}, -{offer.discount_percent}%)", end="")
        print()
        print(f"    Score: {scored.total_score}/100  {scored.verdict}  -> {scored.recommendation}")
        print(f"    {offer.brand} | {offer.category} | {offer.marketplace}")
        for insight in scored.insights:
            print(f"      * {insight}")
        print()

    print(f"{'='*70}")
    print("  Summary")
    print(f"{'='*70}")
    for key in ("offers_fetched", "malformed_dropped", "duplicates_collapsed", "offers_indexed"):
        print(f"  {key.replace('_', ' ').capitalize()}: {stats[key]}")
    print(f"{'='*70}\n")


def main():
    parser = argparse.ArgumentParser(description="Run a dealflow source manually")
    parser.add_argument("--source", help="Source name as configured")
    parser.add_argument("--query", help="Search the source instead of fetching its deal feed")
    parser.add_argument("--limit", type=int, default=10, help="Offers to display (default: 10)")
    parser.add_argument("--list", action="store_true", help="List configured sources")
    parser.add_argument("--verbose", action="store_true", help="Show debug logging")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")
    engine = Engine(config=load_engine_config(settings.ENGINE_CONFIG_PATH), settings=settings)

    if args.list or not args.source:
        list_sources(engine)
        return

    try:
        asyncio.run(run_source(engine, args.source, args.query, args.limit))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
