#!/usr/bin/env python3
"""
QuickCompare CLI

Usage:
    python main.py serve                                         # Websocket + HTTP server
    python main.py serve --port 8080 --reload
    python main.py search milk -l Koramangala                    # One-shot search, all services
    python main.py search "amul butter" -l Indiranagar -o results.csv
    python main.py search bread -l HSR -s blinkit -s zepto --json
    python main.py search eggs -l Koramangala --no-headless      # Show browser windows
"""

import sys
import csv
import json
import asyncio
import logging
import argparse
from datetime import datetime

# Windows terminal: force UTF-8 so ₹ and other unicode prints correctly
if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8")

from backend.app.config import Settings, get_settings
from backend.app.sessions import SessionRegistry, new_session_id
from scrapers.context_pool import AutomationContextPool, ContextLaunchError
from scrapers.orchestrator import SearchOrchestrator, SearchOutcome, SearchStatus, default_adapters
from shared.constants import ALL_TARGETS, TARGET_DISPLAY_NAMES


def setup_logging(settings: Settings, verbose: bool = False) -> None:
    logging.basicConfig(
        level="DEBUG" if verbose else settings.effective_log_level(),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )


def print_outcome(outcome: SearchOutcome) -> None:
    """Print per-service results in a formatted way."""
    for target, result in outcome.results.items():
        name = TARGET_DISPLAY_NAMES.get(target, target)
        print(f"\n{'=' * 60}")
        print(f"{name}: {result.status.value.upper()}  ({len(result.products)} products)")
        print(f"{result.message}")
        print("-" * 60)
        for p in result.products:
            title = p.name[:38] + "..." if len(p.name) > 38 else p.name
            mrp = f"  MRP {p.original_price}" if p.original_price else ""
            stock = "" if p.available else "  [OUT OF STOCK]"
            print(f"  {title:<41} {p.price:>10}{mrp}  {p.quantity}  {p.delivery_time}{stock}")
    print(f"\n{'=' * 60}")
    counts = outcome.product_count()
    summary = " | ".join(f"{TARGET_DISPLAY_NAMES.get(t, t)} {n}" for t, n in counts.items() if t != "total")
    print(f"DONE: {counts['total']} products  ({summary})")
    print("=" * 60)


def save_to_csv(outcome: SearchOutcome, filepath: str) -> None:
    """Save every product to one CSV file, one row per product."""
    with open(filepath, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow([
            "Service", "Search_Term", "Product_ID", "Name", "Price", "Original_Price",
            "Savings", "Discount", "Quantity", "Delivery_Time", "Available",
            "Image_URL", "Scraped_At",
        ])
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        for target, result in outcome.results.items():
            for p in result.products:
                writer.writerow([
                    target,
                    outcome.term,
                    p.id,
                    p.name,
                    p.price,
                    p.original_price or "",
                    p.savings or "",
                    p.discount or "",
                    p.quantity,
                    p.delivery_time,
                    "Yes" if p.available else "No",
                    p.image_url,
                    timestamp,
                ])
    print(f"\nResults saved to: {filepath}")


async def run_search(settings: Settings, term: str, location: str, services: list[str]) -> SearchOutcome:
    """Open one session, set the location on `services`, search and tear down."""
    pool = AutomationContextPool()
    adapters = {t: a for t, a in default_adapters(settings.scrape_timeouts()).items() if t in services}
    registry = SessionRegistry(pool, list(adapters))
    orchestrator = SearchOrchestrator(adapters, payload_timeout_s=settings.payload_timeout_s)
    session_id = new_session_id()

    try:
        print(f"\nLaunching {len(adapters)} browser(s)...")
        session = await registry.initialize(session_id, settings.launch_options())

        print(f"Setting location to '{location}'...")
        for r in await orchestrator.set_location(session.pages, location):
            registry.mark_location_status(session_id, r.service, r.success, r.title)
            state = f"OK  ({r.title})" if r.success else f"FAILED{'  ' + r.error if r.error else ''}"
            print(f"  {TARGET_DISPLAY_NAMES.get(r.service, r.service):<10} {state}")

        async def progress(target: str, status: SearchStatus, message: str, has_products: bool) -> None:
            print(f"  [{TARGET_DISPLAY_NAMES.get(target, target)}] {status.value}: {message}")

        print(f"\nSearching for '{term}'...")
        return await orchestrator.search(session.pages, session.location_status, term, on_progress=progress)
    finally:
        await registry.destroy(session_id)
        await pool.stop()


def cmd_serve(args, settings: Settings) -> None:
    import uvicorn

    uvicorn.run(
        "backend.app.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_level=settings.effective_log_level().lower(),
    )


def cmd_search(args, settings: Settings) -> None:
    if args.no_headless:
        settings = settings.model_copy(update={"browser_headless": False})
    if args.timeout:
        settings = settings.model_copy(update={"payload_timeout_s": args.timeout})

    services = list(dict.fromkeys(args.service)) if args.service else list(ALL_TARGETS)
    try:
        outcome = asyncio.run(run_search(settings, args.term, args.location, services))
    except ContextLaunchError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps({
            "searchTerm": outcome.term,
            "products": outcome.products(),
            "productCount": outcome.product_count(),
            "status": {t: r.status.value for t, r in outcome.results.items()},
        }, indent=2, ensure_ascii=False))
    else:
        print_outcome(outcome)

    if args.output:
        save_to_csv(outcome, args.output)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Compare grocery prices across Blinkit, Zepto and Instamart"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Debug logging"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the websocket/HTTP server")
    serve.add_argument("--host", help="Listen host (default: HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, help="Listen port (default: PORT or 5000)")
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    search = sub.add_parser("search", help="One-shot search across services")
    search.add_argument("term", help="Search term, e.g. 'milk'")
    search.add_argument(
        "-l", "--location", required=True,
        help="Delivery locality typed into each site's location box"
    )
    search.add_argument(
        "-s", "--service", action="append", choices=ALL_TARGETS,
        help="Limit to one service (repeatable). Default: all"
    )
    search.add_argument(
        "-o", "--output",
        help="Output CSV file for results"
    )
    search.add_argument(
        "--json", action="store_true",
        help="Print results as JSON instead of a report"
    )
    search.add_argument(
        "--timeout", type=float,
        help="Structured-payload deadline in seconds (default: PAYLOAD_TIMEOUT_S or 30)"
    )
    search.add_argument(
        "--no-headless", action="store_true",
        help="Show browser windows"
    )

    args = parser.parse_args()
    settings = get_settings()
    setup_logging(settings, args.verbose)

    if args.command == "serve":
        cmd_serve(args, settings)
    else:
        cmd_search(args, settings)


if __name__ == "__main__":
    main()
