#!/usr/bin/env python3
"""
Command line entry point.

Usage:
    jobcrawl "Node.js" --experience 2-5 --limit 50 --output results.csv
    jobcrawl "Node.js" "React" --parallel --proxies proxies.txt
    jobcrawl --list-strategies

Every option falls back to the JOBCRAWL_* environment settings.
Exit status is 0 when every run completed and 1 if any run aborted.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .base import Colors
from .config import CrawlConfig, Settings
from .logging_setup import setup_logging
from .manager import CrawlManager
from .sinks import CsvSink
from .strategies import STRATEGY_REGISTRY

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='jobcrawl', description='Crawl job listings into a CSV file')
    parser.add_argument('keywords', nargs='*', help='Search keywords (default: JOBCRAWL_SEARCH_KEYWORD)')
    parser.add_argument('--experience', type=str, help='Experience range, e.g. 2-5')
    parser.add_argument('--limit', type=int, help='Listings to collect per keyword')
    parser.add_argument('--output', type=str, help='Output CSV file')
    parser.add_argument('--proxies', type=str, help='File with one proxy per line')
    parser.add_argument('--require-proxy', action='store_true', help='Abort instead of going direct without proxies')
    parser.add_argument('--strategies', type=str, help='Comma separated strategy order, e.g. api,dom,raw_html')
    parser.add_argument('--backend', choices=['browser', 'http'], help='Session backend')
    parser.add_argument('--headed', action='store_true', help='Show the browser (needed to solve CAPTCHAs by hand)')
    parser.add_argument('--no-details', action='store_true', help='Skip per-job detail requests in the API strategy')
    parser.add_argument('--timeout', type=float, help='Per-keyword run timeout in seconds')
    parser.add_argument('--parallel', action='store_true', help='Crawl keywords concurrently')
    parser.add_argument('--list-strategies', action='store_true', help='List available strategies and exit')
    return parser


def settings_from_args(args: argparse.Namespace, settings: Optional[Settings] = None) -> Settings:
    """
    Overlay command line options on the environment settings.

    Raises:
        ValueError: If the combined settings are invalid
    """
    settings = settings or Settings()
    overrides = {}
    if args.keywords:
        overrides['search_keyword'] = args.keywords[0]
    if args.experience is not None:
        overrides['experience_range'] = args.experience
    if args.limit is not None:
        overrides['results_limit'] = args.limit
    if args.output is not None:
        overrides['output_file'] = args.output
    if args.proxies is not None:
        overrides['proxy_file'] = args.proxies
    if args.require_proxy:
        overrides['require_proxy'] = True
    if args.strategies:
        overrides['strategy_priority_order'] = [s.strip() for s in args.strategies.split(',') if s.strip()]
    if args.backend is not None:
        overrides['session_backend'] = args.backend
    if args.headed:
        overrides['headless'] = False
    if args.no_details:
        overrides['fetch_details'] = False
    if args.timeout is not None:
        overrides['run_timeout'] = args.timeout
    settings = Settings.model_validate({**settings.model_dump(), **overrides})

    unknown = [s for s in settings.strategy_priority_order if s not in STRATEGY_REGISTRY]
    if unknown:
        raise ValueError(f"Unknown strategy: '{unknown[0]}'. Valid strategies: {', '.join(STRATEGY_REGISTRY)}")
    CrawlConfig.from_settings(settings)  # range checks
    return settings


def list_strategies() -> None:
    print(f"\n{'='*60}")
    print("Available strategies (default order first)")
    print(f"{'='*60}\n")
    for name, strategy_class in STRATEGY_REGISTRY.items():
        doc = (strategy_class.__doc__ or '').strip().splitlines()
        print(f"  {name:<10} {doc[0] if doc else ''}")
    print()


async def run(settings: Settings, keywords: List[str], parallel: bool = False) -> int:
    sink = CsvSink(settings.output_file)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    except NotImplementedError:
        pass  # Windows event loops

    async with CrawlManager(settings, sink_factory=lambda keyword: sink) as manager:
        results = await manager.crawl_all(keywords, parallel=parallel, stop_event=stop_event)
        summary = manager.get_results_summary()

    print(f"\n{'='*60}")
    print(f"{Colors.bold('Crawl summary')}")
    print(f"{'='*60}")
    for keyword, result in results.items():
        label = Colors.green(result.label) if result.success else Colors.red(result.label)
        print(f"  {keyword}: {label} - {result.total} listings, {result.pages_visited} pages, "
              f"{result.duration_seconds:.1f}s")
    print(f"\nTotal: {summary['total_listings']} listings -> {settings.output_file}")

    return 0 if summary['aborted'] == 0 else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_strategies:
        list_strategies()
        return 0

    try:
        settings = settings_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    setup_logging(settings)
    keywords = args.keywords or [settings.search_keyword]

    try:
        return asyncio.run(run(settings, keywords, parallel=args.parallel))
    except ValueError as e:
        logger.error(str(e))
        return 2


if __name__ == '__main__':
    sys.exit(main())
