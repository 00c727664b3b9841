"""CLI entry point for the job-listing harvester."""

import argparse
import asyncio
import logging
import signal
import sys

from harvest.core.config import ScrapeOptions, Settings
from harvest.core.db import get_recent_run_logs, get_run_log_stats, init_db
from harvest.core.schemas import ScrapeProgress
from harvest.core.store import Store
from harvest.extractors.registry import ExtractorRegistry, build_registry
from harvest.pipeline.engine import ScrapingEngine


def _add_scrape_arguments(parser: argparse.ArgumentParser, *, hidden: bool = False) -> None:
    def h(text: str) -> str:
        return argparse.SUPPRESS if hidden else text

    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help=h("Path to settings YAML file (default: config/settings.yaml)"),
    )
    parser.add_argument(
        "--source", action="append", dest="sources", default=[],
        help=h("Source to scrape (repeatable)"),
    )
    parser.add_argument("--keywords", help=h("Free-text keywords"))
    parser.add_argument("--location", help=h("Location filter"))
    parser.add_argument(
        "--prefecture", action="append", dest="prefectures", default=[],
        help=h("Prefecture filter (repeatable)"),
    )
    parser.add_argument(
        "--job-type", action="append", dest="job_types", default=[],
        help=h("Job-type facet (repeatable; one sub-run per value)"),
    )
    parser.add_argument(
        "--rank", action="append", dest="ranks", default=[],
        help=h("Budget rank to keep: A, B or C (repeatable)"),
    )
    parser.add_argument("--min-salary", type=int, help=h("Minimum salary filter"))
    parser.add_argument("--employee-range", help=h("Employee-count range filter"))
    parser.add_argument("--workers", type=int, help=h("Detail-fetch workers (1-10)"))
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help=h("Proceed past confirmation gates without asking"),
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job-listing harvester - scrape job sites into a local company database",
    )
    subparsers = parser.add_subparsers(dest="command")

    # --- scrape subcommand (default) ---
    scrape_parser = subparsers.add_parser("scrape", help="Run a scrape")
    _add_scrape_arguments(scrape_parser)
    scrape_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    # --- logs subcommand ---
    logs_parser = subparsers.add_parser("logs", help="Show recent scrape runs")
    logs_parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    logs_parser.add_argument(
        "--limit", type=int, default=20,
        help="Number of runs to show (default: 20)",
    )
    logs_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    # --- top-level flags for scrape ---
    _add_scrape_arguments(parser, hidden=True)
    parser.add_argument("--verbose", "-v", action="store_true", help=argparse.SUPPRESS)

    args = parser.parse_args(argv)

    # Default to scrape when no subcommand given
    if args.command is None:
        args.command = "scrape"

    return args


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_options(args: argparse.Namespace, registry: ExtractorRegistry) -> ScrapeOptions:
    """Map CLI flags to ScrapeOptions; no --source means every configured source."""
    return ScrapeOptions(
        sources=args.sources or registry.available(),
        keywords=args.keywords,
        location=args.location,
        prefectures=args.prefectures,
        job_types=args.job_types,
        rank_filter=args.ranks,
        min_salary=args.min_salary,
        employee_range=args.employee_range,
        worker_count=args.workers,
    )


class ConsoleReporter:
    """Print progress to stdout and answer confirmation gates."""

    def __init__(self, engine: ScrapingEngine, *, auto_confirm: bool) -> None:
        self._engine = engine
        self._auto_confirm = auto_confirm
        self._prompt: asyncio.Task[None] | None = None
        self._last_status = ""

    def on_progress(self, progress: ScrapeProgress) -> None:
        if progress.status and progress.status != self._last_status:
            self._last_status = progress.status
            eta = f", ~{progress.estimated_minutes} min left" if progress.estimated_minutes else ""
            print(f"{progress.status} [{progress.current}/{progress.total}, "
                  f"new {progress.new_count}, dup {progress.duplicate_count}{eta}]")

        if not progress.waiting_confirmation:
            return
        if self._auto_confirm:
            self._engine.confirm(True)
        elif self._prompt is None or self._prompt.done():
            self._prompt = asyncio.create_task(self._ask(progress.total))

    def on_log(self, message: str) -> None:
        print(f"  {message}")

    async def _ask(self, total: int) -> None:
        answer = await asyncio.to_thread(input, f"Fetch {total} detail pages? [y/N] ")
        self._engine.confirm(answer.strip().lower() in ("y", "yes"))


async def run(
    settings: Settings,
    registry: ExtractorRegistry,
    options: ScrapeOptions,
    auto_confirm: bool,
) -> bool:
    """Run one scrape with the configured extractors."""
    store = Store(init_db(settings.database.path))
    try:
        engine = ScrapingEngine(settings, store, registry)
        reporter = ConsoleReporter(engine, auto_confirm=auto_confirm)
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, engine.stop)

        result = await engine.start(options, reporter.on_progress, reporter.on_log)
    finally:
        store.close()

    if result.success:
        print("\nScrape complete.")
    else:
        print(f"\nScrape failed: {result.error}", file=sys.stderr)
    return result.success


def cmd_logs(settings: Settings, limit: int) -> None:
    """Print recent run logs and aggregate stats."""
    conn = init_db(settings.database.path)
    logs = get_recent_run_logs(conn, limit)
    stats = get_run_log_stats(conn)
    conn.close()

    print(f"{stats['total_runs']} runs, {stats['success_rate']:.1f}% success, "
          f"{stats['total_jobs_found']} jobs found, {stats['total_new_jobs']} new")
    for log in logs:
        print(f"  {log.scraped_at:%Y-%m-%d %H:%M} {log.source:<12} {log.scrape_type:<8} "
              f"{log.status:<7} found {log.jobs_found}, new {log.new_jobs}, "
              f"updated {log.updated_jobs}, errors {log.errors}")
        if log.error_message:
            print(f"      {log.error_message}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "logs":
        cmd_logs(settings, args.limit)
        return

    try:
        registry = build_registry(settings.extractors)
        options = build_options(args, registry)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not asyncio.run(run(settings, registry, options, args.yes)):
        sys.exit(1)


if __name__ == "__main__":
    main()
