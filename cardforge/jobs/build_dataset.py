"""
Build the compacted card dataset.

Run this job to refresh the catalog, transcode artwork and write the
dataset the client loads at startup.

Exit status is 0 when the dataset was written and 1 otherwise; the run
summary goes to standard error.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from cardforge.config import Settings
from cardforge.models.report import RunReport
from cardforge.services.orchestrator import DatasetBuilder

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Download the card catalog and artwork and build the compacted dataset"
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Download the catalog even if a fresh local copy exists",
    )
    parser.add_argument("--output", type=Path, help="Dataset path (default: dist/cards.bin)")
    parser.add_argument("--cache-dir", type=Path, help="Cache directory (default: target/cache)")
    parser.add_argument("--concurrency", type=int, help="Maximum artwork jobs in flight")
    parser.add_argument("--rate", type=float, help="Maximum requests per second")
    parser.add_argument(
        "--embed-artwork",
        action="store_true",
        help="Store artwork bytes inside the dataset instead of images/<hash>.webp",
    )
    parser.add_argument("--report", type=Path, help="Also write the run report as JSON here")
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Hide the artwork progress bar",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Apply command-line overrides on top of environment settings."""
    overrides: dict[str, object] = {}
    if args.output is not None:
        overrides["output_path"] = args.output
    if args.cache_dir is not None:
        overrides["cache_dir"] = args.cache_dir
    if args.concurrency is not None:
        overrides["max_concurrency"] = args.concurrency
    if args.rate is not None:
        overrides["requests_per_second"] = args.rate
    if args.embed_artwork:
        overrides["artwork_mode"] = "embed"
    if args.no_progress:
        overrides["show_progress"] = False

    base = base if base is not None else Settings()
    return base.model_copy(update=overrides)


async def run_build(settings: Settings, use_cache: bool = True) -> RunReport:
    """Build the dataset once and return the run report."""
    logger.info("Building card dataset at %s", settings.output_path)
    return await DatasetBuilder(settings).run(use_cache=use_cache)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = settings_from_args(args)
    report = asyncio.run(run_build(settings, use_cache=not args.no_cache))

    print(report.render(), file=sys.stderr)
    if args.report is not None:
        args.report.parent.mkdir(parents=True, exist_ok=True)
        args.report.write_text(report.model_dump_json(indent=2), encoding="utf-8")

    return 0 if report.succeeded else 1


if __name__ == "__main__":
    raise SystemExit(main())
