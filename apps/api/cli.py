"""
Run enrichment jobs once from the command line.

Lets a system cron (or any external scheduler) drive the jobs instead of
the in-process scheduler.

Usage (host):
  cd apps/api
  .venv/bin/python cli.py summaries
  .venv/bin/python cli.py ratings
  .venv/bin/python cli.py book 42 --types overview key_points
  .venv/bin/python cli.py regenerate 42 overview
  .venv/bin/python cli.py refresh-rating 42
  .venv/bin/python cli.py stats
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from db.models import SummaryType
from db.session import create_db_and_tables, dispose_engine
from services.scheduler import create_ratings_job, create_summary_job

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run library enrichment jobs once")
    p.add_argument("--verbose", "-v", action="store_true", help="Log per-book progress")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("summaries", help="Generate AI summaries for the next batch of books")
    sub.add_parser("ratings", help="Fetch Goodreads ratings for the next batch of books")
    sub.add_parser("stats", help="Print all-time AI summary totals")

    book = sub.add_parser("book", help="Generate missing AI summaries for one book")
    book.add_argument("book_id", type=int)
    book.add_argument(
        "--types",
        nargs="+",
        type=SummaryType,
        choices=list(SummaryType),
        metavar="TYPE",
        help=f"Summary types to generate (default: all of {', '.join(t.value for t in SummaryType)})",
    )

    regenerate = sub.add_parser("regenerate", help="Replace one AI summary for one book")
    regenerate.add_argument("book_id", type=int)
    regenerate.add_argument("summary_type", type=SummaryType, choices=list(SummaryType), metavar="TYPE")

    refresh = sub.add_parser("refresh-rating", help="Re-fetch the Goodreads rating for one book")
    refresh.add_argument("book_id", type=int)

    return p.parse_args(argv)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    await create_db_and_tables()
    try:
        return await _run(args)
    finally:
        await dispose_engine()


async def _run(args: argparse.Namespace) -> int:
    if args.command in ("ratings", "refresh-rating"):
        job = create_ratings_job()
        try:
            if args.command == "ratings":
                stats = await job.run()
                _print(stats.to_dict())
                return 0
            refreshed = await job.refresh_rating_for_book(args.book_id)
            _print({"book_id": args.book_id, "refreshed": refreshed})
            return 0 if refreshed else 1
        finally:
            await job.aclose()

    job = create_summary_job()
    try:
        if args.command == "summaries":
            stats = await job.run()
            _print(stats.to_dict())
            return 0
        if args.command == "stats":
            _print((await job.get_summary_stats()).model_dump())
            return 0
        if args.command == "book":
            report = await job.generate_summaries_for_book(args.book_id, args.types)
            _print(report.model_dump(mode="json"))
            return 0 if report.success else 1
        result = await job.regenerate_summary(args.book_id, args.summary_type)
        if result is None:
            logger.error("Could not regenerate %s for book %s", args.summary_type.value, args.book_id)
            return 1
        _print(result.model_dump())
        return 0
    finally:
        await job.aclose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
