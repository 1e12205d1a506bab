import argparse
import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from . import config
from .catalog import SQLiteCatalog
from .driver import (
    StatsLogger,
    build_lookup_factory,
    summarize_results,
    update_article_status,
    update_article_status_for_course,
)

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        description="Update tracked articles to reflect deletions, moves and page id changes on their wikis."
    )
    parser.add_argument("--db", default=str(config.CATALOG_DB), help="Path to the local article catalog.")
    parser.add_argument(
        "--backend",
        choices=("replica", "mediawiki"),
        default=config.REMOTE_BACKEND,
        help="Remote lookup service.",
    )
    parser.add_argument("--replica-endpoint", default=config.REPLICA_ENDPOINT, help="Replica service base URL.")
    parser.add_argument("--chunk-size", type=int, default=config.REPLICA_CHUNK_SIZE, help="Page ids per lookup.")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=config.CONCURRENCY_LIMIT,
        help="Number of course groups processed in parallel.",
    )
    parser.add_argument("--course", help="Only update the course with this slug.")
    parser.add_argument("--stats-file", default=str(config.STATS_FILE), help="Per-pass JSONL stats output.")
    parser.add_argument("--summary-file", default=str(config.SUMMARY_FILE), help="Run summary JSON output.")
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every article mutation.")
    return parser


def write_summary(summary_path, summary):
    path = Path(summary_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(summary, fh, ensure_ascii=True, indent=2)


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=config.LOG_FORMAT,
        datefmt=config.LOG_DATEFMT,
    )
    if args.chunk_size <= 0 or args.concurrency <= 0:
        logger.error("--chunk-size and --concurrency must be positive")
        return 2

    started_at = datetime.now(UTC)
    catalog = SQLiteCatalog(args.db)
    stats_logger = StatsLogger(args.stats_file)
    lookup_factory = build_lookup_factory(args.backend, args.replica_endpoint)
    try:
        if args.course:
            course = catalog.get_course_by_slug(args.course)
            if course is None:
                logger.error("Unknown course: %s", args.course)
                return 1
            results = update_article_status_for_course(
                course,
                catalog,
                lookup_factory,
                chunk_size=args.chunk_size,
                stats_logger=stats_logger,
            )
            stats_logger.flush()
            summary = summarize_results(results)
            summary["courses"] = 1
        else:
            summary = update_article_status(
                catalog,
                lookup_factory,
                now=started_at,
                concurrency=args.concurrency,
                chunk_size=args.chunk_size,
                stats_logger=stats_logger,
                show_progress=not args.no_progress,
            )
    finally:
        catalog.close()

    summary.update(
        {
            "run_id": config.RUN_ID,
            "backend": args.backend,
            "started_at": started_at.isoformat(),
            "finished_at": datetime.now(UTC).isoformat(),
        }
    )
    write_summary(args.summary_file, summary)
    logger.info(
        "Run %s finished: %d passes, %d deleted, %d undeleted, %d moved, %d reassigned, %d failed requests",
        config.RUN_ID,
        summary["passes"],
        summary["deleted"],
        summary["undeleted"],
        summary["moved"],
        summary["reassigned"],
        summary["failed_requests"],
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
