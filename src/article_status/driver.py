import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path

from tqdm import tqdm

from . import config
from .mediawiki import MediaWikiLookup
from .reconciler import ArticleStatusReconciler
from .replica import ReplicaClient
from .utils import in_groups

logger = logging.getLogger(__name__)

SUMMED_FIELDS = (
    "articles",
    "synced",
    "moved",
    "reassigned",
    "superseded",
    "deleted",
    "undeleted",
    "links_removed",
    "revisions_moved",
    "revisions_dropped",
    "failed_requests",
    "mutations",
)


class StatsLogger:
    """Append-only JSONL logger for per-pass reconciliation stats."""

    def __init__(self, stats_path, run_id=config.RUN_ID, flush_every=config.STATS_FLUSH_EVERY):
        self.stats_path = Path(stats_path)
        self.run_id = run_id
        self.flush_every = flush_every
        self.buffer = []
        self._lock = threading.Lock()

    def log(self, record):
        """Buffer a single JSON object line enriched with the run identifier."""
        enriched = {"run_id": self.run_id}
        enriched.update(record)
        with self._lock:
            self.buffer.append(json.dumps(enriched, ensure_ascii=True))
            pending = len(self.buffer)
        if pending >= self.flush_every:
            self.flush()

    def flush(self):
        """Flush any buffered JSONL lines to disk."""
        with self._lock:
            if not self.buffer:
                return
            self.stats_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.stats_path, "a", encoding="utf-8") as fh:
                fh.write("\n".join(self.buffer))
                fh.write("\n")
            self.buffer.clear()


def build_lookup_factory(backend=config.REMOTE_BACKEND, replica_endpoint=config.REPLICA_ENDPOINT):
    """Return a callable that builds the remote lookup for one wiki."""
    if backend == "replica":
        return lambda wiki: ReplicaClient(wiki, endpoint=replica_endpoint)
    if backend == "mediawiki":
        return lambda wiki: MediaWikiLookup(wiki)
    raise ValueError(f"Unknown remote backend: {backend}")


def summarize_results(results):
    totals = {name: 0 for name in SUMMED_FIELDS}
    for result in results:
        for name, value in result.as_dict().items():
            if name in totals:
                totals[name] += value
    totals["passes"] = len(results)
    return totals


def update_article_status_for_course(
    course,
    catalog,
    lookup_factory,
    chunk_size=config.REPLICA_CHUNK_SIZE,
    batch_size=config.ARTICLE_BATCH_SIZE,
    stats_logger=None,
):
    """Run reconciliation passes over every wiki the course has articles on."""
    results = []
    for wiki in catalog.all_wikis():
        if not catalog.course_has_articles(course.id, wiki.id):
            continue
        for article_batch in catalog.iter_course_article_batches(course.id, wiki.id, batch_size):
            reconciler = ArticleStatusReconciler(wiki, catalog, lookup_factory(wiki), chunk_size=chunk_size)
            result = reconciler.update_status(article_batch)
            results.append(result)
            if stats_logger is not None:
                record = {"course": course.slug, "wiki": wiki.domain}
                record.update(result.as_dict())
                stats_logger.log(record)
    return results


def update_article_status(
    catalog,
    lookup_factory,
    now=None,
    concurrency=config.CONCURRENCY_LIMIT,
    chunk_size=config.REPLICA_CHUNK_SIZE,
    batch_size=config.ARTICLE_BATCH_SIZE,
    grace_days=config.COURSE_UPDATE_GRACE_DAYS,
    stats_logger=None,
    show_progress=True,
):
    """
    Reconcile the articles of all current courses.

    Courses are split into `concurrency` groups with one worker thread per group;
    each worker handles its courses one at a time. Blocks until every worker is
    done, re-raising the first worker error once all have finished.
    """
    now = now or datetime.now(UTC)
    courses = catalog.current_courses(now, grace_days)
    groups = in_groups(courses, concurrency)
    logger.info("Updating article status for %d courses in %d groups", len(courses), len(groups))
    if not groups:
        summary = summarize_results([])
        summary["courses"] = 0
        return summary

    progress = tqdm(total=len(courses), desc="Courses", unit="course", disable=not show_progress)

    def run_group(course_group):
        group_results = []
        for course in course_group:
            group_results.extend(
                update_article_status_for_course(
                    course,
                    catalog,
                    lookup_factory,
                    chunk_size=chunk_size,
                    batch_size=batch_size,
                    stats_logger=stats_logger,
                )
            )
            progress.update(1)
        return group_results

    try:
        with ThreadPoolExecutor(max_workers=len(groups), thread_name_prefix="article-status") as executor:
            futures = [executor.submit(run_group, group) for group in groups]
        results = []
        for future in futures:
            results.extend(future.result())
    finally:
        progress.close()
        if stats_logger is not None:
            stats_logger.flush()

    summary = summarize_results(results)
    summary["courses"] = len(courses)
    return summary
