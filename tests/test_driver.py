import json
import tempfile
import threading
import unittest
from datetime import UTC, datetime
from pathlib import Path

from fakes import FakeLookup

from article_status.catalog import SQLiteCatalog
from article_status.driver import (
    StatsLogger,
    build_lookup_factory,
    update_article_status,
    update_article_status_for_course,
)
from article_status.mediawiki import MediaWikiLookup
from article_status.replica import ReplicaClient

NOW = datetime(2026, 3, 1, tzinfo=UTC)


class DriverTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_path = Path(self._tmp.name)
        self.catalog = SQLiteCatalog(self.tmp_path / "catalog.sqlite")
        self.enwiki = self.catalog.add_wiki("en", "wikipedia")
        self.frwiki = self.catalog.add_wiki("fr", "wikipedia")
        self.remote = {
            self.enwiki.id: FakeLookup({1: ("Renamed", 0), 2: ("Stable", 0)}),
            self.frwiki.id: FakeLookup({1: ("Renommé", 0)}),
        }

    def tearDown(self) -> None:
        self.catalog.close()
        self._tmp.cleanup()

    def _course(self, slug, start=datetime(2026, 1, 1, tzinfo=UTC), end=datetime(2026, 6, 1, tzinfo=UTC)):
        return self.catalog.add_course(slug, start, end)

    def _track(self, course, wiki, page_id, title):
        article = self.catalog.find_article_by_page_id(wiki.id, page_id)
        if article is None:
            article = self.catalog.add_article(wiki.id, page_id, title)
        self.catalog.link_article(course.id, article.id)
        return article

    def _factory(self, wiki):
        return self.remote[wiki.id]

    def test_course_update_visits_each_wiki_with_articles(self) -> None:
        course = self._course("bilingual")
        renamed = self._track(course, self.enwiki, 1, "Original")
        self._track(course, self.enwiki, 2, "Stable")
        gone = self._track(course, self.enwiki, 3, "Gone")
        french = self._track(course, self.frwiki, 1, "Renomme")

        results = update_article_status_for_course(course, self.catalog, self._factory, batch_size=2)

        self.assertEqual([result.wiki_id for result in results], [self.enwiki.id, self.enwiki.id, self.frwiki.id])
        self.assertEqual(self.catalog.get_article(renamed.id).title, "Renamed")
        self.assertTrue(self.catalog.get_article(gone.id).deleted)
        self.assertEqual(self.catalog.get_article(french.id).title, "Renommé")

    def test_all_current_courses_are_processed_in_groups(self) -> None:
        courses = [self._course(f"course-{index}") for index in range(5)]
        ended = self._course("ended", datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 6, 1, tzinfo=UTC))
        for course in courses:
            self._track(course, self.enwiki, 2, "Stable")
        shared = self._track(courses[-1], self.enwiki, 1, "Original")
        stale = self._track(ended, self.enwiki, 9, "Untouched")
        workers = set()

        def factory(wiki):
            workers.add(threading.current_thread().name)
            return self.remote[wiki.id]

        stats_logger = StatsLogger(self.tmp_path / "logs" / "stats.jsonl", run_id="test-run")
        summary = update_article_status(
            self.catalog,
            factory,
            now=NOW,
            concurrency=2,
            stats_logger=stats_logger,
            show_progress=False,
        )

        self.assertEqual(summary["courses"], 5)
        self.assertEqual(summary["passes"], 5)
        self.assertEqual(summary["moved"], 1)
        self.assertEqual(summary["deleted"], 0)
        self.assertLessEqual(len(workers), 2)
        self.assertEqual(self.catalog.get_article(shared.id).title, "Renamed")
        self.assertFalse(self.catalog.get_article(stale.id).deleted)
        lines = (self.tmp_path / "logs" / "stats.jsonl").read_text(encoding="utf-8").splitlines()
        self.assertEqual(len(lines), 5)
        self.assertEqual(json.loads(lines[0])["run_id"], "test-run")

    def test_no_current_courses_returns_empty_summary(self) -> None:
        summary = update_article_status(self.catalog, self._factory, now=NOW, show_progress=False)
        self.assertEqual(summary["passes"], 0)

    def test_worker_error_is_raised_after_all_groups_finish(self) -> None:
        for index in range(4):
            course = self._course(f"course-{index}")
            self._track(course, self.enwiki, 2, "Stable")

        def factory(wiki):
            raise RuntimeError("lookup unavailable")

        with self.assertRaises(RuntimeError):
            update_article_status(self.catalog, factory, now=NOW, concurrency=2, show_progress=False)

    def test_lookup_factory_backends(self) -> None:
        self.assertIsInstance(build_lookup_factory("replica")(self.enwiki), ReplicaClient)
        self.assertIsInstance(build_lookup_factory("mediawiki")(self.enwiki), MediaWikiLookup)
        with self.assertRaises(ValueError):
            build_lookup_factory("carrier-pigeon")


if __name__ == "__main__":
    unittest.main()
