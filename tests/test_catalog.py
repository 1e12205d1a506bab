import sqlite3
import tempfile
import unittest
from datetime import UTC, datetime
from pathlib import Path

from article_status.catalog import SQLiteCatalog
from article_status.models import CatalogConflictError


class CatalogTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.catalog = SQLiteCatalog(Path(self._tmp.name) / "nested" / "catalog.sqlite")
        self.wiki = self.catalog.add_wiki("en", "wikipedia")

    def tearDown(self) -> None:
        self.catalog.close()
        self._tmp.cleanup()

    def test_add_wiki_is_idempotent_for_multilingual_projects(self) -> None:
        first = self.catalog.add_wiki(None, "wikidata")
        second = self.catalog.add_wiki(None, "wikidata")
        self.assertEqual(first, second)
        self.assertEqual(len(self.catalog.all_wikis()), 2)

    def test_page_id_is_unique_per_wiki(self) -> None:
        self.catalog.add_article(self.wiki.id, 1, "A")
        other = self.catalog.add_wiki("fr", "wikipedia")
        self.catalog.add_article(other.id, 1, "A")
        with self.assertRaises(sqlite3.IntegrityError):
            self.catalog.add_article(self.wiki.id, 1, "B")

    def test_update_article_returns_refreshed_record(self) -> None:
        article = self.catalog.add_article(self.wiki.id, 5, "Before")
        updated = self.catalog.update_article(article.id, title="After", deleted=True)
        self.assertEqual(updated.title, "After")
        self.assertTrue(updated.deleted)
        self.assertEqual(self.catalog.get_article(article.id), updated)

    def test_update_article_rejects_unknown_fields(self) -> None:
        article = self.catalog.add_article(self.wiki.id, 5, "Before")
        with self.assertRaises(ValueError):
            self.catalog.update_article(article.id, wiki_id=3)

    def test_conflicting_page_id_update_leaves_row_unchanged(self) -> None:
        first = self.catalog.add_article(self.wiki.id, 1, "A")
        self.catalog.add_article(self.wiki.id, 2, "B")
        with self.assertRaises(CatalogConflictError):
            self.catalog.update_article(first.id, mw_page_id=2)
        self.assertEqual(self.catalog.get_article(first.id), first)

    def test_live_title_lookup_is_exact_and_skips_deleted_rows(self) -> None:
        self.catalog.add_article(self.wiki.id, 1, "Topic", deleted=True)
        self.catalog.add_article(self.wiki.id, 2, "topic")
        live = self.catalog.add_article(self.wiki.id, 3, "Topic")
        self.catalog.add_article(self.wiki.id, 4, "Topic", namespace=1)
        self.assertEqual(self.catalog.find_live_article_by_title(self.wiki.id, "Topic", 0), live)
        self.assertIsNone(self.catalog.find_live_article_by_title(self.wiki.id, "TOPIC", 0))
        self.assertIsNone(self.catalog.find_live_article_by_title(self.wiki.id, "Topic", 4))

    def test_current_courses_include_grace_period(self) -> None:
        now = datetime(2026, 6, 15, tzinfo=UTC)
        self.catalog.add_course("past", datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 5, 1, tzinfo=UTC))
        recent = self.catalog.add_course("recent", datetime(2026, 1, 1, tzinfo=UTC), datetime(2026, 6, 1, tzinfo=UTC))
        active = self.catalog.add_course("active", datetime(2026, 3, 1, tzinfo=UTC), datetime(2026, 9, 1, tzinfo=UTC))
        self.catalog.add_course("future", datetime(2026, 9, 1, tzinfo=UTC), datetime(2026, 12, 1, tzinfo=UTC))
        slugs = [course.slug for course in self.catalog.current_courses(now, grace_days=30)]
        self.assertEqual(slugs, [recent.slug, active.slug])

    def test_course_article_batches_are_id_ordered(self) -> None:
        course = self.catalog.add_course("c", datetime(2026, 1, 1, tzinfo=UTC), datetime(2026, 6, 1, tzinfo=UTC))
        other_wiki = self.catalog.add_wiki("es", "wikipedia")
        articles = [self.catalog.add_article(self.wiki.id, page_id, f"T{page_id}") for page_id in range(1, 6)]
        foreign = self.catalog.add_article(other_wiki.id, 1, "Ajeno")
        for article in [*articles, foreign]:
            self.catalog.link_article(course.id, article.id)

        batches = list(self.catalog.iter_course_article_batches(course.id, self.wiki.id, batch_size=2))

        self.assertEqual([[a.mw_page_id for a in batch] for batch in batches], [[1, 2], [3, 4], [5]])
        self.assertTrue(self.catalog.course_has_articles(course.id, other_wiki.id))
        self.assertFalse(self.catalog.course_has_articles(course.id, self.catalog.add_wiki("it", "wikipedia").id))

    def test_revision_relocation_and_removal(self) -> None:
        article = self.catalog.add_article(self.wiki.id, 9, "Target")
        kept = self.catalog.add_revision(self.wiki.id, 100, 1)
        dropped = self.catalog.add_revision(self.wiki.id, 101, 2)

        self.assertEqual(self.catalog.relocate_revisions([kept.id], 9, article.id), 1)
        self.assertEqual(self.catalog.delete_revisions([dropped.id]), 1)

        self.assertEqual(self.catalog.revisions_for_page_ids(self.wiki.id, {9})[0].article_id, article.id)
        self.assertIsNone(self.catalog.get_revision(dropped.id))


if __name__ == "__main__":
    unittest.main()
