import unittest
from datetime import UTC, datetime

from article_status.models import Wiki
from article_status.utils import chunked, format_timestamp, in_groups, normalize_title, parse_iso8601


class UtilsTests(unittest.TestCase):
    def test_chunked_keeps_remainder(self) -> None:
        self.assertEqual(list(chunked(range(5), 2)), [[0, 1], [2, 3], [4]])
        self.assertEqual(list(chunked([], 100)), [])

    def test_in_groups_balances_sizes(self) -> None:
        self.assertEqual(in_groups(range(7), 3), [[0, 1, 2], [3, 4], [5, 6]])

    def test_in_groups_drops_empty_groups(self) -> None:
        self.assertEqual(in_groups(["a", "b"], 4), [["a"], ["b"]])
        self.assertEqual(in_groups([], 3), [])

    def test_in_groups_requires_positive_count(self) -> None:
        with self.assertRaises(ValueError):
            in_groups([1], 0)

    def test_timestamps_round_trip_at_second_precision(self) -> None:
        moment = datetime(2026, 2, 3, 4, 5, 6, 789, tzinfo=UTC)
        self.assertEqual(format_timestamp(moment), "2026-02-03T04:05:06Z")
        self.assertEqual(parse_iso8601("2026-02-03T04:05:06Z"), moment.replace(microsecond=0))
        self.assertIsNone(parse_iso8601("not a date"))

    def test_normalize_title(self) -> None:
        self.assertEqual(normalize_title(" Sea otter "), "Sea_otter")
        self.assertEqual(normalize_title(None), "")

    def test_wiki_names(self) -> None:
        self.assertEqual(Wiki(1, "en", "wikipedia").db_name, "enwiki")
        self.assertEqual(Wiki(2, "en", "wiktionary").db_name, "enwiktionary")
        self.assertEqual(Wiki(3, None, "wikidata").db_name, "wikidatawiki")
        self.assertEqual(Wiki(3, None, "wikidata").domain, "www.wikidata.org")
        self.assertEqual(Wiki(4, "fr", "wikisource").domain, "fr.wikisource.org")


if __name__ == "__main__":
    unittest.main()
