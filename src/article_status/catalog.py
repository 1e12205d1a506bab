import sqlite3
import threading
from datetime import timedelta
from pathlib import Path

from .models import Article, CatalogConflictError, Course, Revision, Wiki
from .utils import chunked, format_timestamp, parse_iso8601, utc_now_iso

ARTICLE_COLUMNS = "id, wiki_id, mw_page_id, title, namespace, deleted"
REVISION_COLUMNS = "id, wiki_id, mw_rev_id, mw_page_id, article_id"
UPDATABLE_ARTICLE_FIELDS = {"title", "namespace", "deleted", "mw_page_id"}

# SQLite caps bound parameters per statement
QUERY_CHUNK_SIZE = 500


def _article_from_row(row):
    if row is None:
        return None
    return Article(
        id=row[0],
        wiki_id=row[1],
        mw_page_id=row[2],
        title=row[3],
        namespace=row[4],
        deleted=bool(row[5]),
    )


def _revision_from_row(row):
    return Revision(id=row[0], wiki_id=row[1], mw_rev_id=row[2], mw_page_id=row[3], article_id=row[4])


def _course_from_row(row):
    if row is None:
        return None
    return Course(id=row[0], slug=row[1], start=parse_iso8601(row[2]), end=parse_iso8601(row[3]))


class SQLiteCatalog:
    """
    SQLite-backed local catalog of wikis, articles, courses, course links and revisions.

    One connection is shared across worker threads; every statement runs under the
    instance lock so each single-record update is atomic from the workers' view.
    """

    def __init__(self, db_path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS wikis (
                id INTEGER PRIMARY KEY,
                language TEXT,
                project TEXT NOT NULL,
                UNIQUE (language, project)
            );
            CREATE TABLE IF NOT EXISTS articles (
                id INTEGER PRIMARY KEY,
                wiki_id INTEGER NOT NULL REFERENCES wikis (id),
                mw_page_id INTEGER,
                title TEXT NOT NULL,
                namespace INTEGER NOT NULL DEFAULT 0,
                deleted INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT,
                UNIQUE (wiki_id, mw_page_id)
            );
            CREATE INDEX IF NOT EXISTS idx_articles_title
                ON articles (wiki_id, namespace, title);
            CREATE TABLE IF NOT EXISTS courses (
                id INTEGER PRIMARY KEY,
                slug TEXT NOT NULL UNIQUE,
                start_date TEXT NOT NULL,
                end_date TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS articles_courses (
                id INTEGER PRIMARY KEY,
                article_id INTEGER NOT NULL REFERENCES articles (id),
                course_id INTEGER NOT NULL REFERENCES courses (id),
                UNIQUE (article_id, course_id)
            );
            CREATE TABLE IF NOT EXISTS revisions (
                id INTEGER PRIMARY KEY,
                wiki_id INTEGER NOT NULL REFERENCES wikis (id),
                mw_rev_id INTEGER NOT NULL,
                mw_page_id INTEGER NOT NULL,
                article_id INTEGER REFERENCES articles (id),
                UNIQUE (wiki_id, mw_rev_id)
            );
            CREATE INDEX IF NOT EXISTS idx_revisions_page ON revisions (wiki_id, mw_page_id);
            """
        )
        self._conn.commit()

    def close(self):
        with self._lock:
            self._conn.close()

    # Wikis

    def add_wiki(self, language, project):
        # Multilingual projects have no language; NULLs never collide in UNIQUE.
        with self._lock:
            row = self._conn.execute(
                "SELECT id, language, project FROM wikis WHERE language IS ? AND project = ?",
                (language, project),
            ).fetchone()
            if row is None:
                cursor = self._conn.execute(
                    "INSERT INTO wikis (language, project) VALUES (?, ?)",
                    (language, project),
                )
                self._conn.commit()
                row = (cursor.lastrowid, language, project)
        return Wiki(*row)

    def get_wiki(self, wiki_id):
        with self._lock:
            row = self._conn.execute("SELECT id, language, project FROM wikis WHERE id = ?", (wiki_id,)).fetchone()
        return Wiki(*row) if row else None

    def all_wikis(self):
        with self._lock:
            rows = self._conn.execute("SELECT id, language, project FROM wikis ORDER BY id").fetchall()
        return [Wiki(*row) for row in rows]

    # Articles

    def add_article(self, wiki_id, mw_page_id, title, namespace=0, deleted=False):
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO articles (wiki_id, mw_page_id, title, namespace, deleted, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (wiki_id, mw_page_id, title, namespace, int(deleted), utc_now_iso()),
            )
            self._conn.commit()
            article_id = cursor.lastrowid
        return Article(article_id, wiki_id, mw_page_id, title, namespace, bool(deleted))

    def get_article(self, article_id):
        with self._lock:
            row = self._conn.execute(f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE id = ?", (article_id,)).fetchone()
        return _article_from_row(row)

    def find_article_by_page_id(self, wiki_id, mw_page_id):
        with self._lock:
            row = self._conn.execute(
                f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE wiki_id = ? AND mw_page_id = ?",
                (wiki_id, mw_page_id),
            ).fetchone()
        return _article_from_row(row)

    def find_live_article_by_title(self, wiki_id, title, namespace):
        """
        Return the first non-deleted article with exactly this title (case included)
        and namespace.
        """
        with self._lock:
            row = self._conn.execute(
                f"""
                SELECT {ARTICLE_COLUMNS} FROM articles
                WHERE wiki_id = ? AND namespace = ? AND title = ? AND deleted = 0
                ORDER BY id
                LIMIT 1
                """,
                (wiki_id, namespace, title),
            ).fetchone()
        return _article_from_row(row)

    def article_exists(self, wiki_id, mw_page_id):
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM articles WHERE wiki_id = ? AND mw_page_id = ?",
                (wiki_id, mw_page_id),
            ).fetchone()
        return row is not None

    def articles_with_page_ids(self, wiki_id, page_ids):
        if not page_ids:
            return []
        results = []
        with self._lock:
            for batch in chunked(sorted(page_ids), QUERY_CHUNK_SIZE):
                placeholders = ",".join("?" for _ in batch)
                query = (
                    f"SELECT {ARTICLE_COLUMNS} FROM articles "
                    f"WHERE wiki_id = ? AND mw_page_id IN ({placeholders}) ORDER BY id"
                )
                cursor = self._conn.execute(query, [wiki_id, *batch])
                results.extend(_article_from_row(row) for row in cursor.fetchall())
        return results

    def update_article(self, article_id, **fields):
        """
        Apply one atomic update to an article row and return the refreshed record.
        Raises CatalogConflictError when the update would duplicate a page id.
        """
        unknown = set(fields) - UPDATABLE_ARTICLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported article fields: {sorted(unknown)}")
        if not fields:
            return self.get_article(article_id)
        values = {key: int(value) if key == "deleted" else value for key, value in fields.items()}
        assignments = ", ".join(f"{key} = ?" for key in values)
        with self._lock:
            try:
                self._conn.execute(
                    f"UPDATE articles SET {assignments}, updated_at = ? WHERE id = ?",
                    [*values.values(), utc_now_iso(), article_id],
                )
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise CatalogConflictError(f"Article {article_id} update conflicts: {exc}") from exc
            row = self._conn.execute(f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE id = ?", (article_id,)).fetchone()
        return _article_from_row(row)

    # Courses and course links

    def add_course(self, slug, start, end):
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO courses (slug, start_date, end_date) VALUES (?, ?, ?)",
                (slug, format_timestamp(start), format_timestamp(end)),
            )
            self._conn.commit()
            course_id = cursor.lastrowid
        return Course(course_id, slug, parse_iso8601(format_timestamp(start)), parse_iso8601(format_timestamp(end)))

    def get_course_by_slug(self, slug):
        with self._lock:
            row = self._conn.execute(
                "SELECT id, slug, start_date, end_date FROM courses WHERE slug = ?", (slug,)
            ).fetchone()
        return _course_from_row(row)

    def current_courses(self, now, grace_days):
        """Courses that have started and ended no more than `grace_days` before `now`."""
        started_before = format_timestamp(now)
        ended_after = format_timestamp(now - timedelta(days=grace_days))
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, slug, start_date, end_date FROM courses
                WHERE start_date <= ? AND end_date >= ?
                ORDER BY id
                """,
                (started_before, ended_after),
            ).fetchall()
        return [_course_from_row(row) for row in rows]

    def link_article(self, course_id, article_id):
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO articles_courses (article_id, course_id) VALUES (?, ?)
                ON CONFLICT (article_id, course_id) DO NOTHING
                """,
                (article_id, course_id),
            )
            self._conn.commit()

    def course_ids_for_article(self, article_id):
        with self._lock:
            rows = self._conn.execute(
                "SELECT course_id FROM articles_courses WHERE article_id = ? ORDER BY course_id", (article_id,)
            ).fetchall()
        return [row[0] for row in rows]

    def course_has_articles(self, course_id, wiki_id):
        with self._lock:
            row = self._conn.execute(
                """
                SELECT 1 FROM articles_courses ac
                JOIN articles a ON a.id = ac.article_id
                WHERE ac.course_id = ? AND a.wiki_id = ?
                LIMIT 1
                """,
                (course_id, wiki_id),
            ).fetchone()
        return row is not None

    def iter_course_article_batches(self, course_id, wiki_id, batch_size):
        """Yield id-ordered batches of a course's articles on one wiki."""
        last_id = 0
        while True:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT a.id, a.wiki_id, a.mw_page_id, a.title, a.namespace, a.deleted
                    FROM articles a
                    JOIN articles_courses ac ON ac.article_id = a.id
                    WHERE ac.course_id = ? AND a.wiki_id = ? AND a.id > ?
                    ORDER BY a.id
                    LIMIT ?
                    """,
                    (course_id, wiki_id, last_id, batch_size),
                ).fetchall()
            if not rows:
                return
            batch = [_article_from_row(row) for row in rows]
            last_id = batch[-1].id
            yield batch
            if len(rows) < batch_size:
                return

    def remove_course_links(self, article_ids):
        if not article_ids:
            return 0
        removed = 0
        with self._lock:
            for batch in chunked(sorted(article_ids), QUERY_CHUNK_SIZE):
                placeholders = ",".join("?" for _ in batch)
                cursor = self._conn.execute(f"DELETE FROM articles_courses WHERE article_id IN ({placeholders})", batch)
                removed += cursor.rowcount
            self._conn.commit()
        return removed

    # Revisions

    def add_revision(self, wiki_id, mw_rev_id, mw_page_id, article_id=None):
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO revisions (wiki_id, mw_rev_id, mw_page_id, article_id) VALUES (?, ?, ?, ?)",
                (wiki_id, mw_rev_id, mw_page_id, article_id),
            )
            self._conn.commit()
            revision_id = cursor.lastrowid
        return Revision(revision_id, wiki_id, mw_rev_id, mw_page_id, article_id)

    def get_revision(self, revision_id):
        with self._lock:
            row = self._conn.execute(f"SELECT {REVISION_COLUMNS} FROM revisions WHERE id = ?", (revision_id,)).fetchone()
        return _revision_from_row(row) if row else None

    def revisions_for_page_ids(self, wiki_id, page_ids):
        if not page_ids:
            return []
        results = []
        with self._lock:
            for batch in chunked(sorted(page_ids), QUERY_CHUNK_SIZE):
                placeholders = ",".join("?" for _ in batch)
                query = (
                    f"SELECT {REVISION_COLUMNS} FROM revisions "
                    f"WHERE wiki_id = ? AND mw_page_id IN ({placeholders}) ORDER BY id"
                )
                cursor = self._conn.execute(query, [wiki_id, *batch])
                results.extend(_revision_from_row(row) for row in cursor.fetchall())
        return results

    def relocate_revisions(self, revision_ids, mw_page_id, article_id):
        if not revision_ids:
            return 0
        moved = 0
        with self._lock:
            for batch in chunked(sorted(revision_ids), QUERY_CHUNK_SIZE):
                placeholders = ",".join("?" for _ in batch)
                cursor = self._conn.execute(
                    f"UPDATE revisions SET mw_page_id = ?, article_id = ? WHERE id IN ({placeholders})",
                    [mw_page_id, article_id, *batch],
                )
                moved += cursor.rowcount
            self._conn.commit()
        return moved

    def delete_revisions(self, revision_ids):
        if not revision_ids:
            return 0
        dropped = 0
        with self._lock:
            for batch in chunked(sorted(revision_ids), QUERY_CHUNK_SIZE):
                placeholders = ",".join("?" for _ in batch)
                cursor = self._conn.execute(f"DELETE FROM revisions WHERE id IN ({placeholders})", batch)
                dropped += cursor.rowcount
            self._conn.commit()
        return dropped
