"""
Reconciles a batch of local articles for one wiki against the remote wiki.

A pass runs four steps in a fixed order:
  1. look up every article by page id and split ids into synced and deleted,
  2. copy remote titles and namespaces onto synced articles,
  3. recover articles whose page id changed (history merges) by title lookup,
  4. flag deletions and undeletions, then clean up course links and revisions.

Deletion is only ever inferred from a complete remote answer: a single failed
lookup in a pass empties the deleted set and skips the deletion step.
"""

import logging
from dataclasses import dataclass, field

from . import config
from .models import ArticleMutation, CatalogConflictError
from .revisions import RevisionCleanup
from .utils import chunked

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationPass:
    """Working state owned by a single `update_status` call."""

    articles: list
    failed_request_count: int = 0
    synced_records: list = field(default_factory=list)
    synced_ids: set = field(default_factory=set)
    deleted_page_ids: set = field(default_factory=set)
    # old page id -> page id whose article now carries the old one's history
    reassigned: dict = field(default_factory=dict)
    mutations: list = field(default_factory=list)

    @property
    def complete(self):
        return self.failed_request_count == 0


@dataclass
class PassResult:
    wiki_id: int
    articles: int = 0
    synced: int = 0
    moved: int = 0
    reassigned: int = 0
    superseded: int = 0
    deleted: int = 0
    undeleted: int = 0
    links_removed: int = 0
    revisions_moved: int = 0
    revisions_dropped: int = 0
    failed_requests: int = 0
    mutations: list = field(default_factory=list)

    def as_dict(self):
        return {
            "wiki_id": self.wiki_id,
            "articles": self.articles,
            "synced": self.synced,
            "moved": self.moved,
            "reassigned": self.reassigned,
            "superseded": self.superseded,
            "deleted": self.deleted,
            "undeleted": self.undeleted,
            "links_removed": self.links_removed,
            "revisions_moved": self.revisions_moved,
            "revisions_dropped": self.revisions_dropped,
            "failed_requests": self.failed_requests,
            "mutations": len(self.mutations),
        }


class ArticleStatusReconciler:
    """Updates articles of one wiki to reflect remote deletions, moves and page id changes."""

    def __init__(self, wiki, catalog, lookup, chunk_size=config.REPLICA_CHUNK_SIZE, revision_cleanup=None):
        self.wiki = wiki
        self.catalog = catalog
        self.lookup = lookup
        self.chunk_size = chunk_size
        self.revision_cleanup = revision_cleanup or RevisionCleanup(wiki, catalog)

    def update_status(self, articles):
        articles = list(articles)
        state = ReconciliationPass(articles=articles)
        result = PassResult(wiki_id=self.wiki.id, articles=len(articles))

        self._identify_deleted_and_synced_page_ids(state)
        result.synced = len(state.synced_ids)

        # Moved pages first, so the page id recovery below matches on current titles.
        result.moved = self._update_title_and_namespace(state)

        # Page ids change independently of titles, e.g. after history merges.
        self._update_article_ids(state, result)

        # Deletion checks must see the page ids corrected above.
        result.deleted = self._update_deleted_articles(state)
        result.undeleted = self._update_undeleted_articles(state)
        self._clean_up_dependents(state, result)

        result.failed_requests = state.failed_request_count
        result.mutations = state.mutations
        logger.info(
            "%s: %d articles, %d synced, %d moved, %d reassigned, %d deleted, %d undeleted, %d failed requests",
            self.wiki,
            result.articles,
            result.synced,
            result.moved,
            result.reassigned,
            result.deleted,
            result.undeleted,
            result.failed_requests,
        )
        return result

    # Identification

    def _identify_deleted_and_synced_page_ids(self, state):
        page_ids = [article.mw_page_id for article in state.articles if article.mw_page_id is not None]
        state.synced_records = self._article_data_from_remote(state, page_ids)
        state.synced_ids = {record.page_id for record in state.synced_records}
        # A missing page only counts as deleted when every lookup answered.
        # TODO: confirm deletions against the remote deletion log before flagging.
        if state.complete:
            state.deleted_page_ids = set(page_ids) - state.synced_ids
        else:
            state.deleted_page_ids = set()

    def _article_data_from_remote(self, state, page_ids):
        synced = []
        for block in chunked(dict.fromkeys(page_ids), self.chunk_size):
            records = self.lookup.get_existing_articles_by_id(block)
            if records is None:
                state.failed_request_count += 1
                logger.warning("%s: page id lookup failed for %d ids", self.wiki, len(block))
                continue
            synced.extend(records)
        return synced

    # Titles and namespaces

    def _update_title_and_namespace(self, state):
        moved = 0
        for record in state.synced_records:
            article = self.catalog.find_article_by_page_id(self.wiki.id, record.page_id)
            if article is None:
                continue
            if self._data_matches_article(record, article):
                continue
            # Titles with four-byte characters are stored URL-encoded.
            if article.title.startswith(config.ESCAPED_TITLE_PREFIX):
                continue
            self._apply(
                state,
                article,
                "moved",
                title=record.title,
                namespace=record.namespace,
                deleted=False,
            )
            moved += 1
        return moved

    @staticmethod
    def _data_matches_article(record, article):
        if article.title != record.title:
            return False
        if article.namespace != record.namespace:
            return False
        # The remote still has the page, so it cannot be deleted.
        return not article.deleted

    # Page id changes

    def _update_article_ids(self, state, result):
        if not state.deleted_page_ids:
            return
        maybe_deleted = self.catalog.articles_with_page_ids(self.wiki.id, state.deleted_page_ids)
        if not maybe_deleted:
            return
        records = self.lookup.get_existing_articles_by_title(maybe_deleted)
        if records is None:
            state.failed_request_count += 1
            logger.warning("%s: title lookup failed for %d articles", self.wiki, len(maybe_deleted))
            return
        for record in records:
            self._resolve_page_id(state, result, record)

    def _resolve_page_id(self, state, result, record):
        article = self.catalog.find_live_article_by_title(self.wiki.id, record.title, record.namespace)
        if not self._article_data_matches(article, record.title, state.deleted_page_ids):
            return
        self._update_article_page_id(state, result, article, record.page_id)

    @staticmethod
    def _article_data_matches(article, title, deleted_page_ids):
        if article is None:
            return False
        if article.mw_page_id not in deleted_page_ids:
            return False
        # The title lookup can match a case variant of the stored title.
        return article.title == title

    def _update_article_page_id(self, state, result, article, mw_page_id):
        if self.catalog.article_exists(self.wiki.id, mw_page_id):
            self._supersede(state, result, article, mw_page_id)
            return
        try:
            self._apply(state, article, "reassigned", mw_page_id=mw_page_id)
        except CatalogConflictError:
            # Another worker claimed the page id first.
            logger.info("%s: page id %s taken concurrently; retiring article %s", self.wiki, mw_page_id, article.id)
            self._supersede(state, result, article, mw_page_id)
            return
        state.reassigned[article.mw_page_id] = mw_page_id
        result.reassigned += 1

    def _supersede(self, state, result, article, mw_page_id):
        # An up-to-date article already holds the new page id.
        self._apply(state, article, "superseded", deleted=True)
        state.reassigned[article.mw_page_id] = mw_page_id
        result.superseded += 1

    # Deletion and undeletion

    def _update_deleted_articles(self, state):
        if not state.complete:
            return 0
        deleted = 0
        for article in state.articles:
            if article.mw_page_id not in state.deleted_page_ids:
                continue
            # Consistency point: the page id may have been reassigned above.
            current = self.catalog.get_article(article.id)
            if current is None or current.mw_page_id not in state.deleted_page_ids:
                continue
            if current.deleted:
                continue
            self._apply(state, current, "deleted", deleted=True)
            deleted += 1
        return deleted

    def _update_undeleted_articles(self, state):
        undeleted = 0
        for article in state.articles:
            if article.mw_page_id not in state.synced_ids:
                continue
            current = self.catalog.get_article(article.id)
            if current is None or not current.deleted:
                continue
            self._apply(state, current, "undeleted", deleted=False)
            undeleted += 1
        return undeleted

    def _clean_up_dependents(self, state, result):
        if not state.complete or not state.deleted_page_ids:
            return
        retired = [
            article.id
            for article in self.catalog.articles_with_page_ids(self.wiki.id, state.deleted_page_ids)
            if article.deleted
        ]
        result.links_removed = self.catalog.remove_course_links(retired)
        limbo_revisions = self.catalog.revisions_for_page_ids(self.wiki.id, state.deleted_page_ids)
        moved, dropped = self.revision_cleanup.move_or_delete_revisions(limbo_revisions, state.reassigned)
        result.revisions_moved = moved
        result.revisions_dropped = dropped

    def _apply(self, state, article, reason, **changes):
        self.catalog.update_article(article.id, **changes)
        state.mutations.append(ArticleMutation(article_id=article.id, changes=changes, reason=reason))
        logger.debug("%s: article %s %s %s", self.wiki, article.id, reason, changes)
