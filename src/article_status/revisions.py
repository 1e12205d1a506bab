import logging
from collections import defaultdict

logger = logging.getLogger(__name__)


class RevisionCleanup:
    """Relocates or drops revisions left behind by retired page ids."""

    def __init__(self, wiki, catalog):
        self.wiki = wiki
        self.catalog = catalog

    def move_or_delete_revisions(self, revisions, reassigned):
        """
        Move each revision whose page id was reassigned onto the article that now
        owns the new page id; drop every other revision.
        Returns (moved, dropped).
        """
        if not revisions:
            return 0, 0
        relocations = defaultdict(list)
        orphaned = []
        for revision in revisions:
            new_page_id = reassigned.get(revision.mw_page_id)
            if new_page_id is None:
                orphaned.append(revision.id)
                continue
            relocations[new_page_id].append(revision.id)

        moved = 0
        for new_page_id, revision_ids in relocations.items():
            article = self.catalog.find_article_by_page_id(self.wiki.id, new_page_id)
            if article is None:
                orphaned.extend(revision_ids)
                continue
            moved += self.catalog.relocate_revisions(revision_ids, new_page_id, article.id)

        dropped = self.catalog.delete_revisions(orphaned)
        if moved or dropped:
            logger.info("%s: moved %d revisions, dropped %d revisions", self.wiki, moved, dropped)
        return moved, dropped
