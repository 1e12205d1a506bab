import logging
import threading

import mwclient
import mwclient.errors
import requests

from . import config
from .models import RemoteRecord
from .utils import chunked, display_title, normalize_title

logger = logging.getLogger(__name__)

# Lazy MediaWiki site handles, one per domain (initialized on first use)
SITES = {}
_SITES_LOCK = threading.Lock()

LOOKUP_ERRORS = (mwclient.errors.MwClientError, requests.RequestException, KeyError, ValueError)


def get_site(domain):
    """Lazy initializer for the MediaWiki client of one wiki domain."""
    with _SITES_LOCK:
        site = SITES.get(domain)
        if site is None:
            site = mwclient.Site(domain, clients_useragent=config.HEADERS["User-Agent"])
            SITES[domain] = site
        return site


def _strip_namespace(title, namespace):
    if namespace != 0 and ":" in title:
        return title.split(":", 1)[1]
    return title


class MediaWikiLookup:
    """Article lookups through the MediaWiki Action API of one wiki."""

    def __init__(self, wiki, site=None, batch_size=config.MEDIAWIKI_BATCH_SIZE):
        self.wiki = wiki
        self._site = site
        self.batch_size = batch_size
        self.stats = {"api_calls": 0, "failed_calls": 0}

    @property
    def site(self):
        if self._site is None:
            self._site = get_site(self.wiki.domain)
        return self._site

    def get_existing_articles_by_id(self, page_ids):
        values = [str(page_id) for page_id in page_ids]
        return self._query_pages("pageids", values)

    def get_existing_articles_by_title(self, articles):
        try:
            namespaces = self.site.namespaces
        except LOOKUP_ERRORS as exc:
            logger.warning("Could not initialize MediaWiki site for %s: %s", self.wiki, exc)
            self.stats["failed_calls"] += 1
            return None
        titles = []
        for article in articles:
            prefix = namespaces.get(article.namespace, "")
            name = display_title(article.title)
            titles.append(f"{prefix}:{name}" if prefix else name)
        return self._query_pages("titles", titles)

    def _query_pages(self, key, values):
        """Run `action=query` in API-sized batches; any failed batch fails the whole call."""
        records = []
        for batch in chunked(values, self.batch_size):
            self.stats["api_calls"] += 1
            try:
                data = self.site.api("query", **{key: "|".join(batch)})
                pages = data.get("query", {}).get("pages", {})
                for page in pages.values():
                    if "missing" in page or "invalid" in page or "pageid" not in page:
                        continue
                    namespace = int(page["ns"])
                    records.append(
                        RemoteRecord(
                            page_id=int(page["pageid"]),
                            title=normalize_title(_strip_namespace(page["title"], namespace)),
                            namespace=namespace,
                        )
                    )
            except LOOKUP_ERRORS as exc:
                logger.warning("MediaWiki %s query failed for %s: %s", key, self.wiki, exc)
                self.stats["failed_calls"] += 1
                return None
        return records
