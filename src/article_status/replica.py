from __future__ import annotations

import logging
import time
from typing import Any, Optional

import jsonschema
import requests

from . import config
from .models import RemoteRecord

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {429, 500, 502, 503, 504}

ARTICLES_RESPONSE_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["success"],
    "properties": {
        "success": {"type": "boolean"},
        "data": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "required": ["page_id", "page_title", "page_namespace"],
                "properties": {
                    "page_id": {"type": ["integer", "string"], "pattern": "^[0-9]+$"},
                    "page_title": {"type": "string"},
                    "page_namespace": {"type": ["integer", "string"], "pattern": "^-?[0-9]+$"},
                },
            },
        },
    },
}


class ReplicaResponseError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def parse_articles_response(payload: Any) -> list[RemoteRecord]:
    """Validate a replica articles payload and convert its rows to RemoteRecords."""
    validator = jsonschema.Draft202012Validator(ARTICLES_RESPONSE_SCHEMA)
    errors = sorted(validator.iter_errors(payload), key=lambda e: len(list(e.absolute_path)))
    if errors:
        error = errors[0]
        details = {"path": list(error.absolute_path), "message": error.message}
        raise ReplicaResponseError("SCHEMA_VIOLATION", "Replica response failed validation.", details)
    if not payload["success"]:
        raise ReplicaResponseError("REPLICA_FAILURE", "Replica reported an unsuccessful query.", payload)
    return [
        RemoteRecord(
            page_id=int(row["page_id"]),
            title=row["page_title"],
            namespace=int(row["page_namespace"]),
        )
        for row in payload.get("data") or []
    ]


class ReplicaClient:
    """
    Batched article lookups against the replica query service for one wiki.
    Every lookup returns None instead of a partial answer when the call fails.
    """

    def __init__(
        self,
        wiki,
        endpoint=config.REPLICA_ENDPOINT,
        session=None,
        timeout=config.API_TIMEOUT,
        max_retries=config.REPLICA_MAX_RETRIES,
        retry_backoff=0.5,
    ):
        self.wiki = wiki
        self.url = endpoint.rstrip("/") + "/" + config.REPLICA_ARTICLES_SCRIPT
        self.session = session or requests.Session()
        self.session.headers.update(config.HEADERS)
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.stats = {"api_calls": 0, "failed_calls": 0, "http_errors": 0}

    def get_existing_articles_by_id(self, page_ids):
        params = [("db", self.wiki.db_name)]
        params.extend(("article_ids[]", str(page_id)) for page_id in page_ids)
        return self._query("GET", params=params)

    def get_existing_articles_by_title(self, articles):
        body = {
            "db": self.wiki.db_name,
            "articles": [{"title": article.title, "namespace": article.namespace} for article in articles],
        }
        return self._query("POST", json=body)

    def _query(self, method, **kwargs):
        self.stats["api_calls"] += 1
        payload = self._request(method, **kwargs)
        if payload is None:
            self.stats["failed_calls"] += 1
            return None
        try:
            return parse_articles_response(payload)
        except ReplicaResponseError as exc:
            logger.warning("Unusable replica response from %s for %s: %s", self.url, self.wiki, exc)
            self.stats["failed_calls"] += 1
            return None

    def _request(self, method, **kwargs):
        for attempt in range(self.max_retries):
            try:
                response = self.session.request(method, self.url, timeout=self.timeout, **kwargs)
            except requests.RequestException as exc:
                logger.warning("Replica request for %s failed: %s", self.wiki, exc)
                return None
            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError:
                    logger.warning("Replica returned invalid JSON for %s", self.wiki)
                    return None
            self.stats["http_errors"] += 1
            if response.status_code in TRANSIENT_STATUSES and attempt < self.max_retries - 1:
                sleep_for = self.retry_backoff * (2**attempt)
                logger.info("Replica HTTP %s for %s. Sleeping %.1fs...", response.status_code, self.wiki, sleep_for)
                time.sleep(sleep_for)
                continue
            logger.warning("Replica HTTP %s for %s", response.status_code, self.wiki)
            return None
        return None
