from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

MULTILINGUAL_PROJECTS = {"wikidata": "www.wikidata.org", "commons": "commons.wikimedia.org"}


class CatalogConflictError(Exception):
    """An update would give two articles of one wiki the same page id."""


@dataclass(frozen=True)
class Wiki:
    id: int
    language: Optional[str]
    project: str

    @property
    def domain(self) -> str:
        if self.project in MULTILINGUAL_PROJECTS:
            return MULTILINGUAL_PROJECTS[self.project]
        return f"{self.language}.{self.project}.org"

    @property
    def db_name(self) -> str:
        if self.project == "wikidata":
            return "wikidatawiki"
        if self.project == "commons":
            return "commonswiki"
        if self.project == "wikipedia":
            return f"{self.language}wiki"
        return f"{self.language}{self.project}"

    def __str__(self) -> str:
        return self.domain


@dataclass(frozen=True)
class Article:
    id: int
    wiki_id: int
    mw_page_id: Optional[int]
    title: str
    namespace: int
    deleted: bool = False


@dataclass(frozen=True)
class RemoteRecord:
    """Current remote state of one page, as reported by a lookup."""

    page_id: int
    title: str
    namespace: int


@dataclass(frozen=True)
class Course:
    id: int
    slug: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class Revision:
    id: int
    wiki_id: int
    mw_rev_id: int
    mw_page_id: int
    article_id: Optional[int]


@dataclass(frozen=True)
class ArticleMutation:
    """One applied change to an article row, with the step that caused it."""

    article_id: int
    changes: dict[str, Any]
    reason: str
