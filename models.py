"""Shared typed models for the content maintenance engine."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from config import Policy

ResponseFormat = Literal["json", "html", "text"]


@dataclass(slots=True)
class Document:
    """A remotely stored article, held in memory while it is processed."""

    id: str
    slug: str
    title: str
    days_old: int | None = None
    markup: str = ""


@dataclass(frozen=True, slots=True)
class LinkTarget:
    """An internal page that may receive a contextual link."""

    title: str
    slug: str
    url: str


@dataclass(slots=True)
class ScheduleRecord:
    document_id: str
    last_processed_at: datetime | None = None
    failure_count: int = 0
    next_eligible_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    prompt_key: str
    args: tuple[Any, ...]
    response_format: ResponseFormat = "json"

    @property
    def cache_key(self) -> str:
        return f"{self.prompt_key}:{json.dumps(self.args, sort_keys=True, default=str)}"


@dataclass(frozen=True, slots=True)
class ClassificationVerdict:
    should_update: bool
    reason: str


@dataclass(frozen=True, slots=True)
class ProtectedFragment:
    placeholder: str
    markup: str
    kind: str


@dataclass(frozen=True, slots=True)
class ReferenceLink:
    title: str
    url: str
    source: str


@dataclass(slots=True)
class RepairReport:
    """Change counters produced by one repair run, plus staged metadata."""

    shortcodes_removed: int = 0
    noise_removed: int = 0
    sections_added: int = 0
    intro_rewritten: int = 0
    schema_added: int = 0
    title_optimized: int = 0
    links_removed: int = 0
    links_added: int = 0
    years_updated: int = 0
    filler_replaced: int = 0
    text_polished: int = 0
    references_added: int = 0
    alt_texts_updated: int = 0
    optimized_title: str | None = None
    optimized_description: str | None = None
    keywords: list[str] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return (
            self.shortcodes_removed
            + self.noise_removed
            + self.sections_added
            + self.intro_rewritten
            + self.schema_added
            + self.title_optimized
            + self.links_removed
            + self.links_added
            + self.years_updated
            + self.filler_replaced
            + self.text_polished
            + self.references_added
            + self.alt_texts_updated
        )


@dataclass(slots=True)
class PublishRequest:
    document_id: str
    title: str
    slug: str
    content: str
    meta_description: str = ""
    is_refresh: bool = True
    status: str = "publish"


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    success: bool
    message: str
    link: str | None = None


@dataclass(slots=True)
class EngineContext:
    """Everything the engine needs for one run; replaceable while running."""

    site_url: str
    username: str
    password: str
    pages: list[Document] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    policy: Policy = field(default_factory=Policy)

    @property
    def link_targets(self) -> list[LinkTarget]:
        return [
            LinkTarget(title=page.title, slug=page.slug, url=page.id)
            for page in self.pages
            if page.slug and page.title
        ]
