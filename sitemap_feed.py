"""Sitemap ingestion: turn a site's sitemap (or sitemap index) into candidate documents."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable
from datetime import UTC, datetime

from fetcher import fetch_document
from markup import slug_from_url
from models import Document

MAX_SITEMAP_DEPTH = 2
# Taxonomy and author archives are listings, not articles.
SKIPPED_SITEMAP_MARKERS = ("category-sitemap", "tag-sitemap", "author-sitemap")

LOGGER = logging.getLogger(__name__)


def fetch_pages(
    sitemap_url: str,
    fetch: Callable[[str], str] = fetch_document,
    limit: int | None = None,
) -> list[Document]:
    """Fetch a sitemap and return one Document per article URL, oldest first.

    Sitemap indexes are followed one level deep. ``days_old`` comes from
    ``<lastmod>`` and is None when a URL has no modification date.
    """
    documents = _collect(sitemap_url, fetch, depth=0)
    unique = list({document.id: document for document in documents}.values())
    unique.sort(key=lambda d: d.days_old if d.days_old is not None else -1, reverse=True)
    if limit is not None:
        unique = unique[:limit]

    LOGGER.info("Sitemap fetch: url=%s raw_count=%s returned=%s", sitemap_url, len(documents), len(unique))
    return unique


def _collect(sitemap_url: str, fetch: Callable[[str], str], depth: int) -> list[Document]:
    try:
        root = ET.fromstring(fetch(sitemap_url).strip().encode("utf-8"))
    except ET.ParseError as exc:
        raise RuntimeError(f"Sitemap at {sitemap_url} is not valid XML: {exc}") from exc

    if _local_name(root.tag) == "sitemapindex":
        if depth >= MAX_SITEMAP_DEPTH:
            LOGGER.warning("Sitemap index nesting too deep at %s, skipping", sitemap_url)
            return []
        documents: list[Document] = []
        for loc, _ in _entries(root, "sitemap"):
            if any(marker in slug_from_url(loc).lower() for marker in SKIPPED_SITEMAP_MARKERS):
                LOGGER.info("Skipping taxonomy sitemap %s", loc)
                continue
            try:
                documents.extend(_collect(loc, fetch, depth + 1))
            except Exception as exc:  # one broken child sitemap should not drop the rest
                LOGGER.warning("Sitemap fetch failed for %s, skipping: %s", loc, exc)
        return documents

    now = datetime.now(UTC)
    return [
        parse_document(loc, lastmod, now)
        for loc, lastmod in _entries(root, "url")
    ]


def parse_document(url: str, lastmod: str | None, now: datetime | None = None) -> Document:
    slug = slug_from_url(url)
    modified = _parse_datetime(lastmod)
    days_old = None
    if modified is not None:
        days_old = max(0, ((now or datetime.now(UTC)) - modified).days)
    return Document(id=url, slug=slug, title=title_from_slug(slug), days_old=days_old)


def title_from_slug(slug: str) -> str:
    return " ".join(word.capitalize() for word in slug.replace("_", "-").split("-") if word)


def _entries(root: ET.Element, entry_name: str) -> list[tuple[str, str | None]]:
    entries: list[tuple[str, str | None]] = []
    for element in root:
        if _local_name(element.tag) != entry_name:
            continue
        loc = None
        lastmod = None
        for child in element:
            name = _local_name(child.tag)
            if name == "loc" and child.text:
                loc = child.text.strip()
            elif name == "lastmod" and child.text:
                lastmod = child.text.strip()
        if loc:
            entries.append((loc, lastmod))
    return entries


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_datetime(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
