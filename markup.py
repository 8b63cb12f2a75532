"""BeautifulSoup helpers for reading and splicing article markup."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PageElement

PARSER = "html.parser"
_NON_TEXT_TAGS = ("script", "style", "noscript")


def parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", PARSER)


def parse_nodes(html: str) -> list[PageElement]:
    """Parse an HTML fragment and return its detached top-level nodes."""
    fragment = parse(html)
    nodes = list(fragment.contents)
    for node in nodes:
        node.extract()
    return [node for node in nodes if not (isinstance(node, NavigableString) and not node.strip())]


def serialize(tree: BeautifulSoup | Tag) -> str:
    return tree.decode() if isinstance(tree, BeautifulSoup) else tree.decode_contents()


def visible_text(tree: BeautifulSoup | Tag) -> str:
    parts = [
        str(text)
        for text in tree.find_all(string=True)
        if text.parent is not None and text.parent.name not in _NON_TEXT_TAGS
    ]
    return re.sub(r"\s+", " ", " ".join(parts)).strip()


def word_count(text: str) -> int:
    return len(text.split())


def host_of(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def is_external_href(href: str, site_host: str | None) -> bool:
    """True for absolute http(s) links that point away from the site host."""
    if not href.lower().startswith(("http://", "https://")):
        return False
    if not site_host:
        return True
    return host_of(href) != site_host


def is_internal_href(href: str, site_host: str | None) -> bool:
    href = href.strip()
    if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
        return False
    if href.lower().startswith(("http://", "https://")):
        return bool(site_host) and host_of(href) == site_host
    return True


def insert_before(anchor: Tag, nodes: list[PageElement]) -> None:
    for node in nodes:
        anchor.insert_before(node)


def append_nodes(parent: BeautifulSoup | Tag, nodes: list[PageElement]) -> None:
    for node in nodes:
        parent.append(node)


def prepend_nodes(parent: BeautifulSoup | Tag, nodes: list[PageElement]) -> None:
    for offset, node in enumerate(nodes):
        parent.insert(offset, node)


def first_heading(tree: BeautifulSoup, name: str = "h2") -> Tag | None:
    heading = tree.find(name)
    return heading if isinstance(heading, Tag) else None


def slug_from_url(url: str) -> str:
    """Last non-empty path segment of ``url``."""
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    return segments[-1] if segments else ""
