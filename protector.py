"""Shield irreplaceable fragments behind numbered text tokens during repair.

``protect`` swaps each matching element for a token such as
``__PROTECTED_IMAGE_3__`` and returns the original markup keyed by token.
``restore`` is a plain substring substitution over serialized markup, so it
still works after the surrounding structure has been rewritten, as long as the
token text itself survives.
"""

from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, NavigableString, Tag

from errors import UnresolvedPlaceholderError
from models import ProtectedFragment

LOGGER = logging.getLogger(__name__)

# Outer containers come before the leaves they may contain, so a protected
# fragment never holds another token.
PROTECTED_SELECTORS: tuple[tuple[str, str], ...] = (
    ("REFERENCES", '[class*="references-section"]'),
    ("IMAGE", "figure.wp-block-image"),
    ("VIDEO", "figure.wp-block-embed, .wp-block-embed"),
    ("TABLE", "figure.wp-block-table"),
    ("HTML", ".wp-block-html, .wp-block-custom-html"),
    ("TABLE", "table:not(.comparison-table)"),
    ("HTML", "pre"),
    ("VIDEO", "iframe, video, audio"),
    ("IMAGE", "img"),
    ("HTML", "code"),
)

PLACEHOLDER_PATTERN = re.compile(r"__PROTECTED_([A-Z]+)_(\d+)__")


def placeholder_for(kind: str, index: int) -> str:
    return f"__PROTECTED_{kind}_{index}__"


def protect(tree: BeautifulSoup) -> dict[str, str]:
    """Replace protected elements in place; return original markup keyed by token."""
    fragments: dict[str, str] = {}
    counter = 0
    for kind, selector in PROTECTED_SELECTORS:
        for element in tree.select(selector):
            if not _is_attached(element, tree):
                continue
            token = placeholder_for(kind, counter)
            counter += 1
            fragments[token] = str(element)
            element.replace_with(NavigableString(token))

    LOGGER.debug("Protected %s fragments", len(fragments))
    return fragments


def restore(markup: str, fragments: dict[str, str]) -> str:
    restored = markup
    for token, original in fragments.items():
        restored = restored.replace(token, original)
    return restored


def find_unresolved(markup: str) -> list[str]:
    return [match.group(0) for match in PLACEHOLDER_PATTERN.finditer(markup)]


def ensure_resolved(markup: str) -> str:
    unresolved = find_unresolved(markup)
    if unresolved:
        raise UnresolvedPlaceholderError(unresolved)
    return markup


def missing_fragments(markup: str, fragments: dict[str, str]) -> list[str]:
    """Tokens whose original markup did not make it back into the restored output."""
    return [token for token, original in fragments.items() if original not in markup]


def fragment_kind(token: str) -> str:
    match = PLACEHOLDER_PATTERN.fullmatch(token)
    return match.group(1) if match else ""


def as_fragments(fragments: dict[str, str]) -> list[ProtectedFragment]:
    return [
        ProtectedFragment(placeholder=token, markup=original, kind=fragment_kind(token))
        for token, original in fragments.items()
    ]


def _is_attached(element: Tag, tree: BeautifulSoup) -> bool:
    return any(parent is tree for parent in element.parents)
