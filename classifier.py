"""Rule-based staleness classifier (no generation calls)."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from bs4 import BeautifulSoup

from config import Policy
from markup import is_external_href, is_internal_href, parse, visible_text, word_count
from models import ClassificationVerdict, Document

# Leftovers from bulk importers and gallery plugins that render as literal text.
BROKEN_EMBED_PATTERN = re.compile(r"\[bulkimporter_image|\[gallery|\[wp_", re.IGNORECASE)

POWER_WORDS: tuple[str, ...] = ("ultimate", "complete", "guide", "best", "top", "proven")

FILLER_PHRASES: tuple[str, ...] = (
    "in this article",
    "in this post",
    "without further ado",
    "at the end of the day",
    "the fact of the matter",
)

SECTION_MARKERS: dict[str, tuple[str, ...]] = {
    "Key Takeaways": ("key takeaway", "at a glance"),
    "FAQ": ("faq", "frequently asked"),
    "Conclusion": ("conclusion", "final thoughts"),
}

SECTION_CLASSES: dict[str, str] = {
    "Key Takeaways": "key-takeaways-box",
    "FAQ": "faq-section",
}

REFERENCES_SELECTOR = '[class*="references-section"]'
SCHEMA_MARKER = "application/ld+json"

_SINGLE_WORD = re.compile(r"^\w+$")


@dataclass(slots=True)
class _Signals:
    """Facts extracted once from the markup and shared by every rule."""

    markup: str
    tree: BeautifulSoup
    text: str
    site_host: str | None

    @property
    def lower_text(self) -> str:
        return self.text.lower()

    def hrefs(self) -> list[tuple[str, str]]:
        return [
            (str(anchor.get("href") or ""), anchor.get_text(strip=True))
            for anchor in self.tree.find_all("a")
            if anchor.get("href")
        ]


Rule = Callable[[Document, _Signals, Policy], str | None]


def year_pattern(year: int) -> re.Pattern[str]:
    return re.compile(rf"\b{year}\b")


def outdated_years(text: str, policy: Policy) -> list[int]:
    """Superseded year tokens present in the given text, oldest first."""
    return [year for year in policy.superseded_years if year_pattern(year).search(text)]


def _with_outdated(reason: str, signals: _Signals, policy: Policy) -> str:
    years = outdated_years(signals.text, policy)
    if not years:
        return reason
    return f"{reason} (outdated year {', '.join(str(y) for y in years)})"


def _check_broken_embeds(document: Document, signals: _Signals, policy: Policy) -> str | None:
    if BROKEN_EMBED_PATTERN.search(signals.markup):
        return _with_outdated("Contains broken embed shortcodes - cleanup required", signals, policy)
    return None


def _check_freshness_year(document: Document, signals: _Signals, policy: Policy) -> str | None:
    if not year_pattern(policy.freshness_year).search(signals.text):
        return _with_outdated(f"Missing {policy.freshness_year} freshness signals", signals, policy)
    return None


def _check_superseded_years(document: Document, signals: _Signals, policy: Policy) -> str | None:
    years = outdated_years(signals.text, policy)
    if years:
        return f"Contains outdated year {', '.join(str(y) for y in years)}"
    return None


def _check_single_word_anchors(document: Document, signals: _Signals, policy: Policy) -> str | None:
    count = sum(1 for _, text in signals.hrefs() if _SINGLE_WORD.match(text))
    if count > policy.max_single_word_anchors:
        return f"{count} low-quality single-word link anchors detected"
    return None


def missing_sections(tree: BeautifulSoup, text: str | None = None) -> list[str]:
    """Names of the required structural sections absent from the tree."""
    lower = (text if text is not None else visible_text(tree)).lower()
    missing: list[str] = []
    for name, markers in SECTION_MARKERS.items():
        css_class = SECTION_CLASSES.get(name)
        if css_class and tree.select_one(f".{css_class}") is not None:
            continue
        if not any(marker in lower for marker in markers):
            missing.append(name)
    return missing


def _check_sections(document: Document, signals: _Signals, policy: Policy) -> str | None:
    missing = missing_sections(signals.tree, signals.text)
    if missing:
        return f"Missing critical sections ({'/'.join(missing)})"
    return None


def _check_references(document: Document, signals: _Signals, policy: Policy) -> str | None:
    external = sum(1 for href, _ in signals.hrefs() if is_external_href(href, signals.site_host))
    has_block = signals.tree.select_one(REFERENCES_SELECTOR) is not None
    if external < policy.min_external_references or not has_block:
        return (
            f"Insufficient external references ({external}/{policy.min_external_references} minimum"
            f"{'' if has_block else ', no references block'})"
        )
    return None


def _check_internal_links(document: Document, signals: _Signals, policy: Policy) -> str | None:
    internal = sum(1 for href, _ in signals.hrefs() if is_internal_href(href, signals.site_host))
    if internal < policy.min_internal_links:
        return f"Insufficient internal links ({internal}/{policy.min_internal_links} minimum)"
    return None


def _check_schema(document: Document, signals: _Signals, policy: Policy) -> str | None:
    if SCHEMA_MARKER not in signals.markup.lower():
        return "Missing structured data markup"
    return None


def _check_word_count(document: Document, signals: _Signals, policy: Policy) -> str | None:
    words = word_count(signals.text)
    if words < policy.min_word_count:
        return f"Thin content ({words}/{policy.min_word_count} words minimum)"
    return None


def title_needs_power_word(title: str, policy: Policy) -> bool:
    lower = title.lower()
    return not any(word in lower for word in (*POWER_WORDS, str(policy.freshness_year)))


def _check_title(document: Document, signals: _Signals, policy: Policy) -> str | None:
    if title_needs_power_word(document.title, policy):
        return "Weak title - needs power words or the current year"
    return None


def _check_age(document: Document, signals: _Signals, policy: Policy) -> str | None:
    if document.days_old is not None and document.days_old > policy.max_age_days:
        return f"Content is {document.days_old} days old"
    return None


def _check_filler(document: Document, signals: _Signals, policy: Policy) -> str | None:
    lower = signals.lower_text
    found = [phrase for phrase in FILLER_PHRASES if phrase in lower]
    if found:
        return f"Contains filler phrases ({', '.join(found)})"
    return None


# Order encodes priority: garbage first, then freshness, structure, depth, metadata.
RULES: tuple[Rule, ...] = (
    _check_broken_embeds,
    _check_freshness_year,
    _check_superseded_years,
    _check_single_word_anchors,
    _check_sections,
    _check_references,
    _check_internal_links,
    _check_schema,
    _check_word_count,
    _check_title,
    _check_age,
    _check_filler,
)


def classify_document(
    document: Document,
    markup: str | None = None,
    policy: Policy | None = None,
    site_host: str | None = None,
) -> ClassificationVerdict:
    """Return the first matching staleness reason, or a no-update verdict.

    ``markup`` defaults to ``document.markup``. ``site_host`` (without ``www.``)
    separates internal from external links; when it is unknown every absolute
    link counts as external.

    Year rules read visible text only, so dated upload paths such as
    `/wp-content/uploads/2023/05/` in attributes never mark a page stale.
    """
    policy = policy or Policy()
    raw = document.markup if markup is None else markup
    tree = parse(raw)
    signals = _Signals(markup=raw, tree=tree, text=visible_text(tree), site_host=site_host)

    for rule in RULES:
        reason = rule(document, signals, policy)
        if reason:
            return ClassificationVerdict(should_update=True, reason=reason)

    return ClassificationVerdict(should_update=False, reason="Content is current and fully optimized")
