"""Patch passes that fill structural gaps in a protected article tree.

Every pass is independent and fault tolerant: a pass that raises is logged
and contributes no changes, and the remaining passes still run. Passes only
see the protected tree, so media, tables and embeds appear as placeholder
tokens and are never sent to the generation capability, except for image
alt text, which is edited directly in the fragment map.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag

from classifier import FILLER_PHRASES, POWER_WORDS, REFERENCES_SELECTOR, SCHEMA_MARKER
from config import Policy
from generation import GenerateFn, json_repairer, parse_json_response, sanitize_html
from markup import (
    append_nodes,
    first_heading,
    host_of,
    insert_before,
    is_external_href,
    is_internal_href,
    parse,
    parse_nodes,
    prepend_nodes,
    serialize,
    visible_text,
)
from models import Document, EngineContext, LinkTarget, ReferenceLink, RepairReport
from protector import PLACEHOLDER_PATTERN, fragment_kind

LOGGER = logging.getLogger(__name__)

SHORTCODE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\[bulkimporter_image[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[gallery[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[caption[^\]]*\].*?\[/caption\]", re.IGNORECASE),
    re.compile(r"\[embed[^\]]*\].*?\[/embed\]", re.IGNORECASE),
    re.compile(r"\[video[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[audio[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[wp_[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[/?[a-zA-Z_][^\]]*\]"),
)

NOISE_PATTERNS: tuple[str, ...] = (
    "subscribe to",
    "your email",
    "enter your email",
    "email address",
    "privacy notice",
    "privacy policy",
    "cookie policy",
    "i agree to",
    "updates on the latest",
    "sign up for",
    "newsletter",
    "follow us on",
    "share this",
    "tweet this",
    "pin it",
    "leave a comment",
    "comment below",
    "your name",
    "previous post",
    "next post",
    "back to top",
    "search for:",
    "categories:",
    "tags:",
    "posted in",
    "about us",
    "contact us",
    "home page",
)

FLUFF_INDICATORS: tuple[str, ...] = (
    *FILLER_PHRASES,
    "in this guide",
    "we will discuss",
    "we will explore",
    "it is important to note",
    "it should be noted",
    "as you can see",
    "as mentioned above",
    "basically",
    "actually",
    "essentially",
    "generally speaking",
    "in general",
)

GENERIC_ANCHORS: tuple[str, ...] = (
    "health benefits",
    "click here",
    "read more",
    "learn more",
    "find out",
    "see here",
    "check out",
    "stamina",
    "benefits",
    "tips",
    "guide",
    "review",
)

SECTION_PROMPTS: tuple[tuple[str, str, int], ...] = (
    ("takeaways", "generate_key_takeaways", 5000),
    ("faq", "generate_faq_section", 5000),
    ("conclusion", "generate_conclusion", 3000),
)
_SECTION_HEADINGS: dict[str, tuple[str, ...]] = {
    "takeaways": ("key takeaway", "at a glance"),
    "faq": ("faq", "frequently asked"),
    "conclusion": ("conclusion", "final thoughts", "wrap"),
}
_SECTION_CLASSES: dict[str, str] = {"takeaways": "key-takeaways-box", "faq": "faq-section"}

NOISE_TAGS = ("p", "li", "h2", "h3", "h4", "blockquote")
POLISH_TAGS = NOISE_TAGS
_SKIP_CLASSES = ("key-takeaways-box", "faq-section", "wp-block-image", "wp-block-embed")
_MEDIA_TAGS = ("img", "iframe", "video", "svg")
_GENERIC_ALTS = {"image", "photo", "picture"}

MIN_SECTION_CHARS = 20
MIN_INTRO_CHARS = 150
MIN_ANCHOR_CHARS = 8
MIN_ADDED_ANCHOR_WORDS = 3
MIN_ADDED_ANCHOR_CHARS = 15
FLUFF_NODE_LIMIT = 10
FLUFF_BATCH_SIZE = 3
MIN_FLUFF_REPLACEMENT_CHARS = 30
POLISH_NODE_LIMIT = 50
POLISH_BATCH_SIZE = 6
MAX_REFERENCES = 10
ALT_IMAGE_LIMIT = 10
MIN_ALT_CHARS = 10

SearchFn = Callable[[str], list[ReferenceLink]]
CheckFn = Callable[[str], bool]


def clean_shortcodes(markup: str) -> tuple[str, int]:
    """Strip leftover shortcodes from raw markup, returning the cleaned markup and removal count."""
    removed = 0
    for pattern in SHORTCODE_PATTERNS:
        markup, count = pattern.subn("", markup)
        removed += count
    return markup, removed


def build_article_schema(document: Document, site_url: str = "") -> dict[str, Any]:
    schema: dict[str, Any] = {
        "@context": "https://schema.org",
        "@type": "Article",
        "headline": document.title,
        "url": document.id,
        "mainEntityOfPage": {"@type": "WebPage", "@id": document.id},
        "dateModified": datetime.now(UTC).date().isoformat(),
    }
    if site_url:
        schema["publisher"] = {"@type": "Organization", "name": host_of(site_url), "url": site_url}
    return schema


def _has_placeholder(node: Tag) -> bool:
    return PLACEHOLDER_PATTERN.search(node.get_text()) is not None


def _in_generated_block(node: Tag) -> bool:
    for parent in node.parents:
        if parent.name == "figure":
            return True
        classes = parent.get("class") or []
        if any(cls in _SKIP_CLASSES or "references-section" in cls for cls in classes):
            return True
    return False


def _word_list(text: str) -> list[str]:
    return text.split()


def _is_weak_anchor(text: str) -> bool:
    words = _word_list(text)
    if len(words) <= 1 or len(text) < MIN_ANCHOR_CHARS:
        return True
    lower = text.lower()
    return len(words) == 2 and any(generic in lower for generic in GENERIC_ANCHORS)


class GapRepairer:
    """Runs the ordered patch passes over one document's protected tree."""

    def __init__(
        self,
        generate: GenerateFn,
        policy: Policy | None = None,
        search_references: SearchFn | None = None,
        check_url: CheckFn | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.generate = generate
        self.policy = policy or Policy()
        self.search_references = search_references
        self.check_url = check_url
        self.sleep = sleep
        self._repair_json = json_repairer(generate)

    def repair(
        self,
        tree: BeautifulSoup,
        fragments: dict[str, str],
        document: Document,
        context: EngineContext,
        report: RepairReport | None = None,
    ) -> RepairReport:
        report = report or RepairReport()
        site_host = host_of(context.site_url) or None
        targets = [target for target in context.link_targets if target.url != document.id]
        report.keywords = list(context.keywords)

        report.noise_removed = self._run_pass("noise", lambda: self.remove_noise(tree))
        report.sections_added = self._run_pass(
            "sections", lambda: self.fill_missing_sections(tree, document.title)
        )
        report.intro_rewritten = self._run_pass(
            "intro", lambda: self.rewrite_weak_intro(tree, document.title)
        )
        report.schema_added = self._run_pass(
            "schema", lambda: self.inject_schema(tree, fragments, document, context.site_url)
        )
        if not report.keywords:
            report.keywords = self.semantic_keywords(document.title)
        report.title_optimized = self._run_pass(
            "title", lambda: self.optimize_title(tree, document, report)
        )
        report.links_removed = self._run_pass(
            "link-filter", lambda: self.remove_weak_links(tree, site_host)
        )
        report.links_added = self._run_pass(
            "link-add", lambda: self.add_internal_links(tree, targets, site_host)
        )
        report.years_updated = self._run_pass("years", lambda: self.normalize_years(tree))
        report.filler_replaced = self._run_pass(
            "filler", lambda: self.replace_filler(tree, document.title, report.keywords)
        )
        if self.policy.polish_enabled:
            report.text_polished = self._run_pass(
                "polish", lambda: self.polish_text(tree, document.title, report.keywords)
            )
        report.references_added = self._run_pass(
            "references", lambda: self.add_references(tree, fragments, document.title, site_host)
        )
        report.alt_texts_updated = self._run_pass(
            "alt-text", lambda: self.update_alt_texts(tree, fragments, document.title)
        )

        LOGGER.info("Repair finished for %s with %s changes", document.id, report.total_changes)
        return report

    def _run_pass(self, name: str, func: Callable[[], int]) -> int:
        try:
            changes = func()
        except Exception as exc:  # a failed pass never aborts the pipeline
            LOGGER.warning("Repair pass %s failed, skipping: %s", name, exc)
            return 0
        if changes:
            LOGGER.info("Repair pass %s made %s changes", name, changes)
        return changes

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def remove_noise(self, tree: BeautifulSoup) -> int:
        removed = 0
        for node in tree.find_all(NOISE_TAGS):
            if node.decomposed or _has_placeholder(node):
                continue
            text = node.get_text(" ", strip=True).lower()
            if any(pattern in text for pattern in NOISE_PATTERNS):
                LOGGER.debug("Removing boilerplate node: %s", text[:50])
                node.decompose()
                removed += 1
        return removed

    def _section_present(self, tree: BeautifulSoup, name: str) -> bool:
        css_class = _SECTION_CLASSES.get(name)
        if css_class and tree.select_one(f".{css_class}") is not None:
            return True
        markers = _SECTION_HEADINGS[name]
        return any(
            any(marker in heading.get_text().lower() for marker in markers)
            for heading in tree.find_all(["h2", "h3"])
        )

    def fill_missing_sections(self, tree: BeautifulSoup, title: str) -> int:
        """Generate absent sections concurrently from one snapshot, then splice them in order."""
        missing = [item for item in SECTION_PROMPTS if not self._section_present(tree, item[0])]
        if not missing:
            return 0

        snapshot = serialize(tree)
        LOGGER.info("Generating %s missing sections: %s", len(missing), ", ".join(m[0] for m in missing))
        with ThreadPoolExecutor(max_workers=max(1, self.policy.section_workers)) as executor:
            futures = {
                name: executor.submit(self.generate, prompt_key, [snapshot[:limit], title], "html")
                for name, prompt_key, limit in missing
            }
            results: dict[str, str] = {}
            for name, future in futures.items():
                try:
                    results[name] = sanitize_html(future.result())
                except Exception as exc:
                    LOGGER.warning("Section %s generation failed: %s", name, exc)

        added = 0
        for name, _, _ in SECTION_PROMPTS:
            html = results.get(name, "")
            if len(html) < MIN_SECTION_CHARS:
                continue
            nodes = parse_nodes(html)
            if not nodes:
                continue
            if name == "takeaways":
                anchor = first_heading(tree)
                if anchor is not None:
                    insert_before(anchor, nodes)
                else:
                    prepend_nodes(tree, nodes)
            elif name == "faq":
                anchor = next(
                    (h for h in tree.find_all("h2") if "conclusion" in h.get_text().lower()),
                    None,
                )
                if anchor is not None:
                    insert_before(anchor, nodes)
                else:
                    append_nodes(tree, nodes)
            else:
                append_nodes(tree, nodes)
            added += 1
        return added

    def rewrite_weak_intro(self, tree: BeautifulSoup, title: str) -> int:
        paragraphs = [
            p for p in tree.find_all("p") if not _has_placeholder(p) and not _in_generated_block(p)
        ][:3]
        if not paragraphs:
            return 0

        intro_text = " ".join(p.get_text(" ", strip=True) for p in paragraphs)
        lower = intro_text.lower()
        weak = (
            len(intro_text) < MIN_INTRO_CHARS
            or ("will" not in lower and "you" not in lower)
            or paragraphs[0].find("strong") is None
        )
        if not weak:
            return 0

        html = sanitize_html(
            self.generate("regenerate_intro", [intro_text, title, serialize(tree)[:3000]], "html")
        )
        nodes = parse_nodes(html)
        if len(html) < MIN_SECTION_CHARS or not nodes:
            return 0

        for paragraph in paragraphs:
            paragraph.decompose()
        anchor = first_heading(tree)
        if anchor is not None:
            insert_before(anchor, nodes)
        else:
            prepend_nodes(tree, nodes)
        return 1

    def inject_schema(
        self,
        tree: BeautifulSoup,
        fragments: dict[str, str],
        document: Document,
        site_url: str,
    ) -> int:
        if SCHEMA_MARKER in serialize(tree).lower():
            return 0
        if any(SCHEMA_MARKER in original.lower() for original in fragments.values()):
            return 0
        payload = json.dumps(build_article_schema(document, site_url), ensure_ascii=False)
        script = tree.new_tag("script", attrs={"type": SCHEMA_MARKER})
        script.string = payload.replace("</", "<\\/")
        tree.append(script)
        return 1

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def semantic_keywords(self, title: str) -> list[str]:
        try:
            data = parse_json_response(
                self.generate("semantic_keywords", [title], "json"), self._repair_json
            )
        except Exception as exc:
            LOGGER.warning("Semantic keyword lookup failed: %s", exc)
            return []
        raw = data.get("semanticKeywords") if isinstance(data, dict) else data
        if not isinstance(raw, list):
            return []
        keywords: list[str] = []
        for item in raw:
            value = item.get("keyword") if isinstance(item, dict) else item
            if isinstance(value, str) and value.strip():
                keywords.append(value.strip())
        return keywords

    def optimize_title(self, tree: BeautifulSoup, document: Document, report: RepairReport) -> int:
        year = self.policy.freshness_year
        lower = document.title.lower()
        if str(year) in lower and any(word in lower for word in POWER_WORDS):
            return 0

        excerpt = visible_text(tree)[:1000]
        data = parse_json_response(
            self.generate(
                "optimize_title_meta",
                [document.title, excerpt, report.keywords or [document.title], year],
                "json",
            ),
            self._repair_json,
        )
        if not isinstance(data, dict):
            return 0
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            return 0
        report.optimized_title = title.strip()
        description = data.get("metaDescription")
        if isinstance(description, str) and description.strip():
            report.optimized_description = description.strip()
        return 1

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def remove_weak_links(self, tree: BeautifulSoup, site_host: str | None) -> int:
        removed = 0
        for anchor in tree.find_all("a"):
            href = str(anchor.get("href") or "")
            if not is_internal_href(href, site_host):
                continue
            if _is_weak_anchor(anchor.get_text(" ", strip=True)):
                anchor.unwrap()
                removed += 1
        return removed

    def add_internal_links(
        self,
        tree: BeautifulSoup,
        targets: list[LinkTarget],
        site_host: str | None,
    ) -> int:
        """Ask for link suggestions and splice anchors only where the text appears verbatim and unlinked."""
        anchors = tree.find_all("a")
        internal = sum(1 for a in anchors if is_internal_href(str(a.get("href") or ""), site_host))
        if internal >= self.policy.min_internal_links or not targets:
            return 0

        catalog = targets[: self.policy.link_catalog_size]
        by_slug = {target.slug: target for target in catalog}
        catalog_text = "\n".join(f"- {target.title} (slug: {target.slug})" for target in catalog)
        data = parse_json_response(
            self.generate("generate_internal_links", [serialize(tree), catalog_text], "json"),
            self._repair_json,
        )
        suggestions = data.get("links") if isinstance(data, dict) else data
        if not isinstance(suggestions, list):
            return 0

        linked_urls = {str(a.get("href") or "") for a in anchors}
        linked_texts = {a.get_text(" ", strip=True).lower() for a in anchors}
        added = 0
        for suggestion in suggestions:
            if added >= self.policy.max_links_added:
                break
            if not isinstance(suggestion, dict):
                continue
            target = by_slug.get(str(suggestion.get("targetSlug") or ""))
            anchor_text = str(suggestion.get("anchorText") or "").strip()
            if target is None or not anchor_text:
                continue
            if len(_word_list(anchor_text)) < MIN_ADDED_ANCHOR_WORDS and len(anchor_text) < MIN_ADDED_ANCHOR_CHARS:
                continue
            if target.url in linked_urls or anchor_text.lower() in linked_texts:
                continue
            if self._link_first_occurrence(tree, anchor_text, target):
                linked_urls.add(target.url)
                linked_texts.add(anchor_text.lower())
                added += 1
        return added

    def _link_first_occurrence(self, tree: BeautifulSoup, anchor_text: str, target: LinkTarget) -> bool:
        pattern = re.compile(rf"(?<!\w){re.escape(anchor_text)}(?!\w)", re.IGNORECASE)
        for text_node in tree.find_all(string=True):
            parent = text_node.parent
            if parent is None or parent.name in ("script", "style", "h1", "h2", "h3", "h4"):
                continue
            if text_node.find_parent("a") is not None:
                continue
            source = str(text_node)
            match = pattern.search(source)
            if match is None:
                continue
            link = tree.new_tag(
                "a",
                attrs={"href": target.url, "class": "internal-link", "title": target.title},
            )
            link.string = match.group(0)
            text_node.replace_with(
                NavigableString(source[: match.start()]),
                link,
                NavigableString(source[match.end():]),
            )
            return True
        return False

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def normalize_years(self, tree: BeautifulSoup) -> int:
        """Replace superseded year tokens in visible text nodes with the freshness year."""
        freshness = str(self.policy.freshness_year)
        pattern = re.compile(
            r"\b(?:" + "|".join(str(year) for year in self.policy.superseded_years) + r")\b"
        )
        replaced = 0
        for text_node in tree.find_all(string=True):
            parent = text_node.parent
            if parent is None or parent.name in ("script", "style", "noscript"):
                continue
            updated, count = pattern.subn(freshness, str(text_node))
            if count:
                text_node.replace_with(NavigableString(updated))
                replaced += count
        return replaced

    def _fluff_candidates(self, tree: BeautifulSoup) -> list[Tag]:
        candidates: list[Tag] = []
        chosen: set[int] = set()
        for node in tree.find_all(["p", "li"]):
            if any(id(parent) in chosen for parent in node.parents):
                continue
            if _in_generated_block(node) or _has_placeholder(node):
                continue
            if node.find(["a", *_MEDIA_TAGS]) is not None:
                continue
            text = node.get_text(" ", strip=True).lower()
            words = len(text.split())
            has_indicator = any(indicator in text for indicator in FLUFF_INDICATORS)
            vague = (
                words > 15
                and not re.search(r"\d", text)
                and not any(term in text for term in ("research", "study", "expert"))
            )
            generic = words > 20 and text.count(",") < 1
            if has_indicator or (vague and generic):
                candidates.append(node)
                chosen.add(id(node))
        return candidates[:FLUFF_NODE_LIMIT]

    def replace_filler(self, tree: BeautifulSoup, title: str, keywords: list[str]) -> int:
        nodes = self._fluff_candidates(tree)
        changed = 0
        for start in range(0, len(nodes), FLUFF_BATCH_SIZE):
            if start:
                self.sleep(self.policy.batch_delay_seconds)
            batch = nodes[start : start + FLUFF_BATCH_SIZE]
            batch_html = "\n\n".join(str(node) for node in batch)
            try:
                html = sanitize_html(self.generate("fluff_replacer", [batch_html, title, keywords], "html"))
            except Exception as exc:
                LOGGER.warning("Filler batch %s failed: %s", start // FLUFF_BATCH_SIZE + 1, exc)
                continue
            if len(html) <= MIN_SECTION_CHARS:
                continue

            replacements = [node for node in parse_nodes(html) if isinstance(node, Tag)]
            for index, node in enumerate(batch):
                replacement = replacements[index] if index < len(replacements) else None
                if replacement is not None and len(replacement.get_text(strip=True)) > MIN_FLUFF_REPLACEMENT_CHARS:
                    node.clear()
                    for child in list(replacement.contents):
                        node.append(child.extract())
                else:
                    node.decompose()
                changed += 1
        return changed

    def _polish_candidates(self, tree: BeautifulSoup) -> list[Tag]:
        candidates: list[Tag] = []
        for node in tree.find_all(POLISH_TAGS):
            if node.find_parent(POLISH_TAGS) is not None:
                continue
            if _in_generated_block(node) or _has_placeholder(node):
                continue
            if node.find(_MEDIA_TAGS) is not None:
                continue
            if len(node.get_text(strip=True)) < 5:
                continue
            candidates.append(node)
        return candidates[:POLISH_NODE_LIMIT]

    def polish_text(self, tree: BeautifulSoup, title: str, keywords: list[str]) -> int:
        """Rewrite content blocks in batches, keeping tags; a reply with no text drops the batch."""
        nodes = self._polish_candidates(tree)
        polished = 0
        for start in range(0, len(nodes), POLISH_BATCH_SIZE):
            if start:
                self.sleep(self.policy.batch_delay_seconds)
            batch = nodes[start : start + POLISH_BATCH_SIZE]
            batch_html = "".join(str(node) for node in batch)
            try:
                html = sanitize_html(self.generate("structural_polish", [batch_html, keywords, title], "html"))
            except Exception as exc:
                LOGGER.warning("Polish batch %s failed: %s", start // POLISH_BATCH_SIZE + 1, exc)
                continue
            if not html:
                continue

            refined = parse_nodes(html)
            if not parse(html).get_text(strip=True):
                for node in batch:
                    node.decompose()
                LOGGER.info("Dropped boilerplate batch of %s nodes", len(batch))
                polished += len(batch)
                continue
            if not any(isinstance(node, Tag) for node in refined):
                continue
            insert_before(batch[0], refined)
            for node in batch:
                node.decompose()
            polished += len(batch)
        return polished

    # ------------------------------------------------------------------
    # References and media
    # ------------------------------------------------------------------

    def _external_link_count(self, tree: BeautifulSoup, fragments: dict[str, str], site_host: str | None) -> int:
        hrefs = [str(a.get("href") or "") for a in tree.find_all("a")]
        for original in fragments.values():
            hrefs.extend(str(a.get("href") or "") for a in parse(original).find_all("a"))
        return sum(1 for href in hrefs if is_external_href(href, site_host))

    def add_references(
        self,
        tree: BeautifulSoup,
        fragments: dict[str, str],
        title: str,
        site_host: str | None,
    ) -> int:
        has_block = tree.select_one(REFERENCES_SELECTOR) is not None or any(
            fragment_kind(token) == "REFERENCES" for token in fragments
        )
        external = self._external_link_count(tree, fragments, site_host)
        if has_block and external >= self.policy.min_external_references:
            return 0
        if self.search_references is None or self.check_url is None:
            LOGGER.info("Reference lookup not configured, skipping references block")
            return 0

        candidates = self.search_references(f"{title} research study data statistics")
        validated: list[ReferenceLink] = []
        for candidate in candidates:
            if len(validated) >= MAX_REFERENCES:
                break
            if site_host and host_of(candidate.url) == site_host:
                continue
            if self.check_url(candidate.url):
                validated.append(candidate)
        if not validated:
            LOGGER.warning("No reachable reference links among %s candidates", len(candidates))
            return 0

        tree.append(self._references_block(tree, validated))
        return len(validated)

    def _references_block(self, tree: BeautifulSoup, links: list[ReferenceLink]) -> Tag:
        block = tree.new_tag("div", attrs={"class": "sota-references-section"})
        heading = tree.new_tag("h2")
        heading.string = "References & Further Reading"
        block.append(heading)
        items = tree.new_tag("ul")
        for link in links:
            item = tree.new_tag("li")
            anchor = tree.new_tag(
                "a",
                attrs={"href": link.url, "target": "_blank", "rel": "noopener noreferrer"},
            )
            anchor.string = link.title
            source = tree.new_tag("span")
            source.string = f"({link.source})"
            item.append(anchor)
            item.append(" ")
            item.append(source)
            items.append(item)
        block.append(items)
        return block

    def update_alt_texts(self, tree: BeautifulSoup, fragments: dict[str, str], title: str) -> int:
        """Generate alt text for protected images with missing or generic alt attributes."""
        parsed: dict[str, BeautifulSoup] = {}
        images: list[tuple[str, Tag]] = []
        for token, original in fragments.items():
            if fragment_kind(token) != "IMAGE":
                continue
            fragment_tree = parse(original)
            for image in fragment_tree.find_all("img"):
                alt = str(image.get("alt") or "").strip()
                if len(alt) < MIN_ALT_CHARS or alt.lower() in _GENERIC_ALTS:
                    parsed[token] = fragment_tree
                    images.append((token, image))
        images = images[:ALT_IMAGE_LIMIT]
        if not images:
            return 0

        payload = [
            {
                "src": str(image.get("src") or ""),
                "currentAlt": str(image.get("alt") or "") or "MISSING",
                "context": self._token_context(tree, token),
            }
            for token, image in images
        ]
        data = parse_json_response(
            self.generate("optimize_image_alt_text", [payload, title], "json"), self._repair_json
        )
        entries = data.get("altTexts") if isinstance(data, dict) else data
        if not isinstance(entries, list):
            return 0

        updated = 0
        changed_tokens: set[str] = set()
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                index = int(entry.get("imageIndex"))
            except (TypeError, ValueError):
                continue
            alt_text = entry.get("altText")
            if not 0 <= index < len(images) or not isinstance(alt_text, str) or len(alt_text.strip()) <= 5:
                continue
            token, image = images[index]
            image["alt"] = alt_text.strip()
            changed_tokens.add(token)
            updated += 1

        for token in changed_tokens:
            fragments[token] = serialize(parsed[token])
        return updated

    def _token_context(self, tree: BeautifulSoup, token: str) -> str:
        text_node = tree.find(string=lambda value: value is not None and token in value)
        if text_node is None or text_node.parent is None:
            return "No surrounding context"
        context = text_node.parent.get_text(" ", strip=True).replace(token, "").strip()
        return context[:150] or "No surrounding context"
