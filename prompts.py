"""Prompt templates for the generation capability, keyed by prompt name."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_JSON_ONLY = "Respond ONLY with valid JSON. No prose, no markdown, no code fences."
_HTML_ONLY = (
    "Respond ONLY with clean HTML fragments (no <html>, <head> or <body> tags, "
    "no markdown, no code fences, no <h1>)."
)


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    system: str
    user: Callable[..., str]


def _as_list(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value or "")


PROMPTS: dict[str, PromptTemplate] = {
    "json_repair": PromptTemplate(
        system=(
            "You repair malformed JSON. Fix quotes, commas and brackets, keep all data. "
            + _JSON_ONLY
        ),
        user=lambda broken: f"Fix this JSON:\n\n{str(broken)[:8000]}",
    ),
    "semantic_keywords": PromptTemplate(
        system="You are a semantic SEO specialist. " + _JSON_ONLY,
        user=lambda title: (
            f'Generate 15-30 semantic keywords for an article titled "{title}".\n'
            'Schema: {"semanticKeywords": ["keyword", ...]}'
        ),
    ),
    "generate_key_takeaways": PromptTemplate(
        system="You write concise, specific article summaries. " + _HTML_ONLY,
        user=lambda content, title: (
            f'Article title: "{title}"\n\nArticle HTML:\n{content}\n\n'
            'Write a Key Takeaways box: <div class="key-takeaways-box"><h3>Key Takeaways</h3>'
            "<ul> with 4-6 <li> items containing concrete facts or numbers</ul></div>"
        ),
    ),
    "generate_faq_section": PromptTemplate(
        system="You write FAQ sections that answer real reader questions. " + _HTML_ONLY,
        user=lambda content, title: (
            f'Article title: "{title}"\n\nArticle HTML:\n{content}\n\n'
            'Write <div class="faq-section"><h2>Frequently Asked Questions</h2> followed by '
            "5-7 <h3> questions, each answered in a <p> of 40-60 words.</div>"
        ),
    ),
    "generate_conclusion": PromptTemplate(
        system="You write short, action-oriented conclusions. " + _HTML_ONLY,
        user=lambda content, title: (
            f'Article title: "{title}"\n\nArticle HTML:\n{content}\n\n'
            "Write <h2>Conclusion</h2> followed by 2-3 <p> paragraphs ending in a clear next step."
        ),
    ),
    "regenerate_intro": PromptTemplate(
        system="You write hooks that speak directly to the reader. " + _HTML_ONLY,
        user=lambda intro, title, content: (
            f'Article title: "{title}"\n\nCurrent intro:\n{intro}\n\n'
            f"Article context:\n{str(content)[:3000]}\n\n"
            "Rewrite the intro as 2-3 <p> paragraphs addressed to the reader (you), "
            "state what they will learn and bold the single most important claim with <strong>."
        ),
    ),
    "optimize_title_meta": PromptTemplate(
        system="You optimize article titles and meta descriptions for search. " + _JSON_ONLY,
        user=lambda title, excerpt, keywords, year: (
            f'Current title: "{title}"\nExcerpt: {excerpt}\nKeywords: {_as_list(keywords)}\n'
            f"Include the year {year} and one power word (ultimate, complete, guide, best, top, proven).\n"
            'Schema: {"title": "<= 60 chars", "metaDescription": "<= 155 chars"}'
        ),
    ),
    "generate_internal_links": PromptTemplate(
        system=(
            "You are an internal linking strategist. Anchors are 3-7 descriptive words copied "
            "verbatim from the content; never use generic anchors like 'click here'. " + _JSON_ONLY
        ),
        user=lambda content, pages: (
            f"Content:\n{str(content)[:5000]}\n\nAvailable pages:\n{pages}\n\n"
            'Schema: {"links": [{"anchorText": "...", "targetSlug": "..."}]} with 8-15 entries.'
        ),
    ),
    "fluff_replacer": PromptTemplate(
        system=(
            "You replace vague filler with specific, data-backed statements. Return one element "
            "per input element, in order, using the same tag names. " + _HTML_ONLY
        ),
        user=lambda batch, title, keywords: (
            f'Article title: "{title}"\nKeywords: {_as_list(keywords)}\n\nElements:\n{batch}'
        ),
    ),
    "structural_polish": PromptTemplate(
        system=(
            "You tighten prose while preserving every tag, link and token of the form "
            "__PROTECTED_..._N__ exactly. Return an empty response if the input is site "
            "boilerplate rather than article content. " + _HTML_ONLY
        ),
        user=lambda batch, keywords, title: (
            f'Article title: "{title}"\nKeywords: {_as_list(keywords)}\n\nHTML:\n{batch}'
        ),
    ),
    "optimize_image_alt_text": PromptTemplate(
        system="You write descriptive, keyword-aware image alt text under 125 characters. " + _JSON_ONLY,
        user=lambda images, title: (
            f'Article title: "{title}"\nImages:\n{json.dumps(images, indent=2)}\n\n'
            'Schema: {"altTexts": [{"imageIndex": 0, "altText": "..."}]}'
        ),
    ),
    "content_grader": PromptTemplate(
        system="You grade long-form articles for depth, structure, accuracy signals and readability. " + _JSON_ONLY,
        user=lambda content: (
            f"Article HTML:\n{content}\n\n"
            'Schema: {"score": <int 0-100>, "issues": ["specific issue", ...]}'
        ),
    ),
    "content_repair": PromptTemplate(
        system="You fix the listed issues in an article without shortening it. " + _HTML_ONLY,
        user=lambda content, issues: (
            f"Issues to fix:\n{_as_list(issues)}\n\nArticle HTML:\n{content}"
        ),
    ),
    "article_writer": PromptTemplate(
        system=(
            "You write comprehensive, well-structured articles with an intro, Key Takeaways, "
            "H2/H3 sections, an FAQ and a conclusion. " + _HTML_ONLY
        ),
        user=lambda title, keywords, year: (
            f'Write a 1500-2500 word article titled "{title}" current as of {year}.\n'
            f"Keywords: {_as_list(keywords)}"
        ),
    ),
}
