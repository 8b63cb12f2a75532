"""Generate a brand-new article and run it through the quality gate."""

from __future__ import annotations

import logging
import re

from config import Policy
from generation import GenerateFn, sanitize_html
from models import PublishRequest
from quality_loop import refine

LOGGER = logging.getLogger(__name__)

MIN_ARTICLE_CHARS = 500


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:80].rstrip("-")


def write_article(
    title: str,
    generate: GenerateFn,
    policy: Policy | None = None,
    keywords: list[str] | None = None,
    status: str = "draft",
) -> PublishRequest:
    """Draft an article for ``title`` and return a create request for it.

    Raises RuntimeError when the generated body is too short to publish.
    """
    policy = policy or Policy()
    LOGGER.info("Generating new article: %s", title)
    body = sanitize_html(
        generate("article_writer", [title, keywords or [title], policy.freshness_year], "html")
    )
    if len(body) < MIN_ARTICLE_CHARS:
        raise RuntimeError(f"Generated article for {title!r} is too short ({len(body)} chars)")

    result = refine(
        body,
        generate,
        max_iterations=policy.quality_max_iterations,
        threshold=policy.quality_threshold,
    )
    LOGGER.info(
        "Quality gate for %r: score=%s iterations=%s",
        title,
        result.score,
        result.iterations,
    )

    slug = slugify(title)
    return PublishRequest(
        document_id=slug,
        title=title,
        slug=slug,
        content=result.content,
        is_refresh=False,
        status=status,
    )
