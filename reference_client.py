"""Perplexity-backed lookup of authoritative reference links for an article topic."""

from __future__ import annotations

import logging
import os
from typing import Any

import requests

from markup import host_of
from models import ReferenceLink

PERPLEXITY_API_URL = "https://api.perplexity.ai/chat/completions"
PERPLEXITY_MODEL = os.getenv("PERPLEXITY_MODEL", "sonar-pro")
REQUEST_TIMEOUT_SECONDS = 60
MAX_ATTEMPTS = 2

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a research librarian.
Find authoritative, currently reachable sources (studies, official statistics,
government and university pages, established publications) for the topic given.
Avoid social networks, video platforms, forums and content farms.
List each source on its own line as: title - URL."""

EXCLUDED_HOSTS: frozenset[str] = frozenset({
    "youtube.com",
    "facebook.com",
    "pinterest.com",
    "twitter.com",
    "x.com",
    "reddit.com",
    "instagram.com",
    "tiktok.com",
})


def is_configured() -> bool:
    return bool(os.getenv("PERPLEXITY_API_KEY"))


def search_references(query: str, limit: int = 20) -> list[ReferenceLink]:
    """Return up to ``limit`` candidate reference links for ``query``."""
    api_key = os.getenv("PERPLEXITY_API_KEY")
    if not api_key:
        raise RuntimeError("PERPLEXITY_API_KEY environment variable is required")

    LOGGER.info("Searching references with Perplexity: %s", query[:80])
    last_error: Exception | None = None

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            body = _call_perplexity(api_key=api_key, query=query)
            links = parse_reference_links(body)[:limit]
            LOGGER.info("Perplexity returned %s candidate references", len(links))
            return links
        except Exception as exc:  # broad to preserve graceful retry path
            last_error = exc
            LOGGER.warning(
                "Perplexity reference search failed on attempt %s/%s: %s",
                attempt,
                MAX_ATTEMPTS,
                exc,
            )

    raise RuntimeError(f"Perplexity reference search failed: {last_error}")


def _call_perplexity(api_key: str, query: str) -> dict[str, Any]:
    payload = {
        "model": PERPLEXITY_MODEL,
        "temperature": 0.1,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Topic: {query}"},
        ],
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    response = requests.post(
        PERPLEXITY_API_URL,
        headers=headers,
        json=payload,
        timeout=REQUEST_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    body = response.json()
    if not isinstance(body, dict):
        raise RuntimeError(f"Unexpected Perplexity response shape: {body}")
    return body


def parse_reference_links(body: dict[str, Any]) -> list[ReferenceLink]:
    """Collect links from ``search_results`` (titled) then ``citations`` (bare URLs)."""
    seen: set[str] = set()
    links: list[ReferenceLink] = []

    def _add(url: Any, title: Any) -> None:
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            return
        if url in seen:
            return
        source = host_of(url)
        if not source or source in EXCLUDED_HOSTS:
            return
        seen.add(url)
        label = title.strip() if isinstance(title, str) and title.strip() else source
        links.append(ReferenceLink(title=label, url=url, source=source))

    for item in body.get("search_results") or []:
        if isinstance(item, dict):
            _add(item.get("url"), item.get("title"))
    for url in body.get("citations") or []:
        _add(url, None)

    return links
