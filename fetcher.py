"""HTTP fetch helpers: live pages, best-effort content extraction, link checks."""

from __future__ import annotations

import logging
import os
import time
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup

from markup import PARSER

REQUEST_TIMEOUT_SECONDS = 45
CHECK_TIMEOUT_SECONDS = 8
CHECK_ATTEMPTS = 2
USER_AGENT = "Mozilla/5.0 (compatible; ContentMaintenanceBot/1.0)"

LOGGER = logging.getLogger(__name__)

_HEADERS = {"User-Agent": USER_AGENT}
_CONTENT_SELECTORS = (".entry-content", ".post-content", "article", "main", '[role="main"]')
_CHROME_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form")


def fetch_document(url: str) -> str:
    """Fetch a live page, retrying through FETCH_PROXY_URL on network errors or 5xx."""
    response = _get_with_proxy_fallback(url)
    response.raise_for_status()
    return response.text


def crawl(url: str) -> str:
    """Fetch a page and return the inner HTML of its main content container."""
    soup = BeautifulSoup(fetch_document(url), PARSER)
    container = None
    for selector in _CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    if container is None:
        container = soup.body or soup

    for tag in container.find_all(_CHROME_TAGS):
        if tag.decomposed:
            continue
        if tag.name == "script" and tag.get("type") == "application/ld+json":
            continue
        tag.decompose()

    LOGGER.info("Crawled %s (%s chars of content)", url, len(container.decode_contents()))
    return container.decode_contents().strip()


def check_url(url: str) -> bool:
    """True only when a HEAD request answers exactly 200; network errors are retried once."""
    for attempt in range(1, CHECK_ATTEMPTS + 1):
        try:
            response = requests.head(
                url,
                headers=_HEADERS,
                timeout=CHECK_TIMEOUT_SECONDS,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            LOGGER.debug("Link check attempt %s/%s failed for %s: %s", attempt, CHECK_ATTEMPTS, url, exc)
            if attempt < CHECK_ATTEMPTS:
                time.sleep(1.0)
            continue
        if response.status_code != 200:
            LOGGER.debug("Link check rejected %s with status %s", url, response.status_code)
        return response.status_code == 200
    return False


def _get_with_proxy_fallback(url: str) -> requests.Response:
    proxy_template = os.getenv("FETCH_PROXY_URL", "")
    try:
        response = requests.get(url, headers=_HEADERS, timeout=REQUEST_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        if not proxy_template:
            raise
        LOGGER.warning("Direct fetch failed for %s, retrying via proxy: %s", url, exc)
        return _get_via_proxy(proxy_template, url)

    if response.status_code >= 500 and proxy_template:
        LOGGER.warning("Direct fetch returned %s for %s, retrying via proxy", response.status_code, url)
        return _get_via_proxy(proxy_template, url)
    return response


def _get_via_proxy(proxy_template: str, url: str) -> requests.Response:
    proxy_url = proxy_template.format(url=quote(url, safe=""))
    return requests.get(proxy_url, headers=_HEADERS, timeout=REQUEST_TIMEOUT_SECONDS)
