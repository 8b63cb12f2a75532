"""WordPress REST API client for the maintained site."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import requests

from config import CmsSettings
from errors import CmsError

API_PREFIX = "/wp-json/wp/v2"
REQUEST_TIMEOUT_SECONDS = 30
MAX_RETRIES = 3

LOGGER = logging.getLogger(__name__)


class CmsClient:
    """Thin wrapper over the posts and media collections, authenticated with an application password."""

    def __init__(self, base_url: str, username: str, password: str) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}{API_PREFIX}"
        self._auth = (username, password)

    @classmethod
    def from_settings(cls, settings: CmsSettings) -> CmsClient:
        return cls(settings.url, settings.username, settings.password)

    @property
    def posts_url(self) -> str:
        return f"{self.api_url}/posts"

    def record_url(self, record_id: int | str) -> str:
        return f"{self.posts_url}/{record_id}"

    def find_by_slug(self, slug: str) -> int | None:
        """Return the id of the record with ``slug`` in any status, or None."""
        response = self._request_with_backoff(
            method="GET",
            url=self.posts_url,
            params={"slug": slug, "_fields": "id", "status": "any"},
        )
        results = response.json()
        if isinstance(results, list) and results and isinstance(results[0], dict):
            record_id = results[0].get("id")
            return int(record_id) if record_id is not None else None
        return None

    def get_record(self, record_id: int | str) -> dict[str, Any]:
        response = self._request_with_backoff(
            method="GET",
            url=self.record_url(record_id),
            params={"context": "edit"},
        )
        return _as_record(response.json())

    def create_record(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request_with_backoff(method="POST", url=self.posts_url, json_payload=payload)
        return _as_record(response.json())

    def update_record(
        self,
        record_id: int | str,
        payload: dict[str, Any],
        endpoint: str | None = None,
    ) -> dict[str, Any]:
        """Replace the record in full; ``endpoint`` overrides the derived record URL."""
        response = self._request_with_backoff(
            method="PUT",
            url=endpoint or self.record_url(record_id),
            json_payload=payload,
        )
        return _as_record(response.json())

    def upload_media(self, data: bytes, filename: str, mime_type: str) -> dict[str, Any]:
        response = self._request_with_backoff(
            method="POST",
            url=f"{self.api_url}/media",
            data=data,
            headers={
                "Content-Type": mime_type,
                "Content-Disposition": f'attachment; filename="{filename}"',
            },
        )
        return _as_record(response.json())

    def fetch_raw_content(self, slug: str) -> tuple[str, str] | None:
        """Return ``(title, raw_markup)`` for the record with ``slug``, or None when absent.

        The edit context exposes the stored markup before filters run; the
        rendered field is used when the raw one is missing.
        """
        response = self._request_with_backoff(
            method="GET",
            url=self.posts_url,
            params={"slug": slug, "context": "edit", "status": "any"},
        )
        results = response.json()
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return None

        record = results[0]
        return _field_text(record.get("title")), _field_text(record.get("content"))

    def _request_with_backoff(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_payload: dict[str, Any] | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """Send a request with exponential backoff for rate limits and network errors."""
        delay_seconds = 1.0
        last_error: Exception | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = requests.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_payload,
                    data=data,
                    headers=headers,
                    auth=self._auth,
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
                if response.status_code == 429 and attempt < MAX_RETRIES:
                    LOGGER.warning("CMS rate limited %s %s, retrying in %.0fs", method, url, delay_seconds)
                    time.sleep(delay_seconds)
                    delay_seconds *= 2
                    continue
                response.raise_for_status()
                return response
            except requests.HTTPError as exc:
                last_error = exc
                # Client errors other than rate limiting will not change on retry.
                status = exc.response.status_code if exc.response is not None else None
                if status is not None and 400 <= status < 500 and status != 429:
                    break
                if attempt >= MAX_RETRIES:
                    break
                time.sleep(delay_seconds)
                delay_seconds *= 2
            except requests.RequestException as exc:
                last_error = exc
                if attempt >= MAX_RETRIES:
                    break
                time.sleep(delay_seconds)
                delay_seconds *= 2

        raise _to_cms_error(method, url, last_error)


def _to_cms_error(method: str, url: str, error: Exception | None) -> CmsError:
    if isinstance(error, requests.HTTPError) and error.response is not None:
        status = error.response.status_code
        try:
            body = error.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            return CmsError(body["message"], status_code=status)
        detail = json.dumps(body) if body is not None else error.response.text
        return CmsError(f"CMS request {method} {url} failed with HTTP {status}: {detail}", status_code=status)
    return CmsError(f"CMS request {method} {url} failed after retries: {error}")


def _field_text(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("raw") or value.get("rendered") or "")
    return value if isinstance(value, str) else ""


def _as_record(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise CmsError(f"Unexpected CMS response shape: {body}")
    return body
