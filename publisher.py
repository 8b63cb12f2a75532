"""Resolve the backend record behind a document and publish repaired content to it."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import requests
from bs4 import Tag

from cms_client import CmsClient
from errors import CmsError, ResolutionError
from markup import parse, serialize, slug_from_url
from models import PublishOutcome, PublishRequest

LOGGER = logging.getLogger(__name__)

DISCOVERY_RELATIONS = ("https://api.w.org/", "alternate")
_RECORD_ID_SUFFIX = re.compile(r"/(\d+)/?$")
_DATA_IMAGE = re.compile(r"^data:image/([a-z0-9.+-]+);base64,(.+)$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True, slots=True)
class ResolvedTarget:
    record_id: int
    endpoint: str
    strategy: str


def discover_record_endpoint(markup: str) -> str | None:
    """Find an API self-link ending in a numeric record id in a page's <head> links."""
    tree = parse(markup)
    for link in tree.find_all("link"):
        rel_value = link.get("rel")
        rel = " ".join(rel_value) if isinstance(rel_value, list) else str(rel_value or "")
        href = str(link.get("href") or "")
        if rel not in DISCOVERY_RELATIONS or not href:
            continue
        if rel == "alternate" and link.get("type") != "application/json":
            continue
        if _RECORD_ID_SUFFIX.search(href):
            return href
    return None


class PublishTargetResolver:
    def __init__(self, cms: CmsClient, fetch_document: Callable[[str], str]) -> None:
        self.cms = cms
        self.fetch_document = fetch_document

    def resolve(self, document_url: str, slug: str) -> ResolvedTarget:
        """Try live-page discovery, then the given slug, then the URL's slug.

        Raises ResolutionError naming every strategy once all of them miss.
        """
        target = self._by_discovery(document_url)
        if target is not None:
            return target

        target = self._by_slug(slug, strategy="slug_search")
        if target is not None:
            return target

        url_slug = slug_from_url(document_url)
        if url_slug and url_slug != slug:
            target = self._by_slug(url_slug, strategy="url_slug")
            if target is not None:
                return target

        raise ResolutionError(
            "Could not find original post. Tried: HTML discovery, "
            f"slug search ({slug}), URL slug extraction ({url_slug})"
        )

    def _by_discovery(self, document_url: str) -> ResolvedTarget | None:
        try:
            endpoint = discover_record_endpoint(self.fetch_document(document_url))
        except requests.RequestException as exc:
            LOGGER.warning("Discovery fetch failed for %s: %s", document_url, exc)
            return None
        match = _RECORD_ID_SUFFIX.search(endpoint) if endpoint else None
        if endpoint is None or match is None:
            LOGGER.info("No API discovery link on %s", document_url)
            return None
        LOGGER.info("Resolved %s via HTML discovery: %s", document_url, endpoint)
        return ResolvedTarget(record_id=int(match.group(1)), endpoint=endpoint, strategy="discovery")

    def _by_slug(self, slug: str, strategy: str) -> ResolvedTarget | None:
        if not slug:
            return None
        try:
            record_id = self.cms.find_by_slug(slug)
        except CmsError as exc:
            LOGGER.warning("Slug lookup failed for %s: %s", slug, exc.message)
            return None
        if record_id is None:
            return None
        LOGGER.info("Resolved slug %s to record %s (%s)", slug, record_id, strategy)
        return ResolvedTarget(record_id=record_id, endpoint=self.cms.record_url(record_id), strategy=strategy)


class Publisher:
    def __init__(self, cms: CmsClient, resolver: PublishTargetResolver) -> None:
        self.cms = cms
        self.resolver = resolver

    def publish(self, request: PublishRequest) -> PublishOutcome:
        """Replace the existing record (refresh) or create one, never raising."""
        try:
            content = self.upload_inline_images(request.content)
            payload = _build_payload(request, content)

            if request.is_refresh:
                target = self.resolver.resolve(request.document_id, request.slug)
                record = self.cms.update_record(target.record_id, payload, endpoint=target.endpoint)
                verb = "Updated"
            else:
                existing_id = self.cms.find_by_slug(request.slug) if request.slug else None
                if existing_id is not None:
                    LOGGER.info("Slug %s already exists as record %s, updating instead", request.slug, existing_id)
                    record = self.cms.update_record(existing_id, payload)
                    verb = "Updated"
                else:
                    record = self.cms.create_record(payload)
                    verb = "Created"
        except (ResolutionError, CmsError) as exc:
            LOGGER.warning("Publish failed for %s: %s", request.document_id, exc)
            return PublishOutcome(success=False, message=str(exc))
        except Exception as exc:  # broad so a publish attempt always yields an outcome
            LOGGER.exception("Unexpected publish failure for %s", request.document_id)
            return PublishOutcome(success=False, message=f"Unexpected publish failure: {exc}")

        link = record.get("link")
        return PublishOutcome(
            success=True,
            message=f"{verb} record {record.get('id')}",
            link=str(link) if link else None,
        )

    def upload_inline_images(self, content: str) -> str:
        """Upload base64 ``data:image`` sources to the media library and point the images at them."""
        if "data:image/" not in content:
            return content

        tree = parse(content)
        uploaded = 0
        for index, image in enumerate(tree.find_all("img")):
            if not isinstance(image, Tag):
                continue
            match = _DATA_IMAGE.match(str(image.get("src") or ""))
            if match is None:
                continue
            subtype = match.group(1).lower()
            try:
                data = base64.b64decode(match.group(2), validate=False)
            except (binascii.Error, ValueError) as exc:
                LOGGER.warning("Skipping undecodable inline image %s: %s", index, exc)
                continue
            extension = "jpg" if subtype == "jpeg" else subtype.split("+")[0]
            media = self.cms.upload_media(data, f"inline-image-{index}.{extension}", f"image/{subtype}")
            source_url = media.get("source_url")
            if source_url:
                image["src"] = str(source_url)
                uploaded += 1

        if uploaded == 0:
            return content
        LOGGER.info("Uploaded %s inline images to the media library", uploaded)
        return serialize(tree)


def _build_payload(request: PublishRequest, content: str) -> dict[str, Any]:
    payload: dict[str, Any] = {"content": content, "status": request.status}
    if request.title:
        payload["title"] = request.title
    if request.slug:
        payload["slug"] = request.slug
    if request.meta_description:
        payload["excerpt"] = request.meta_description
    return payload
