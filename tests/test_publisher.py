from unittest.mock import MagicMock

import pytest
import requests

from cms_client import CmsClient
from errors import CmsError, ResolutionError
from models import PublishRequest
from publisher import Publisher, PublishTargetResolver, discover_record_endpoint

_DOCUMENT_URL = "https://example.com/tomato-guide/"
_API_LINK = '<link rel="https://api.w.org/" href="https://example.com/wp-json/wp/v2/posts/42" />'


def _cms(slugs: dict[str, int] | None = None) -> MagicMock:
    """Return a CmsClient double that knows the given slug -> id mapping."""
    cms = MagicMock(spec=CmsClient)
    known = slugs or {}
    cms.find_by_slug.side_effect = lambda slug: known.get(slug)
    cms.record_url.side_effect = lambda record_id: f"https://example.com/wp-json/wp/v2/posts/{record_id}"
    return cms


def _page(head: str = "") -> MagicMock:
    return MagicMock(return_value=f"<html><head>{head}</head><body><p>Body</p></body></html>")


def _refresh_request(**overrides: object) -> PublishRequest:
    fields: dict[str, object] = {
        "document_id": _DOCUMENT_URL,
        "title": "The Complete Tomato Guide 2026",
        "slug": "tomato-guide",
        "content": "<p>Repaired body</p>",
        "meta_description": "Grow better tomatoes.",
    }
    fields.update(overrides)
    return PublishRequest(**fields)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def test_discover_record_endpoint_reads_api_link() -> None:
    assert discover_record_endpoint(f"<head>{_API_LINK}</head>") == "https://example.com/wp-json/wp/v2/posts/42"


def test_discover_record_endpoint_accepts_json_alternate_only() -> None:
    feed = '<link rel="alternate" type="application/rss+xml" href="https://example.com/feed/12" />'
    alternate = '<link rel="alternate" type="application/json" href="https://example.com/wp-json/wp/v2/posts/12" />'

    assert discover_record_endpoint(f"<head>{feed}</head>") is None
    assert discover_record_endpoint(f"<head>{feed}{alternate}</head>") == "https://example.com/wp-json/wp/v2/posts/12"


def test_discover_record_endpoint_requires_numeric_id() -> None:
    assert discover_record_endpoint('<link rel="https://api.w.org/" href="https://example.com/wp-json/" />') is None


# ---------------------------------------------------------------------------
# Resolution strategies
# ---------------------------------------------------------------------------


def test_discovery_wins_without_slug_lookup() -> None:
    cms = _cms({"tomato-guide": 7})
    resolver = PublishTargetResolver(cms, _page(_API_LINK))

    target = resolver.resolve(_DOCUMENT_URL, "tomato-guide")

    assert target.record_id == 42
    assert target.strategy == "discovery"
    cms.find_by_slug.assert_not_called()


def test_slug_search_used_when_discovery_misses() -> None:
    cms = _cms({"tomato-guide": 7})
    resolver = PublishTargetResolver(cms, _page())

    target = resolver.resolve(_DOCUMENT_URL, "tomato-guide")

    assert target.record_id == 7
    assert target.strategy == "slug_search"
    assert target.endpoint == "https://example.com/wp-json/wp/v2/posts/7"


def test_url_slug_is_last_resort() -> None:
    cms = _cms({"tomato-guide": 9})
    resolver = PublishTargetResolver(cms, _page())

    target = resolver.resolve(_DOCUMENT_URL, "old-tomato-slug")

    assert target.record_id == 9
    assert target.strategy == "url_slug"
    assert [call.args[0] for call in cms.find_by_slug.call_args_list] == ["old-tomato-slug", "tomato-guide"]


def test_failed_strategies_fall_through_to_error_naming_all_three() -> None:
    cms = _cms()
    cms.find_by_slug.side_effect = [CmsError("Bad gateway", status_code=502), None]
    fetch = MagicMock(side_effect=requests.ConnectionError("timed out"))
    resolver = PublishTargetResolver(cms, fetch)

    with pytest.raises(ResolutionError) as excinfo:
        resolver.resolve(_DOCUMENT_URL, "old-tomato-slug")

    assert str(excinfo.value) == (
        "Could not find original post. Tried: HTML discovery, "
        "slug search (old-tomato-slug), URL slug extraction (tomato-guide)"
    )


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


def test_refresh_replaces_resolved_record() -> None:
    cms = _cms()
    cms.update_record.return_value = {"id": 42, "link": _DOCUMENT_URL}
    publisher = Publisher(cms, PublishTargetResolver(cms, _page(_API_LINK)))

    outcome = publisher.publish(_refresh_request())

    assert outcome.success is True
    assert outcome.message == "Updated record 42"
    assert outcome.link == _DOCUMENT_URL
    cms.update_record.assert_called_once_with(
        42,
        {
            "title": "The Complete Tomato Guide 2026",
            "content": "<p>Repaired body</p>",
            "status": "publish",
            "slug": "tomato-guide",
            "excerpt": "Grow better tomatoes.",
        },
        endpoint="https://example.com/wp-json/wp/v2/posts/42",
    )
    cms.create_record.assert_not_called()


def test_refresh_without_new_title_leaves_title_untouched() -> None:
    cms = _cms()
    cms.update_record.return_value = {"id": 42, "link": _DOCUMENT_URL}
    publisher = Publisher(cms, PublishTargetResolver(cms, _page(_API_LINK)))

    outcome = publisher.publish(_refresh_request(title=""))

    assert outcome.success is True
    payload = cms.update_record.call_args.args[1]
    assert "title" not in payload
    assert payload["content"] == "<p>Repaired body</p>"


def test_new_article_is_created() -> None:
    cms = _cms()
    cms.create_record.return_value = {"id": 5, "link": "https://example.com/new-post/"}
    publisher = Publisher(cms, PublishTargetResolver(cms, _page()))

    outcome = publisher.publish(_refresh_request(document_id="new-post", slug="new-post", is_refresh=False, status="draft"))

    assert outcome.success is True
    assert outcome.message == "Created record 5"
    assert cms.create_record.call_args.args[0]["status"] == "draft"
    cms.update_record.assert_not_called()


def test_new_article_with_taken_slug_updates_existing_record() -> None:
    cms = _cms({"new-post": 11})
    cms.update_record.return_value = {"id": 11}
    publisher = Publisher(cms, PublishTargetResolver(cms, _page()))

    outcome = publisher.publish(_refresh_request(document_id="new-post", slug="new-post", is_refresh=False))

    assert outcome.success is True
    assert outcome.message == "Updated record 11"
    assert outcome.link is None
    assert cms.update_record.call_args.args[0] == 11
    cms.create_record.assert_not_called()


def test_cms_error_becomes_failed_outcome() -> None:
    cms = _cms()
    cms.update_record.side_effect = CmsError("Sorry, you are not allowed to edit this post.", status_code=403)
    publisher = Publisher(cms, PublishTargetResolver(cms, _page(_API_LINK)))

    outcome = publisher.publish(_refresh_request())

    assert outcome.success is False
    assert outcome.message == "Sorry, you are not allowed to edit this post."


def test_unresolvable_refresh_becomes_failed_outcome() -> None:
    cms = _cms()
    publisher = Publisher(cms, PublishTargetResolver(cms, _page()))

    outcome = publisher.publish(_refresh_request())

    assert outcome.success is False
    assert outcome.message.startswith("Could not find original post.")
    cms.update_record.assert_not_called()


def test_inline_images_are_uploaded_before_publishing() -> None:
    cms = _cms()
    cms.upload_media.return_value = {"source_url": "https://example.com/wp-content/uploads/inline-image-0.png"}
    cms.update_record.return_value = {"id": 42}
    publisher = Publisher(cms, PublishTargetResolver(cms, _page(_API_LINK)))
    content = '<p>Chart</p><img alt="Yield chart" src="data:image/png;base64,aGVsbG8="/>'

    outcome = publisher.publish(_refresh_request(content=content))

    assert outcome.success is True
    cms.upload_media.assert_called_once_with(b"hello", "inline-image-0.png", "image/png")
    sent_content = cms.update_record.call_args.args[1]["content"]
    assert "data:image" not in sent_content
    assert 'src="https://example.com/wp-content/uploads/inline-image-0.png"' in sent_content


def test_plain_content_skips_media_upload() -> None:
    cms = _cms()
    publisher = Publisher(cms, PublishTargetResolver(cms, _page()))

    assert publisher.upload_inline_images("<p>No images</p>") == "<p>No images</p>"
    cms.upload_media.assert_not_called()
