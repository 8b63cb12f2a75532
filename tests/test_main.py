"""Tests for the CLI entrypoint (main)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

import main
from models import Document, PublishOutcome, PublishRequest

_ENV = {
    "WP_URL": "https://example.com/",
    "WP_USERNAME": "editor",
    "WP_APP_PASSWORD": "app-password",
}


def test_parse_args_run_flags() -> None:
    args = main.parse_args(["run", "--once", "--dry-run", "--limit", "5"])

    assert args.command == "run"
    assert args.once is True
    assert args.dry_run is True
    assert args.limit == 5
    assert args.sitemap is None


def test_parse_args_requires_command() -> None:
    with pytest.raises(SystemExit):
        main.parse_args([])


def test_run_once_uses_sitemap_and_target_keywords() -> None:
    pages = [Document(id="https://example.com/a/", slug="a", title="A")]
    env = {**_ENV, "TARGET_KEYWORDS": "tomatoes, raised beds ,", "PERPLEXITY_API_KEY": "", "SITEMAP_URL": ""}

    with patch.dict("os.environ", env), \
         patch("main.fetch_pages", return_value=pages) as mock_fetch, \
         patch("main.JsonFileSchedulingStore"), \
         patch("main.Generator"), \
         patch("main.MaintenanceEngine") as mock_engine:
        mock_engine.return_value.run_once.return_value = {"published": 1}
        main.run(once=True, dry_run=False, sitemap_url=None, limit=None)

    mock_fetch.assert_called_once_with("https://example.com/sitemap.xml", limit=None)
    context = mock_engine.return_value.run_once.call_args.args[0]
    assert context.pages == pages
    assert context.keywords == ["tomatoes", "raised beds"]
    assert mock_engine.call_args.kwargs["search_references"] is None
    mock_engine.return_value.start.assert_not_called()


def test_run_loop_stops_on_keyboard_interrupt() -> None:
    with patch.dict("os.environ", _ENV), \
         patch("main.fetch_pages", return_value=[]), \
         patch("main.JsonFileSchedulingStore"), \
         patch("main.Generator"), \
         patch("main.MaintenanceEngine") as mock_engine:
        mock_engine.return_value.start.side_effect = KeyboardInterrupt
        main.run(once=False, dry_run=False, sitemap_url="https://example.com/post-sitemap.xml", limit=None)

    mock_engine.return_value.stop.assert_called_once()


def test_new_article_raises_when_publish_fails() -> None:
    request = PublishRequest(document_id="pots", title="Pots", slug="pots", content="<p>x</p>", is_refresh=False)
    publisher = MagicMock()
    publisher.publish.return_value = PublishOutcome(success=False, message="Sorry, you are not allowed to create posts.")

    with patch.dict("os.environ", _ENV), \
         patch("main.write_article", return_value=request), \
         patch("main.Generator"), \
         patch("main.Publisher", return_value=publisher):
        with pytest.raises(RuntimeError, match="not allowed to create posts"):
            main.new_article("Pots", "draft", dry_run=False)


def test_new_article_dry_run_skips_publishing() -> None:
    request = PublishRequest(document_id="pots", title="Pots", slug="pots", content="<p>x</p>", is_refresh=False)

    with patch("main.write_article", return_value=request), \
         patch("main.Generator"), \
         patch("main.Publisher") as mock_publisher:
        main.new_article("Pots", "draft", dry_run=True)

    mock_publisher.assert_not_called()
