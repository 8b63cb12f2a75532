from unittest.mock import MagicMock, patch

import pytest
import requests

from fetcher import check_url, crawl, fetch_document

_PAGE = """
<html><body>
<header><nav>Menu</nav></header>
<article class="post">
  <div class="entry-content">
    <h2>Watering</h2><p>Water at the base.</p>
    <script type="application/ld+json">{"@type": "Article"}</script>
    <script>trackVisit()</script>
  </div>
</article>
<footer>Footer</footer>
</body></html>
"""


def _response(status_code: int, text: str = "") -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.text = text
    return mock


def test_check_url_accepts_only_200() -> None:
    with patch("fetcher.requests.head", return_value=_response(200)):
        assert check_url("https://example.org/ok") is True
    with patch("fetcher.requests.head", return_value=_response(301)):
        assert check_url("https://example.org/moved") is False
    with patch("fetcher.requests.head", return_value=_response(404)):
        assert check_url("https://example.org/missing") is False


def test_check_url_retries_network_errors_once() -> None:
    with patch("fetcher.requests.head", side_effect=requests.ConnectionError("reset")) as mock_head, \
         patch("fetcher.time.sleep") as mock_sleep:
        assert check_url("https://example.org/flaky") is False

    assert mock_head.call_count == 2
    mock_sleep.assert_called_once_with(1.0)


def test_fetch_document_retries_through_proxy_on_network_error() -> None:
    responses = [requests.ConnectionError("blocked"), _response(200, "<html>proxied</html>")]

    with patch("fetcher.requests.get", side_effect=responses) as mock_get, \
         patch.dict("os.environ", {"FETCH_PROXY_URL": "https://proxy.example.net/?url={url}"}):
        html = fetch_document("https://example.com/a b/")

    assert html == "<html>proxied</html>"
    assert mock_get.call_args.args[0] == "https://proxy.example.net/?url=https%3A%2F%2Fexample.com%2Fa%20b%2F"


def test_fetch_document_without_proxy_propagates_errors() -> None:
    with patch("fetcher.requests.get", side_effect=requests.ConnectionError("blocked")), \
         patch.dict("os.environ", {"FETCH_PROXY_URL": ""}):
        with pytest.raises(requests.ConnectionError):
            fetch_document("https://example.com/")


def test_crawl_keeps_content_container_and_schema() -> None:
    with patch("fetcher.fetch_document", return_value=_PAGE):
        content = crawl("https://example.com/watering/")

    assert content.startswith("<h2>Watering</h2>")
    assert "application/ld+json" in content
    assert "trackVisit" not in content
    assert "Menu" not in content
