"""
Tests for webpage fetching with a stubbed requests session.
"""
from unittest.mock import MagicMock

import pytest
import requests

from flexybot.errors import FetchError, ValidationError
from flexybot.fetcher import WebpageFetcher


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    return session


class TestWebpageFetcher:

    def test_returns_body_and_sets_limits(self, session):
        session.get.return_value = MagicMock(status_code=200, text="<p>ok</p>")
        fetcher = WebpageFetcher(timeout=3, max_redirects=2, session=session)

        assert fetcher.fetch("https://example.com") == "<p>ok</p>"
        session.get.assert_called_once_with("https://example.com", timeout=3, allow_redirects=True)
        assert session.max_redirects == 2
        assert "User-Agent" in session.headers

    def test_non_2xx_raises_with_status(self, session):
        session.get.return_value = MagicMock(status_code=404, text="missing")
        fetcher = WebpageFetcher(session=session)

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch("https://example.com/missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == "https://example.com/missing"

    @pytest.mark.parametrize("exc", [
        requests.Timeout("slow"),
        requests.TooManyRedirects("loop"),
        requests.ConnectionError("refused"),
    ])
    def test_network_errors_raise_fetch_error(self, session, exc):
        session.get.side_effect = exc
        fetcher = WebpageFetcher(session=session)

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch("http://example.com")
        assert exc_info.value.status_code is None

    @pytest.mark.parametrize("url", ["", "ftp://example.com/file", "example.com", "https://"])
    def test_rejects_non_http_urls(self, session, url):
        fetcher = WebpageFetcher(session=session)

        with pytest.raises(ValidationError):
            fetcher.fetch(url)
        session.get.assert_not_called()
