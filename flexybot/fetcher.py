"""
Webpage fetching for URL ingestion.
"""
from typing import Optional
from urllib.parse import urlparse

import requests

from .errors import FetchError, ValidationError
from .logging_config import logger

DEFAULT_USER_AGENT = "FlexyBot-Ingest/1.0 (+https://flexybot.com)"


class WebpageFetcher:
    """
    GET a webpage with an enforced timeout and a bounded redirect chain.

    Any network failure or non-2xx status raises FetchError.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        max_redirects: int = 5,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.max_redirects = max_redirects
        self.session.headers.update({"User-Agent": user_agent})

    def fetch(self, url: str) -> str:
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Not an http(s) URL: {url!r}")

        logger.info("Fetching webpage", url=url)
        try:
            resp = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.TooManyRedirects as e:
            raise FetchError(f"Too many redirects fetching {url}", url=url) from e
        except requests.Timeout as e:
            raise FetchError(f"Timed out fetching {url}", url=url) from e
        except requests.RequestException as e:
            raise FetchError(f"Network error fetching {url}: {e}", url=url) from e

        if not 200 <= resp.status_code < 300:
            logger.warning("Webpage fetch failed", url=url, status=resp.status_code)
            raise FetchError(
                f"Fetching {url} returned HTTP {resp.status_code}",
                url=url,
                status_code=resp.status_code,
            )
        return resp.text
