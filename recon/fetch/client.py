# recon/fetch/client.py
from __future__ import annotations

import logging
from typing import Any

import httpx
from bs4 import BeautifulSoup

from recon.config import DEFAULT_FETCH_USER_AGENT
from recon.db import utc_now_iso
from recon.exceptions import SourceFetchError

log = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------------------
# Module configuration
# --------------------------------------------------------------------------------------------------

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_MAX_CONTENT_CHARS = 10_000
MAX_REDIRECTS = 5

# Tags that never carry visible text
_STRIP_TAGS = ["head", "script", "style", "noscript", "template", "svg"]


def html_to_text(html: str) -> str:
    """Visible text of an HTML document, whitespace-collapsed."""
    soup = BeautifulSoup(html, "html.parser")
    for name in _STRIP_TAGS:
        for tag in soup.find_all(name):
            tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def normalize_content(body: str, content_type: str | None) -> str:
    ctype = (content_type or "").lower()
    if "html" in ctype or body.lstrip()[:15].lower().startswith(("<!doctype", "<html")):
        return html_to_text(body)
    return body


class SourceFetcher:
    """
    Small wrapper around httpx for evidence URLs.

    A 2xx response yields the persisted JSON shape
    {statusCode, contentType, content, scrapedAt}; anything else (non-2xx,
    timeout, connection error, malformed URL) raises SourceFetchError.
    """

    def __init__(
        self,
        *,
        user_agent: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS,
        client: httpx.Client | None = None,
    ) -> None:
        self.user_agent = user_agent or DEFAULT_FETCH_USER_AGENT
        self.timeout_s = float(timeout_s)
        self.max_content_chars = int(max_content_chars)
        self._client = client or httpx.Client(
            headers={
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
            },
            timeout=httpx.Timeout(self.timeout_s),
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SourceFetcher:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def fetch(self, url: str) -> dict[str, Any]:
        try:
            resp = self._client.get(url)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise SourceFetchError(f"timeout after {self.timeout_s:g}s fetching {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise SourceFetchError(
                f"Request failed with status code {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise SourceFetchError(str(exc) or exc.__class__.__name__) from exc

        content_type = resp.headers.get("content-type")
        content = normalize_content(resp.text, content_type)
        if len(content) > self.max_content_chars:
            content = content[: self.max_content_chars]
        log.debug("Fetched %s (%s, %d chars)", url, resp.status_code, len(content))
        return {
            "statusCode": resp.status_code,
            "contentType": content_type,
            "content": content,
            "scrapedAt": utc_now_iso(),
        }


__all__ = ["SourceFetcher", "html_to_text", "normalize_content"]
