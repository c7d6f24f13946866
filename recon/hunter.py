# recon/hunter.py
"""
Hunter.io domain-search client.

search_domain(domain) returns the raw JSON body:
  {"data": {"pattern": ..., "emails": [{"value", "first_name", "last_name",
            "linkedin", "sources": [{"uri", "domain", "extracted_on", ...}]}]}}

429 and 5xx answers are retried with jittered backoff; other non-2xx answers
fail immediately.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from recon.config import HunterConfig, load_settings
from recon.exceptions import EmailDiscoveryError

log = logging.getLogger(__name__)

TIMEOUT_S = 10.0


class _TransientHunterError(EmailDiscoveryError):
    pass


class HunterClient:
    def __init__(
        self,
        config: HunterConfig | None = None,
        *,
        client: httpx.Client | None = None,
        max_backoff_s: float = 8.0,
    ) -> None:
        self.config = config or load_settings().hunter
        self._client = client or httpx.Client(timeout=TIMEOUT_S)
        self.max_backoff_s = max_backoff_s

    def close(self) -> None:
        self._client.close()

    def _get(self, domain: str, limit: int) -> dict[str, Any]:
        try:
            resp = self._client.get(
                f"{self.config.base_url.rstrip('/')}/domain-search",
                params={"domain": domain, "limit": limit, "api_key": self.config.api_key},
            )
        except httpx.TransportError as exc:
            raise _TransientHunterError(f"Hunter.io request failed: {exc}") from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            raise _TransientHunterError(f"Hunter.io API error: status {resp.status_code}")
        if resp.status_code >= 400:
            raise EmailDiscoveryError(f"Hunter.io API error: status {resp.status_code}")
        return resp.json()

    def search_domain(self, domain: str, limit: int | None = None) -> dict[str, Any]:
        if not self.config.api_key:
            raise EmailDiscoveryError("HUNTER_API_KEY is not set")
        lim = int(limit or self.config.limit)
        retrying = Retrying(
            reraise=True,
            retry=retry_if_exception_type(_TransientHunterError),
            stop=stop_after_attempt(max(1, self.config.max_attempts)),
            wait=wait_random_exponential(multiplier=0.5, max=self.max_backoff_s),
        )
        try:
            body = retrying(self._get, domain, lim)
        except RetryError as exc:  # pragma: no cover - reraise=True surfaces the last error
            raise EmailDiscoveryError(str(exc)) from exc
        emails = ((body or {}).get("data") or {}).get("emails") or []
        log.info("Hunter.io returned %d email(s) for %s", len(emails), domain)
        return body


__all__ = ["HunterClient"]
