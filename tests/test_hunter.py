from __future__ import annotations

import dataclasses

import httpx
import pytest
import respx
from httpx import Response

from recon.exceptions import EmailDiscoveryError
from recon.hunter import HunterClient

BODY = {"data": {"pattern": "{first}", "emails": [{"value": "a@acme.com", "sources": []}]}}


@pytest.fixture
def hunter(settings):
    client = HunterClient(settings.hunter, max_backoff_s=0)
    yield client
    client.close()


def _route():
    return respx.get(host="api.hunter.io", path="/v2/domain-search")


@respx.mock
def test_search_sends_key_and_limit(hunter):
    route = _route().mock(return_value=Response(200, json=BODY))
    assert hunter.search_domain("acme.com") == BODY
    params = route.calls[0].request.url.params
    assert params["domain"] == "acme.com"
    assert params["api_key"] == "test-key"
    assert params["limit"] == "20"


@respx.mock
def test_rate_limit_retried(hunter):
    route = _route().mock(side_effect=[Response(429), Response(503), Response(200, json=BODY)])
    assert hunter.search_domain("acme.com") == BODY
    assert route.call_count == 3


@respx.mock
def test_gives_up_after_max_attempts(hunter):
    route = _route().mock(return_value=Response(429))
    with pytest.raises(EmailDiscoveryError, match="429"):
        hunter.search_domain("acme.com")
    assert route.call_count == 3


@respx.mock
def test_client_error_not_retried(hunter):
    route = _route().mock(return_value=Response(401, json={"errors": []}))
    with pytest.raises(EmailDiscoveryError, match="401"):
        hunter.search_domain("acme.com")
    assert route.call_count == 1


@respx.mock
def test_transport_error_retried(hunter):
    route = _route().mock(
        side_effect=[httpx.ConnectError("refused"), Response(200, json=BODY)]
    )
    assert hunter.search_domain("acme.com") == BODY
    assert route.call_count == 2


def test_missing_key(settings):
    cfg = dataclasses.replace(settings.hunter, api_key=None)
    with pytest.raises(EmailDiscoveryError, match="HUNTER_API_KEY"):
        HunterClient(cfg).search_domain("acme.com")
