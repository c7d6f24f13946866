from __future__ import annotations

import pytest
import respx
from httpx import Response

from recon.exceptions import AutodiscoverError
from recon.resolve.autodiscover import (
    AUTODISCOVER_URL,
    SOAP_ACTION,
    build_request,
    get_related_domains,
    parse_response,
)

OK = """<?xml version="1.0" encoding="utf-8"?>
<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/">
  <s:Body>
    <GetFederationInformationResponseMessage
        xmlns="http://schemas.microsoft.com/exchange/2010/Autodiscover">
      <Response>
        <ErrorCode>NoError</ErrorCode>
        <ErrorMessage />
        <ApplicationUri>urn:federation:MicrosoftOnline</ApplicationUri>
        <Domains>
          <Domain>acme.com</Domain>
          <Domain>Acme.onmicrosoft.com</Domain>
          <Domain>acme.co.uk</Domain>
        </Domains>
      </Response>
    </GetFederationInformationResponseMessage>
  </s:Body>
</s:Envelope>"""

NOT_FEDERATED = """<?xml version="1.0" encoding="utf-8"?>
<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/">
  <s:Body>
    <GetFederationInformationResponseMessage
        xmlns="http://schemas.microsoft.com/exchange/2010/Autodiscover">
      <Response>
        <ErrorCode>InvalidDomain</ErrorCode>
        <ErrorMessage>The domain is not federated</ErrorMessage>
      </Response>
    </GetFederationInformationResponseMessage>
  </s:Body>
</s:Envelope>"""


def test_request_carries_domain_escaped():
    body = build_request("a&b.com")
    assert "<Domain>a&amp;b.com</Domain>" in body
    assert SOAP_ACTION in body


def test_parse_domains():
    info = parse_response(OK)
    assert info.application_uri == "urn:federation:MicrosoftOnline"
    assert info.domains == ["acme.com", "acme.onmicrosoft.com", "acme.co.uk"]


def test_parse_error_code():
    with pytest.raises(AutodiscoverError, match="not federated"):
        parse_response(NOT_FEDERATED)


def test_parse_garbage():
    with pytest.raises(AutodiscoverError):
        parse_response("<html>nope")


@respx.mock
def test_soap_post():
    route = respx.post(AUTODISCOVER_URL).mock(return_value=Response(200, text=OK))
    info = get_related_domains("acme.com")
    request = route.calls[0].request
    assert request.headers["SOAPAction"] == SOAP_ACTION
    assert b"<Domain>acme.com</Domain>" in request.content
    assert "acme.co.uk" in info.domains


@respx.mock
def test_http_error_status():
    respx.post(AUTODISCOVER_URL).mock(return_value=Response(500))
    with pytest.raises(AutodiscoverError, match="500"):
        get_related_domains("acme.com")
