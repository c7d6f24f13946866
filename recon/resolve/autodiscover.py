# recon/resolve/autodiscover.py
"""
Federation discovery through the Microsoft Autodiscover
GetFederationInformation operation: given one domain, returns the other
domains federated into the same tenant.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from xml.sax.saxutils import escape

import httpx

from recon.exceptions import AutodiscoverError

log = logging.getLogger(__name__)

AUTODISCOVER_URL = "https://autodiscover-s.outlook.com/autodiscover/autodiscover.svc"
SOAP_ACTION = (
    "http://schemas.microsoft.com/exchange/2010/Autodiscover/Autodiscover/GetFederationInformation"
)
TIMEOUT_S = 10.0

_NS_SOAP = "http://schemas.xmlsoap.org/soap/envelope/"
_NS_AUTODISCOVER = "http://schemas.microsoft.com/exchange/2010/Autodiscover"


@dataclass
class FederationInfo:
    application_uri: str | None = None
    domains: list[str] = field(default_factory=list)


def build_request(domain: str) -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<soap:Envelope xmlns:exm="http://schemas.microsoft.com/exchange/services/2006/messages"
               xmlns:ext="http://schemas.microsoft.com/exchange/services/2006/types"
               xmlns:a="http://www.w3.org/2005/08/addressing"
               xmlns:soap="{_NS_SOAP}"
               xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
               xmlns:xsd="http://www.w3.org/2001/XMLSchema">
    <soap:Header>
        <a:Action soap:mustUnderstand="1">{SOAP_ACTION}</a:Action>
        <a:To soap:mustUnderstand="1">{AUTODISCOVER_URL}</a:To>
        <a:ReplyTo>
            <a:Address>http://www.w3.org/2005/08/addressing/anonymous</a:Address>
        </a:ReplyTo>
    </soap:Header>
    <soap:Body>
        <GetFederationInformationRequestMessage xmlns="{_NS_AUTODISCOVER}">
            <Request>
                <Domain>{escape(domain)}</Domain>
            </Request>
        </GetFederationInformationRequestMessage>
    </soap:Body>
</soap:Envelope>"""


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(el: ET.Element | None, name: str) -> ET.Element | None:
    if el is None:
        return None
    for c in el:
        if _local(c.tag) == name:
            return c
    return None


def parse_response(xml_text: str) -> FederationInfo:
    """
    Parse the SOAP envelope. Namespaces vary between tenants, so elements are
    matched on local name only.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise AutodiscoverError(f"Failed to parse autodiscover response: {exc}") from exc

    body = _child(root, "Body")
    message = _child(body, "GetFederationInformationResponseMessage")
    response = _child(message, "Response")
    if response is None:
        raise AutodiscoverError("Failed to parse autodiscover response: no Response element")

    error_code = (_child(response, "ErrorCode").text or "").strip() if _child(
        response, "ErrorCode"
    ) is not None else "NoError"
    if error_code != "NoError":
        msg_el = _child(response, "ErrorMessage")
        msg = (msg_el.text or "").strip() if msg_el is not None else error_code
        raise AutodiscoverError(f"Autodiscover error: {msg}")

    app_el = _child(response, "ApplicationUri")
    domains_el = _child(response, "Domains")
    domains = [
        (d.text or "").strip().lower()
        for d in (domains_el if domains_el is not None else [])
        if _local(d.tag) == "Domain" and (d.text or "").strip()
    ]
    return FederationInfo(
        application_uri=(app_el.text or "").strip() or None if app_el is not None else None,
        domains=domains,
    )


def get_related_domains(domain: str, *, client: httpx.Client | None = None) -> FederationInfo:
    headers = {
        "Content-Type": "text/xml; charset=utf-8",
        "SOAPAction": SOAP_ACTION,
    }
    own = client is None
    http = client or httpx.Client(timeout=TIMEOUT_S)
    try:
        resp = http.post(AUTODISCOVER_URL, content=build_request(domain), headers=headers)
        if resp.status_code >= 400:
            raise AutodiscoverError(
                f"Autodiscover request failed with status {resp.status_code} for {domain}"
            )
        info = parse_response(resp.text)
    finally:
        if own:
            http.close()
    log.info("Autodiscover %s: %d federated domain(s)", domain, len(info.domains))
    return info


__all__ = [
    "AUTODISCOVER_URL",
    "FederationInfo",
    "build_request",
    "parse_response",
    "get_related_domains",
]
