# recon/resolve/dns_records.py
"""
Mail-related DNS lookups for the Discovery stage.

Each record family is resolved independently: a failure (NXDOMAIN, NoAnswer,
timeout) yields None for that family and never fails the others.
"""

from __future__ import annotations

import logging
import unicodedata
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass

import dns.resolver
import idna
from dns.exception import DNSException

log = logging.getLogger(__name__)

DEFAULT_LIFETIME_S = 10.0


@dataclass
class DnsRecords:
    mx: str | None = None
    spf: str | None = None
    dmarc: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


def norm_domain(domain: str | None) -> str | None:
    """NFKC, lowercase, then IDNA A-label; labels idna rejects are kept as typed."""
    if not domain:
        return None
    s = unicodedata.normalize("NFKC", str(domain)).strip().lower().rstrip(".")
    if not s:
        return None
    try:
        return idna.encode(s, uts46=True).decode("ascii")
    except idna.IDNAError:
        return s


# -----------------------------
# DNS lookups (patch points)
# -----------------------------


def _resolver(lifetime: float) -> dns.resolver.Resolver:
    resolver = dns.resolver.Resolver()
    resolver.lifetime = lifetime
    resolver.timeout = lifetime
    return resolver


def _mx_lookup(domain: str, lifetime: float) -> list[tuple[int, str]]:
    answers = _resolver(lifetime).resolve(domain, "MX")
    return [(int(r.preference), r.exchange.to_text(omit_final_dot=True)) for r in answers]


def _txt_lookup(name: str, lifetime: float) -> list[str]:
    answers = _resolver(lifetime).resolve(name, "TXT")
    # A TXT record may be split into several character-strings; join them back.
    return [b"".join(r.strings).decode("utf-8", errors="replace") for r in answers]


# -----------------------------
# Record families
# -----------------------------


def get_mx_records(domain: str, *, lifetime: float = DEFAULT_LIFETIME_S) -> str | None:
    """Return "<priority> <exchange>" pairs joined by ", ", or None."""
    try:
        pairs = _mx_lookup(domain, lifetime)
    except DNSException as exc:
        log.warning("MX lookup failed for %s: %s", domain, exc)
        return None
    if not pairs:
        return None
    return ", ".join(f"{pref} {host}" for pref, host in pairs)


def get_spf_record(domain: str, *, lifetime: float = DEFAULT_LIFETIME_S) -> str | None:
    try:
        records = _txt_lookup(domain, lifetime)
    except DNSException as exc:
        log.warning("SPF lookup failed for %s: %s", domain, exc)
        return None
    return next((r for r in records if r.startswith("v=spf1")), None)


def get_dmarc_record(domain: str, *, lifetime: float = DEFAULT_LIFETIME_S) -> str | None:
    try:
        records = _txt_lookup(f"_dmarc.{domain}", lifetime)
    except DNSException as exc:
        log.warning("DMARC lookup failed for %s: %s", domain, exc)
        return None
    return next((r for r in records if r.startswith("v=DMARC1")), None)


def get_all_dns_records(domain: str, *, lifetime: float = DEFAULT_LIFETIME_S) -> DnsRecords:
    """Resolve MX, SPF and DMARC concurrently and join before returning."""
    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="dns") as pool:
        mx = pool.submit(get_mx_records, domain, lifetime=lifetime)
        spf = pool.submit(get_spf_record, domain, lifetime=lifetime)
        dmarc = pool.submit(get_dmarc_record, domain, lifetime=lifetime)
        return DnsRecords(mx=mx.result(), spf=spf.result(), dmarc=dmarc.result())


__all__ = [
    "DnsRecords",
    "norm_domain",
    "get_mx_records",
    "get_spf_record",
    "get_dmarc_record",
    "get_all_dns_records",
]
