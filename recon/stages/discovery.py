# recon/stages/discovery.py
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from recon import repository as repo
from recon.db import Store
from recon.notify import DOMAIN_UPDATED, RECON_UPDATE, Notifier
from recon.queueing.payloads import DiscoveryPayload
from recon.resolve.dns_records import DnsRecords, get_all_dns_records

log = logging.getLogger(__name__)

Resolver = Callable[[str], DnsRecords]


class DiscoveryStage:
    """
    Resolve MX / SPF / DMARC for a domain and upsert them onto the Domain row.

    A lookup that fails leaves its field NULL; the job itself only fails when
    the store write does.
    """

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        *,
        resolver: Resolver | None = None,
        dns_timeout_s: float = 10.0,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.resolver = resolver or (lambda d: get_all_dns_records(d, lifetime=dns_timeout_s))

    def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        domain = DiscoveryPayload.model_validate(payload).domain
        log.info("Processing DNS lookups for domain: %s", domain)
        try:
            records = self.resolver(domain).to_dict()
            repo.upsert_domain_records(
                self.store, domain, mx=records["mx"], spf=records["spf"], dmarc=records["dmarc"]
            )
        except Exception as exc:
            log.exception("DNS lookup failed for %s", domain)
            self.notifier.emit(
                RECON_UPDATE, {"message": f"DNS lookup failed for {domain}: {exc}"}
            )
            raise

        self.notifier.emit(DOMAIN_UPDATED, {"domain": domain, "dnsRecords": records})
        return {"success": True, "domain": domain, "dnsRecords": records}


__all__ = ["DiscoveryStage"]
