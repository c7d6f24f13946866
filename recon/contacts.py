# recon/contacts.py
"""
Contact discovery: turns an email-discovery answer into Target, SourceDomain,
SourceData and TargetSourceMap rows, and expands a domain into its federated
siblings.

Inserts are idempotent (ignore on conflict), so re-running recon for a domain
only adds what is new.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from recon import repository as repo
from recon.db import Store
from recon.notify import (
    DOMAIN_UPDATED,
    RECON_COMPLETE,
    RECON_UPDATE,
    RELATED_DOMAINS_FOUND,
    Notifier,
)
from recon.resolve.autodiscover import FederationInfo, get_related_domains
from recon.resolve.dns_records import norm_domain
from recon.stages.aggregator import StatusAggregator
from recon.status import TargetStatus, target_status

log = logging.getLogger(__name__)

DISCOVERY_METHOD = "hunter.io"


@dataclass
class IngestResult:
    domain: str
    email_format: str | None = None
    targets_count: int = 0
    sources: list[dict[str, Any]] = field(default_factory=list)
    reopened: list[str] = field(default_factory=list)
    enriched: list[str] = field(default_factory=list)


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    s = str(value).strip()
    try:
        if len(s) == 10:
            dt = datetime.strptime(s, "%Y-%m-%d")
        else:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        log.debug("Unparseable extracted_on value: %r", value)
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def earliest_extraction(sources: list[dict[str, Any]]) -> str | None:
    """ISO-8601 UTC timestamp of the earliest extracted_on, or None."""
    stamps = [ts for ts in (_parse_ts(s.get("extracted_on")) for s in sources) if ts]
    if not stamps:
        return None
    return min(stamps).astimezone(UTC).isoformat().replace("+00:00", "Z")


def resolve_source_url(source: dict[str, Any], linkedin: str | None) -> str:
    """LinkedIn sources found through a Google search point at the profile instead."""
    uri = source.get("uri") or ""
    if linkedin and source.get("domain") == "linkedin.com" and "google.com/search" in uri:
        return linkedin
    return uri


def _full_name(entry: dict[str, Any]) -> str | None:
    name = " ".join(p for p in (entry.get("first_name"), entry.get("last_name")) if p)
    return name or None


class ContactDiscovery:
    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        aggregator: StatusAggregator,
        *,
        hunter: Any = None,
        federation: Callable[[str], FederationInfo] = get_related_domains,
        enqueue_discovery: Callable[[str], Any] | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.aggregator = aggregator
        self.hunter = hunter
        self.federation = federation
        self.enqueue_discovery = enqueue_discovery

    # -----------------------------
    # Email discovery
    # -----------------------------

    def start_recon(self, domain: str) -> IngestResult:
        name = norm_domain(domain)
        if not name:
            raise ValueError("Domain is required")
        if self.hunter is None:
            raise RuntimeError("Email discovery client not configured")

        self.notifier.emit(
            RECON_UPDATE, {"message": f"Starting reconnaissance for {name} using Hunter.io..."}
        )
        try:
            data = self.hunter.search_domain(name)
            result = self.ingest_hunter_results(name, data)
        except Exception as exc:
            log.error("Recon error for %s: %s", name, exc)
            self.notifier.emit(
                RECON_UPDATE, {"message": f"Reconnaissance for {name} failed: {exc}"}
            )
            raise
        self.notifier.emit(RECON_COMPLETE, {"domain": name, "targetsCount": result.targets_count})
        return result

    def ingest_hunter_results(self, domain: str, body: dict[str, Any]) -> IngestResult:
        result = IngestResult(domain=domain)
        data = (body or {}).get("data") or {}

        repo.ensure_domain(self.store, domain)

        pattern = data.get("pattern")
        if pattern:
            result.email_format = pattern
            repo.set_domain_email_format(self.store, domain, pattern)
            self.notifier.emit(
                RECON_UPDATE, {"message": f"Found email format for {domain}: {pattern}"}
            )

        emails = data.get("emails") or []
        result.targets_count = len(emails)
        if emails:
            self.notifier.emit(
                RECON_UPDATE,
                {"message": f"Found {len(emails)} potential contacts for {domain}"},
            )

        for entry in emails:
            email = (entry.get("value") or "").strip().lower()
            if not email:
                continue
            self._ingest_contact(domain, email, entry, result)

        self.notifier.emit(DOMAIN_UPDATED, {"domain": domain})
        return result

    def _ingest_contact(
        self, domain: str, email: str, entry: dict[str, Any], result: IngestResult
    ) -> None:
        sources = entry.get("sources") or []
        name = _full_name(entry)
        tenure_start = earliest_extraction(sources)
        repo.upsert_target(
            self.store, email=email, name=name, domain_name=domain, tenure_start=tenure_start
        )

        linkedin = entry.get("linkedin")
        for source in sources:
            if not source.get("uri"):
                continue
            url = resolve_source_url(source, linkedin)
            if url != source["uri"]:
                self.notifier.emit(
                    RECON_UPDATE,
                    {
                        "message": f"Using LinkedIn profile URL for {name or email} "
                        "instead of Google search URL"
                    },
                )
            source_domain = source.get("domain")
            if source_domain:
                repo.ensure_source_domain(self.store, source_domain)
            source_id = repo.insert_source(
                self.store,
                url=url,
                source_domain_name=source_domain,
                discovery_method=DISCOVERY_METHOD,
                data={
                    "extracted_on": source.get("extracted_on"),
                    "last_seen_on": source.get("last_seen_on"),
                    "still_on_page": source.get("still_on_page"),
                    "original_uri": source["uri"] if url != source["uri"] else None,
                },
            )
            repo.map_target_source(self.store, email, source_id)
            result.sources.append(
                {
                    "url": url,
                    "domain": source_domain,
                    "original_url": source["uri"] if url != source["uri"] else None,
                }
            )

        self._reconcile_status(email, result)
        self.notifier.emit(
            RECON_UPDATE,
            {
                "message": f"Processed contact: {name or ''} ({email}) "
                f"with tenure starting {tenure_start or 'unknown'}"
            },
        )

    def _reconcile_status(self, email: str, result: IngestResult) -> None:
        """
        A target past 'pending' that now has unsettled sources goes back to
        'pending'; otherwise the aggregator decides, so a target whose sources
        were all settled by an earlier run still advances.
        """
        total, unsettled = repo.source_counts_for_target(self.store, email)
        row = repo.get_target(self.store, email)
        status = target_status(row["status"] or TargetStatus.PENDING.value) if row else None
        if unsettled and status not in (None, TargetStatus.PENDING):
            if repo.reopen_target(self.store, email):
                log.info("Target %s reopened: %d unsettled source(s)", email, unsettled)
                result.reopened.append(email)
            return
        if total and self.aggregator.try_advance_target(email):
            result.enriched.append(email)

    # -----------------------------
    # Federation discovery
    # -----------------------------

    def discover_related_domains(self, domain: str) -> dict[str, Any]:
        name = norm_domain(domain)
        if not name:
            raise ValueError("Domain is required")
        info = self.federation(name)
        related = [d for d in dict.fromkeys(info.domains) if d != name]

        if info.domains:
            repo.ensure_domain(self.store, name)
            for other in related:
                repo.ensure_domain(self.store, other)
                if self.enqueue_discovery is not None:
                    self.enqueue_discovery(other)
            self.notifier.emit(
                RELATED_DOMAINS_FOUND, {"primaryDomain": name, "relatedDomains": related}
            )
        return {
            "success": True,
            "domain": name,
            "applicationUri": info.application_uri,
            "relatedDomains": related,
        }


__all__ = [
    "ContactDiscovery",
    "IngestResult",
    "earliest_extraction",
    "resolve_source_url",
]
