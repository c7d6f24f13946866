# recon/stages/scrape.py
from __future__ import annotations

import logging
from typing import Any, Protocol

from recon import repository as repo
from recon.db import Store
from recon.exceptions import SourceFetchError
from recon.notify import SOURCE_FAILED, SOURCE_MINED, SOURCE_UPDATE, Notifier
from recon.queueing.payloads import ScrapePayload
from recon.stages.aggregator import StatusAggregator
from recon.status import SourceStatus

log = logging.getLogger(__name__)


class Fetcher(Protocol):
    def fetch(self, url: str) -> dict[str, Any]: ...


class ScrapeStage:
    """
    Fetch one SourceData URL and settle the row as 'mined' or 'failed'.

    Both outcomes re-run the aggregator for every mapped target, since
    settlement (not success) is what lets a target advance. Any error from
    the fetcher settles the row as failed, then is re-raised so the job is
    recorded as failed.
    """

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        aggregator: StatusAggregator,
        fetcher: Fetcher,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.aggregator = aggregator
        self.fetcher = fetcher

    def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        p = ScrapePayload.model_validate(payload)
        source_id, url = p.source_id, p.source_url

        repo.set_source_status(
            self.store, source_id, SourceStatus.PROCESSING, message="Source scraping in progress"
        )
        self.notifier.emit(
            SOURCE_UPDATE,
            {
                "sourceId": source_id,
                "status": SourceStatus.PROCESSING.value,
                "message": f"Started scraping source: {url}",
            },
        )

        try:
            data = self.fetcher.fetch(url)
        except Exception as exc:
            if isinstance(exc, SourceFetchError):
                log.warning("Error scraping source %s (%s): %s", source_id, url, exc)
            else:
                log.exception("Unexpected error scraping source %s (%s)", source_id, url)
            repo.set_source_status(
                self.store, source_id, SourceStatus.FAILED, message=f"Error: {exc}"
            )
            self._settle(source_id, SourceStatus.FAILED, SOURCE_FAILED)
            self.notifier.emit(
                SOURCE_UPDATE,
                {
                    "sourceId": source_id,
                    "status": SourceStatus.FAILED.value,
                    "message": f"Failed to scrape source: {url} - {exc}",
                },
            )
            raise

        repo.set_source_status(
            self.store,
            source_id,
            SourceStatus.MINED,
            message="Successfully scraped source",
            data=data,
        )
        self._settle(source_id, SourceStatus.MINED, SOURCE_MINED)
        self.notifier.emit(
            SOURCE_UPDATE,
            {
                "sourceId": source_id,
                "status": SourceStatus.MINED.value,
                "message": f"Completed scraping source: {url}",
            },
        )
        log.info("Scraped source %s (%s)", source_id, url)
        return {"success": True, "sourceId": source_id, "message": "Source scraped successfully"}

    def _settle(self, source_id: int, status: SourceStatus, event: str) -> None:
        for email in repo.target_emails_for_source(self.store, source_id):
            self.aggregator.try_advance_target(email)
            self.notifier.emit(
                event, {"sourceId": source_id, "targetEmail": email, "status": status.value}
            )


__all__ = ["Fetcher", "ScrapeStage"]
