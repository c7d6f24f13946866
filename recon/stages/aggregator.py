# recon/stages/aggregator.py
"""
Status aggregation: advances a Target from 'pending' to 'enriched' once every
SourceData row mapped to it has settled ('mined' or 'failed').

The advance is a conditional UPDATE guarded on status='pending', so when two
scrape jobs settle the last sources of one target concurrently exactly one of
them wins and emits targetStatusUpdated.
"""

from __future__ import annotations

import logging

from recon import repository as repo
from recon.db import Store
from recon.notify import TARGET_STATUS_UPDATED, Notifier
from recon.status import TargetStatus

log = logging.getLogger(__name__)


class StatusAggregator:
    def __init__(self, store: Store, notifier: Notifier) -> None:
        self.store = store
        self.notifier = notifier

    def on_source_settled(self, source_id: int) -> list[str]:
        """Re-evaluate every target mapped to source_id; returns the emails advanced."""
        advanced = []
        for email in repo.target_emails_for_source(self.store, source_id):
            if self.try_advance_target(email):
                advanced.append(email)
        return advanced

    def try_advance_target(self, email: str) -> bool:
        total, unsettled = repo.source_counts_for_target(self.store, email)
        if total == 0 or unsettled > 0:
            return False

        won = repo.advance_target_if_status(
            self.store, email, expected=TargetStatus.PENDING, new=TargetStatus.ENRICHED
        )
        if not won:
            # Already enriched (or beyond); nothing to do.
            return False

        log.info("Target %s enriched (%d source(s) settled)", email, total)
        self.notifier.emit(
            TARGET_STATUS_UPDATED,
            {
                "email": email,
                "status": TargetStatus.ENRICHED.value,
                "message": f"All sources for {email} have been processed",
            },
        )
        return True


__all__ = ["StatusAggregator"]
