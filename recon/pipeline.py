# recon/pipeline.py
"""
Wiring for the four stage queues.

build_pipeline() assembles store, notifier, job queue and stage handlers from
configuration; every collaborator can be injected instead, which is how the
tests and the in-process runner swap Redis and the network out.

Flow:
  queue_domain_for_dns_lookup  -> discovery
  queue_sources_for_targets    -> scraping -> aggregator (pending -> enriched)
  queue_profile_generation     -> profile-synthesis (enriched -> complete)
  queue_pretext_generation     -> pretext-synthesis (Pretext draft)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from redis import Redis

from recon import repository as repo
from recon.config import AppConfig, load_settings
from recon.contacts import ContactDiscovery
from recon.db import Store
from recon.exceptions import PreconditionError
from recon.fetch.client import SourceFetcher
from recon.hunter import HunterClient
from recon.llm.client import CompletionClient
from recon.notify import (
    RECON_UPDATE,
    SCRAPE_UPDATE,
    FanoutNotifier,
    LogNotifier,
    Notifier,
    RedisNotifier,
)
from recon.queueing.jobqueue import JobHandle, JobQueue, RQJobQueue
from recon.queueing.payloads import Stage
from recon.queueing.redis_conn import get_redis
from recon.stages.aggregator import StatusAggregator
from recon.stages.discovery import DiscoveryStage
from recon.stages.pretext import PretextStage
from recon.stages.profile import ProfileStage
from recon.stages.scrape import ScrapeStage
from recon.status import TargetStatus

log = logging.getLogger(__name__)


def queue_names(config: AppConfig) -> dict[Stage, str]:
    q = config.queue
    return {
        Stage.DISCOVERY: q.discovery_queue,
        Stage.SCRAPE: q.scrape_queue,
        Stage.PROFILE: q.profile_queue,
        Stage.PRETEXT: q.pretext_queue,
    }


def stage_concurrency(config: AppConfig) -> dict[Stage, int]:
    s = config.stages
    return {
        Stage.DISCOVERY: s.discovery_concurrency,
        Stage.SCRAPE: s.scrape_concurrency,
        Stage.PROFILE: s.profile_concurrency,
        Stage.PRETEXT: s.pretext_concurrency,
    }


@dataclass
class Pipeline:
    config: AppConfig
    store: Store
    notifier: Notifier
    queue: JobQueue
    aggregator: StatusAggregator
    discovery: DiscoveryStage
    scrape: ScrapeStage
    profile: ProfileStage
    pretext: PretextStage
    contacts: ContactDiscovery

    # -----------------------------
    # Workers
    # -----------------------------

    def handlers(self) -> dict[Stage, Any]:
        return {
            Stage.DISCOVERY: self.discovery.handle,
            Stage.SCRAPE: self.scrape.handle,
            Stage.PROFILE: self.profile.handle,
            Stage.PRETEXT: self.pretext.handle,
        }

    def register_workers(self, stages: list[Stage] | None = None) -> None:
        concurrency = stage_concurrency(self.config)
        for stage, handler in self.handlers().items():
            if stages is not None and stage not in stages:
                continue
            self.queue.register_worker(stage, concurrency[stage], handler)
        log.info("Registered %s stage worker(s)", ", ".join(s.value for s in (stages or Stage)))

    # -----------------------------
    # Discovery / scraping
    # -----------------------------

    def queue_domain_for_dns_lookup(self, domain: str) -> JobHandle:
        handle = self.queue.enqueue(Stage.DISCOVERY, {"domain": domain})
        log.info("Added domain %s to DNS lookup queue, job ID: %s", domain, handle.job_id)
        return handle

    def queue_source_for_scraping(
        self, source_id: int, source_url: str, source_domain: str | None
    ) -> JobHandle:
        return self.queue.enqueue(
            Stage.SCRAPE,
            {"sourceId": source_id, "sourceUrl": source_url, "sourceDomain": source_domain},
        )

    def queue_sources_for_targets(self, emails: list[str] | None = None) -> dict[str, Any]:
        """Enqueue every not-yet-mined source of the given targets (or of all targets)."""
        rows = repo.unmined_sources(self.store, emails or None)
        handles = [
            self.queue_source_for_scraping(r["id"], r["url"], r["source_domain_name"]) for r in rows
        ]
        if emails:
            message = (
                f"Queued {len(handles)} sources for {len(emails)} target(s)"
                if handles
                else f"No sources to scrape for {len(emails)} target(s)"
            )
        else:
            message = (
                f"Queued {len(handles)} sources for scraping" if handles else "No sources to scrape"
            )
        self.notifier.emit(
            SCRAPE_UPDATE,
            {"message": message, "targetCount": len(emails or []), "sourceCount": len(handles)},
        )
        return {"success": True, "message": message, "count": len(handles), "jobs": handles}

    # -----------------------------
    # Profile / pretext
    # -----------------------------

    def _require_target(self, email: str, status: TargetStatus) -> dict[str, Any]:
        target = repo.get_target(self.store, email)
        if target is None:
            raise PreconditionError(f"Target not found: {email}")
        if target["status"] != status.value:
            raise PreconditionError(f"Target status is {target['status']}, not {status.value}")
        return target

    def queue_profile_generation(self, email: str) -> JobHandle:
        self._require_target(email, TargetStatus.ENRICHED)
        return self.queue.enqueue(Stage.PROFILE, {"email": email})

    def queue_profiles_for_targets(
        self, emails: list[str], domain: str | None = None
    ) -> dict[str, Any]:
        eligible = [
            e
            for e in emails
            if (t := repo.get_target(self.store, e)) and t["status"] == TargetStatus.ENRICHED.value
        ]
        if not eligible:
            raise PreconditionError("No enriched targets found")
        handles = [self.queue.enqueue(Stage.PROFILE, {"email": e}) for e in eligible]
        message = f"Profile generation queued for {len(handles)} targets in {domain or 'selection'}"
        self.notifier.emit(RECON_UPDATE, {"message": message})
        return {"success": True, "message": message, "count": len(handles), "jobs": handles}

    def _require_prompt(self, prompt_id: int) -> None:
        if repo.get_prompt(self.store, prompt_id) is None:
            raise PreconditionError(f"Prompt not found: {prompt_id}")

    def queue_pretext_generation(self, email: str, prompt_id: int) -> JobHandle:
        self._require_target(email, TargetStatus.COMPLETE)
        self._require_prompt(prompt_id)
        return self.queue.enqueue(Stage.PRETEXT, {"email": email, "promptId": prompt_id})

    def queue_pretexts_for_targets(
        self, emails: list[str], prompt_id: int, domain: str | None = None
    ) -> dict[str, Any]:
        self._require_prompt(prompt_id)
        eligible = [
            e
            for e in emails
            if (t := repo.get_target(self.store, e)) and t["status"] == TargetStatus.COMPLETE.value
        ]
        if not eligible:
            raise PreconditionError("No complete targets found")
        handles = [
            self.queue.enqueue(Stage.PRETEXT, {"email": e, "promptId": prompt_id}) for e in eligible
        ]
        message = f"Pretext generation queued for {len(handles)} targets in {domain or 'selection'}"
        self.notifier.emit(RECON_UPDATE, {"message": message})
        return {"success": True, "message": message, "count": len(handles), "jobs": handles}

    # -----------------------------
    # Contact discovery
    # -----------------------------

    def start_recon(self, domain: str):
        return self.contacts.start_recon(domain)

    def discover_related_domains(self, domain: str) -> dict[str, Any]:
        return self.contacts.discover_related_domains(domain)

    def close(self) -> None:
        fetcher = getattr(self.scrape, "fetcher", None)
        if hasattr(fetcher, "close"):
            fetcher.close()
        self.store.close()


def build_pipeline(
    config: AppConfig | None = None,
    *,
    store: Store | None = None,
    queue: JobQueue | None = None,
    notifier: Notifier | None = None,
    redis: Redis | None = None,
    fetcher: Any = None,
    completion: Any = None,
    resolver: Any = None,
    hunter: Any = None,
    federation: Any = None,
) -> Pipeline:
    cfg = config or load_settings()
    if queue is None:
        redis = redis or get_redis()
        queue = RQJobQueue(
            redis,
            queue_names(cfg),
            job_timeout=cfg.queue.job_timeout_sec,
            result_ttl=cfg.queue.result_ttl_sec,
            failure_ttl=cfg.queue.failure_ttl_sec,
        )
    if notifier is None:
        sinks: list[Notifier] = [LogNotifier(logging.DEBUG)]
        if redis is not None:
            sinks.append(RedisNotifier(redis, cfg.notify_channel))
        notifier = FanoutNotifier(sinks)

    store = store or Store.open(cfg.db_path)
    completion = completion or CompletionClient(cfg.llm)
    fetcher = fetcher or SourceFetcher(
        user_agent=cfg.fetch.user_agent,
        timeout_s=cfg.fetch.timeout_sec,
        max_content_chars=cfg.fetch.max_content_chars,
    )

    aggregator = StatusAggregator(store, notifier)
    contact_kwargs: dict[str, Any] = {"hunter": hunter or HunterClient(cfg.hunter)}
    if federation is not None:
        contact_kwargs["federation"] = federation

    pipeline = Pipeline(
        config=cfg,
        store=store,
        notifier=notifier,
        queue=queue,
        aggregator=aggregator,
        discovery=DiscoveryStage(
            store, notifier, resolver=resolver, dns_timeout_s=cfg.fetch.dns_timeout_sec
        ),
        scrape=ScrapeStage(store, notifier, aggregator, fetcher),
        profile=ProfileStage(
            store,
            notifier,
            completion,
            max_tokens=cfg.llm.profile_max_tokens,
            tool_bytes_budget=cfg.llm.profile_tool_bytes_budget,
        ),
        pretext=PretextStage(store, notifier, completion, max_tokens=cfg.llm.pretext_max_tokens),
        contacts=ContactDiscovery(store, notifier, aggregator, **contact_kwargs),
    )
    pipeline.contacts.enqueue_discovery = pipeline.queue_domain_for_dns_lookup
    return pipeline


__all__ = ["Pipeline", "build_pipeline", "queue_names", "stage_concurrency"]
