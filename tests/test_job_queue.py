from __future__ import annotations

import threading
import time
import types

import fakeredis
import pytest
from pydantic import ValidationError

from recon.queueing import tasks
from recon.queueing.jobqueue import (
    STATUS_FAILED,
    STATUS_FINISHED,
    InlineJobQueue,
    RQJobQueue,
)
from recon.queueing.payloads import Stage, validate_payload

QUEUE_NAMES = {
    Stage.DISCOVERY: "dns_lookups",
    Stage.SCRAPE: "source-scraper",
    Stage.PROFILE: "profile-generation",
    Stage.PRETEXT: "pretext-generation",
}


class TestPayloads:
    def test_scrape_payload_keeps_camel_case(self):
        body = validate_payload(
            "scraping", {"sourceId": "7", "sourceUrl": "https://x.example", "sourceDomain": None}
        )
        assert body == {"sourceId": 7, "sourceUrl": "https://x.example", "sourceDomain": None}

    def test_discovery_domain_normalized(self):
        body = validate_payload(Stage.DISCOVERY, {"domain": " Acme.COM. "})
        assert body == {"domain": "acme.com"}

    def test_missing_field_rejected(self):
        with pytest.raises(ValidationError):
            validate_payload(Stage.PRETEXT, {"email": "a@acme.com"})


class TestRQJobQueue:
    def test_enqueue_lands_on_named_queue(self):
        r = fakeredis.FakeRedis()
        q = RQJobQueue(r, QUEUE_NAMES, job_timeout=60)
        handle = q.enqueue(Stage.SCRAPE, {"sourceId": 1, "sourceUrl": "https://x.example"})

        rq_queue = q.queue(Stage.SCRAPE)
        assert rq_queue.name == "source-scraper"
        assert rq_queue.count == 1
        job = rq_queue.fetch_job(handle.job_id)
        assert job.func_name == "recon.queueing.tasks.run_stage_job"
        assert tuple(job.args) == (
            "scraping",
            {"sourceId": 1, "sourceUrl": "https://x.example", "sourceDomain": None},
        )

    def test_counts_report_every_stage(self):
        r = fakeredis.FakeRedis()
        q = RQJobQueue(r, QUEUE_NAMES)
        q.enqueue(Stage.DISCOVERY, {"domain": "acme.com"})
        counts = {c["stage"]: c for c in q.counts()}
        assert set(counts) == {s.value for s in Stage}
        assert counts["discovery"]["queued"] == 1
        assert counts["pretext-synthesis"]["queued"] == 0

    def test_requeue_failed_is_explicit(self):
        q = RQJobQueue(fakeredis.FakeRedis(), QUEUE_NAMES)
        requeued: list[str] = []
        registry = types.SimpleNamespace(
            get_job_ids=lambda: ["j1", "j2"], requeue=requeued.append
        )
        q.queues[Stage.PROFILE] = types.SimpleNamespace(failed_job_registry=registry)

        assert q.requeue_failed("profile-synthesis") == 2
        assert requeued == ["j1", "j2"]

    def test_register_worker_fills_task_registry(self):
        q = RQJobQueue(fakeredis.FakeRedis(), QUEUE_NAMES)
        q.register_worker(Stage.DISCOVERY, 1, lambda p: {"ok": p["domain"]})
        assert Stage.DISCOVERY in tasks._HANDLERS


class TestRunStageJob:
    def test_runs_handler_under_slot(self, monkeypatch):
        r = fakeredis.FakeRedis()
        monkeypatch.setattr(tasks, "get_redis", lambda: r)
        seen = []

        def handler(payload):
            seen.append(r.get("sem:stage:discovery"))
            return {"domain": payload["domain"]}

        tasks.register_handler(Stage.DISCOVERY, handler, 1)
        assert tasks.run_stage_job("discovery", {"domain": "acme.com"}) == {"domain": "acme.com"}
        assert seen == [b"1"]
        assert r.get("sem:stage:discovery") is None

    def test_failure_is_reraised_and_slot_released(self, monkeypatch):
        r = fakeredis.FakeRedis()
        monkeypatch.setattr(tasks, "get_redis", lambda: r)

        def handler(payload):
            raise RuntimeError("nope")

        tasks.register_handler(Stage.SCRAPE, handler, 5)
        with pytest.raises(RuntimeError):
            tasks.run_stage_job("scraping", {"sourceId": 1, "sourceUrl": "u"})
        assert r.get("sem:stage:scraping") is None

    def test_handlers_inherited_across_fork_are_rebuilt(self, monkeypatch):
        r = fakeredis.FakeRedis()
        monkeypatch.setattr(tasks, "get_redis", lambda: r)
        tasks.register_handler(Stage.DISCOVERY, lambda p: "parent", 1)
        # the registry now looks like it was filled by another process
        monkeypatch.setattr(tasks, "_OWNER_PID", -1)
        boots = []

        def fake_bootstrap():
            boots.append(True)
            tasks.register_handler(Stage.DISCOVERY, lambda p: "child", 1)

        monkeypatch.setattr(tasks, "_bootstrap", fake_bootstrap)

        assert tasks.run_stage_job("discovery", {"domain": "acme.com"}) == "child"
        assert tasks.run_stage_job("discovery", {"domain": "acme.com"}) == "child"
        assert boots == [True]


class TestWorkerLauncher:
    def test_run_stage_opens_nothing_before_forking(self, monkeypatch):
        from recon import pipeline as pipeline_mod
        from recon.queueing import worker

        def no_build(*args, **kwargs):
            raise AssertionError("pipeline built in the launcher process")

        started = {}

        class StubPool:
            def __init__(self, queues, *, connection, num_workers, worker_class):
                started.update(queues=queues, num_workers=num_workers)

            def start(self, burst=False):
                started["burst"] = burst

        monkeypatch.setattr(pipeline_mod, "build_pipeline", no_build)
        monkeypatch.setattr(worker, "WorkerPool", StubPool)
        monkeypatch.setattr(worker, "get_redis", fakeredis.FakeRedis)
        monkeypatch.delenv("RQ_WORKER_CLASS", raising=False)

        worker.run_stage(Stage.SCRAPE, burst=True)

        assert started["num_workers"] >= 1
        assert started["burst"] is True
        assert len(started["queues"]) == 1
        assert tasks._HANDLERS == {}


class TestInlineJobQueue:
    def test_failure_recorded_without_retry(self):
        q = InlineJobQueue(synchronous=True)
        calls = []

        def handler(payload):
            calls.append(payload)
            raise ValueError("broken")

        q.register_worker(Stage.PROFILE, 3, handler)
        handle = q.enqueue(Stage.PROFILE, {"email": "a@acme.com"})
        assert handle.status == STATUS_FAILED
        assert "broken" in handle.error
        assert len(calls) == 1

    def test_backlog_drains_on_register(self):
        q = InlineJobQueue(synchronous=True)
        handle = q.enqueue(Stage.DISCOVERY, {"domain": "acme.com"})
        assert q.pending(Stage.DISCOVERY) == 1
        q.register_worker(Stage.DISCOVERY, 1, lambda p: p["domain"])
        assert handle.status == STATUS_FINISHED
        assert handle.result == "acme.com"
        assert q.pending(Stage.DISCOVERY) == 0

    def test_thread_pool_bounds_concurrency(self):
        q = InlineJobQueue()
        lock = threading.Lock()
        state = {"cur": 0, "max": 0}

        def handler(payload):
            with lock:
                state["cur"] += 1
                state["max"] = max(state["max"], state["cur"])
            time.sleep(0.02)
            with lock:
                state["cur"] -= 1

        q.register_worker(Stage.SCRAPE, 2, handler)
        for i in range(10):
            q.enqueue(Stage.SCRAPE, {"sourceId": i, "sourceUrl": f"https://x.example/{i}"})
        q.shutdown()

        assert state["max"] <= 2
        assert all(h.status == STATUS_FINISHED for h in q.handles)
