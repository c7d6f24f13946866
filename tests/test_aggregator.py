from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from recon import repository as repo
from recon.notify import TARGET_STATUS_UPDATED
from recon.stages.aggregator import StatusAggregator
from recon.status import SourceStatus

from conftest import seed_target


def _settle(store, sid, status=SourceStatus.MINED):
    repo.set_source_status(store, sid, SourceStatus.PROCESSING)
    repo.set_source_status(store, sid, status)


def test_advances_once_all_sources_settled(store, notifier):
    a, b = seed_target(store, "t@acme.com", ["https://x.example/1", "https://x.example/2"])
    agg = StatusAggregator(store, notifier)

    _settle(store, a)
    assert agg.on_source_settled(a) == []
    assert repo.get_target(store, "t@acme.com")["status"] == "pending"

    _settle(store, b, SourceStatus.FAILED)
    assert agg.on_source_settled(b) == ["t@acme.com"]
    assert repo.get_target(store, "t@acme.com")["status"] == "enriched"
    (event,) = notifier.of(TARGET_STATUS_UPDATED)
    assert event["email"] == "t@acme.com"
    assert event["status"] == "enriched"


def test_processing_source_blocks_advance(store, notifier):
    a, b = seed_target(store, "t@acme.com", ["https://x.example/1", "https://x.example/2"])
    _settle(store, a)
    repo.set_source_status(store, b, SourceStatus.PROCESSING)

    assert StatusAggregator(store, notifier).try_advance_target("t@acme.com") is False
    assert notifier.events == []


def test_zero_sources_never_advances(store, notifier):
    seed_target(store, "lonely@acme.com", [])
    assert StatusAggregator(store, notifier).try_advance_target("lonely@acme.com") is False
    assert repo.get_target(store, "lonely@acme.com")["status"] == "pending"


def test_repeat_calls_notify_exactly_once(store, notifier):
    (a,) = seed_target(store, "t@acme.com", ["https://x.example/1"])
    _settle(store, a)
    agg = StatusAggregator(store, notifier)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: agg.try_advance_target("t@acme.com"), range(16)))

    assert results.count(True) == 1
    assert len(notifier.of(TARGET_STATUS_UPDATED)) == 1


def test_shared_source_advances_every_mapped_target(store, notifier):
    (shared,) = seed_target(store, "a@acme.com", ["https://x.example/shared"])
    repo.upsert_target(
        store, email="b@acme.com", name="B", domain_name="acme.com", tenure_start=None
    )
    repo.map_target_source(store, "b@acme.com", shared)
    _settle(store, shared)

    advanced = StatusAggregator(store, notifier).on_source_settled(shared)
    assert sorted(advanced) == ["a@acme.com", "b@acme.com"]


def test_complete_target_is_left_alone(store, notifier):
    (a,) = seed_target(store, "t@acme.com", ["https://x.example/1"])
    _settle(store, a)
    store.run("UPDATE Target SET status = 'complete' WHERE email = 't@acme.com'")

    assert StatusAggregator(store, notifier).try_advance_target("t@acme.com") is False
    assert repo.get_target(store, "t@acme.com")["status"] == "complete"
