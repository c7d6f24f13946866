from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from recon import cli
from recon import repository as repo
from recon.db import Store
from recon.pipeline import build_pipeline
from recon.queueing.jobqueue import InlineJobQueue
from recon.resolve.dns_records import DnsRecords

from conftest import FakeFetcher, RecordingNotifier

LIBRARY = Path(__file__).resolve().parents[1] / "prompt_library"

BODY = {
    "data": {
        "pattern": "{first}",
        "emails": [
            {
                "value": "jane@acme.com",
                "first_name": "Jane",
                "sources": [{"uri": "https://x.example/j"}],
            }
        ],
    }
}


class StubHunter:
    def search_domain(self, domain):
        return BODY


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "cli.db"
    monkeypatch.setenv("DATABASE_PATH", str(path))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    return path


@pytest.fixture
def inline_pipeline(settings, db_path, monkeypatch):
    cfg = dataclasses.replace(settings, db_path=str(db_path))

    def patched(*args, **kwargs):
        p = build_pipeline(
            cfg,
            store=Store.open(str(db_path)),
            queue=InlineJobQueue(synchronous=True),
            notifier=RecordingNotifier(),
            fetcher=FakeFetcher(),
            completion=object(),
            resolver=lambda d: DnsRecords(mx="10 mx." + d),
            hunter=StubHunter(),
        )
        p.register_workers()
        return p

    monkeypatch.setattr(cli, "build_pipeline", patched)


def _store(db_path):
    return Store.open(str(db_path))


def test_init_db_and_load_prompts(db_path, capsys):
    assert cli.main(["init-db"]) == 0
    assert db_path.exists()

    assert cli.main(["load-prompts", "--dir", str(LIBRARY)]) == 0
    out = capsys.readouterr().out
    assert "Added 1 prompt(s)" in out

    assert cli.main(["load-prompts", "--dir", str(LIBRARY)]) == 0
    assert "Added 0 prompt(s)" in capsys.readouterr().out


def test_recon_with_scrape_then_status(inline_pipeline, db_path, capsys):
    assert cli.main(["add-domain", "Acme.com"]) == 0
    assert cli.main(["recon", "acme.com", "--scrape"]) == 0
    assert "1 contact(s)" in capsys.readouterr().out

    store = _store(db_path)
    try:
        assert repo.get_domain(store, "acme.com")["mx"] == "10 mx.acme.com"
        assert repo.get_target(store, "jane@acme.com")["status"] == "enriched"
    finally:
        store.close()

    assert cli.main(["status", "--json", "--domain", "acme.com"]) == 0
    report = json.loads(capsys.readouterr().out)
    (target,) = report["targets"]
    assert (target["email"], target["status"], target["source_count"]) == (
        "jane@acme.com",
        "enriched",
        1,
    )


def test_precondition_failure_exits_nonzero(inline_pipeline, db_path, capsys):
    assert cli.main(["profile", "ghost@acme.com"]) == 1
    assert "error: Target not found" in capsys.readouterr().err


def test_pretext_status_rejects_unknown_id(inline_pipeline, capsys):
    assert cli.main(["pretext-status", "7", "approved"]) == 1
    assert "Pretext not found" in capsys.readouterr().err


def test_requeue_failed_requires_known_stage(capsys):
    with pytest.raises(SystemExit):
        cli.main(["requeue-failed", "bogus"])
