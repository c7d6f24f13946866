# ruff: noqa: E402
# tests/conftest.py
from __future__ import annotations

import dataclasses
import sys
import threading
from pathlib import Path
from typing import Any

import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from recon import repository as repo
from recon.config import AppConfig, load_settings
from recon.db import Store
from recon.llm.client import Completion, ToolCall
from recon.queueing import tasks


class RecordingNotifier:
    """Collects emitted events in order; thread-safe for the inline queue."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((event, dict(payload)))

    def names(self) -> list[str]:
        return [e for e, _ in self.events]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [p for e, p in self.events if e == event]


class ScriptedCompletion:
    """
    Completion stub that replays a script, one step per call.

    A step is a Completion to return, an exception to raise, or a callable
    receiving the call kwargs. Once the script runs out, `default` is used.
    """

    def __init__(self, steps: list[Any] | None = None, default: Any = None) -> None:
        self.steps = list(steps or [])
        self.default = default
        self.calls: list[dict[str, Any]] = []

    def complete(self, **kwargs: Any) -> Completion:
        self.calls.append(kwargs)
        step = self.steps.pop(0) if self.steps else self.default
        if step is None:
            raise AssertionError("completion script exhausted")
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(kwargs)
        return step

    def tool_loop_calls(self) -> list[dict[str, Any]]:
        return [c for c in self.calls if c.get("tools")]


def text(value: str) -> Completion:
    return Completion(text=value)


def read_call(index: Any, call_id: str = "call_1") -> Completion:
    return Completion(
        tool_calls=[ToolCall(id=call_id, name="read_source_data", arguments={"sourceIndex": index})]
    )


class FakeFetcher:
    """Maps URL -> content dict, or an exception to raise."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[str] = []

    def fetch(self, url: str) -> dict[str, Any]:
        self.calls.append(url)
        result = self.responses.get(url)
        if isinstance(result, Exception):
            raise result
        if result is None:
            result = {
                "statusCode": 200,
                "contentType": "text/html",
                "content": f"content of {url}",
                "scrapedAt": "2024-01-01T00:00:00Z",
            }
        return result


def seed_target(
    store: Store,
    email: str,
    urls: list[str],
    *,
    domain: str = "acme.com",
    name: str | None = "Test Person",
) -> list[int]:
    """Insert a pending target mapped to one pending source per URL; returns source ids."""
    repo.ensure_domain(store, domain)
    repo.upsert_target(store, email=email, name=name, domain_name=domain, tenure_start=None)
    ids = []
    for url in urls:
        sid = repo.insert_source(
            store,
            url=url,
            source_domain_name=url.split("/")[2] if "//" in url else None,
            discovery_method="hunter.io",
            data=None,
        )
        repo.map_target_source(store, email, sid)
        ids.append(sid)
    return ids


@pytest.fixture
def store(tmp_path: Path):
    s = Store.open(str(tmp_path / "recon.db"))
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings(tmp_path: Path) -> AppConfig:
    cfg = load_settings()
    return dataclasses.replace(
        cfg,
        db_path=str(tmp_path / "recon.db"),
        llm=dataclasses.replace(cfg.llm, api_key=None),
        hunter=dataclasses.replace(cfg.hunter, api_key="test-key", max_attempts=3),
    )


@pytest.fixture(autouse=True)
def _clear_stage_handlers():
    tasks.clear_handlers()
    yield
    tasks.clear_handlers()
