# recon/queueing/tasks.py
"""
rq entry point shared by every stage queue.

Each process keeps its own registry of stage handlers. Handlers hold an open
sqlite3 connection and HTTP client, neither of which may cross a fork, so a
registry inherited from a parent process is discarded. A process that
receives a job with no handlers of its own (an rq work-horse, a spawned
worker) bootstraps the default pipeline from configuration first.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from typing import Any

from rq import get_current_job

from recon.config import load_settings
from recon.queueing.payloads import Stage
from recon.queueing.rate_limit import stage_slot
from recon.queueing.redis_conn import get_redis

log = logging.getLogger(__name__)

_HANDLERS: dict[Stage, tuple[Callable[[dict[str, Any]], Any], int]] = {}
_BOOT_LOCK = threading.Lock()
_OWNER_PID: int | None = None


def register_handler(
    stage: Stage | str, handler: Callable[[dict[str, Any]], Any], concurrency: int
) -> None:
    global _OWNER_PID
    if _OWNER_PID != os.getpid():
        _HANDLERS.clear()
        _OWNER_PID = os.getpid()
    _HANDLERS[Stage(stage)] = (handler, max(1, int(concurrency)))


def clear_handlers() -> None:
    global _OWNER_PID
    _HANDLERS.clear()
    _OWNER_PID = None


def _discard_inherited() -> None:
    if _HANDLERS and _OWNER_PID != os.getpid():
        log.info("Dropping %d stage handler(s) inherited from pid %s", len(_HANDLERS), _OWNER_PID)
        clear_handlers()


def _bootstrap() -> None:
    from recon.pipeline import build_pipeline  # local import: pipeline imports this module

    with _BOOT_LOCK:
        if _HANDLERS:
            return
        log.info("No stage handlers registered in this process; bootstrapping pipeline")
        build_pipeline().register_workers()


def _lookup(stage: Stage) -> tuple[Callable[[dict[str, Any]], Any], int]:
    _discard_inherited()
    entry = _HANDLERS.get(stage)
    if entry is None:
        _bootstrap()
        entry = _HANDLERS.get(stage)
    if entry is None:
        raise LookupError(f"No handler registered for stage {stage.value}")
    return entry


def run_stage_job(stage: str, payload: dict[str, Any]) -> Any:
    """
    RQ task: run one stage handler under the stage's concurrency slot.

    Failures are logged and re-raised so rq files the job in the
    FailedJobRegistry. There is no retry policy.
    """
    st = Stage(stage)
    handler, concurrency = _lookup(st)
    job = get_current_job()
    job_id = job.id if job is not None else None
    redis = job.connection if job is not None else get_redis()

    log.info("Processing %s job %s: %s", st.value, job_id, payload)
    with stage_slot(
        st.value,
        redis=redis,
        max_concurrency=concurrency,
        acquire_timeout_s=load_settings().queue.slot_acquire_timeout_sec,
    ):
        try:
            result = handler(payload)
        except Exception as exc:
            log.error("%s job %s failed: %s", st.value, job_id, exc)
            raise
    log.info("%s job %s completed", st.value, job_id)
    return result
