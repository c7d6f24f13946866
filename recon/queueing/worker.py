# recon/queueing/worker.py
"""
Worker launcher: one rq WorkerPool per stage, sized to the stage's
concurrency. Several stages started together each get their own process.

  RQ_WORKER_CLASS   optional dotted path of an rq Worker subclass
"""

from __future__ import annotations

import importlib
import logging
import multiprocessing
import os

from rq import SimpleWorker as RQSimpleWorker
from rq import Worker as RQWorker
from rq.worker_pool import WorkerPool

from recon.config import load_settings
from recon.queueing.payloads import Stage
from recon.queueing.redis_conn import get_redis

log = logging.getLogger(__name__)


def _select_worker_cls():
    """
    Windows: always SimpleWorker (the forking Worker relies on os.wait4).
    Elsewhere: honor RQ_WORKER_CLASS if provided; else Worker.
    """
    env_cls = os.getenv("RQ_WORKER_CLASS", "").strip()
    if os.name == "nt":
        if env_cls and not env_cls.endswith("SimpleWorker"):
            log.warning("Ignoring RQ_WORKER_CLASS=%s on Windows; using rq.SimpleWorker", env_cls)
        return RQSimpleWorker
    if env_cls:
        mod, name = env_cls.rsplit(".", 1)
        return getattr(importlib.import_module(mod), name)
    return RQWorker


def _configure_logging() -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def run_stage(stage: Stage | str, *, burst: bool = False) -> None:
    """
    Block running a WorkerPool for one stage.

    Nothing stateful is opened here: the pool forks its workers, and each job
    runs in a process that builds its own pipeline on first use
    (see recon.queueing.tasks).
    """
    from recon.pipeline import queue_names, stage_concurrency

    _configure_logging()
    st = Stage(stage)
    cfg = load_settings()
    name = queue_names(cfg)[st]
    workers = max(1, stage_concurrency(cfg)[st])
    worker_cls = _select_worker_cls()

    print(f"*** Starting {worker_cls.__module__}.{worker_cls.__name__} x{workers}")
    print(f"Queue: {name} ({st.value})")
    log.info("Stage %s: queue=%s workers=%d burst=%s", st.value, name, workers, burst)

    pool = WorkerPool([name], connection=get_redis(), num_workers=workers, worker_class=worker_cls)
    pool.start(burst=burst)


def run(stages: list[str] | None = None, *, burst: bool = False) -> None:
    selected = [Stage(s) for s in stages] if stages else list(Stage)
    if len(selected) == 1:
        run_stage(selected[0], burst=burst)
        return

    _configure_logging()
    procs = [
        multiprocessing.Process(
            target=run_stage, args=(st,), kwargs={"burst": burst}, name=f"recon-{st.value}"
        )
        for st in selected
    ]
    for p in procs:
        p.start()
    log.info("Started %d stage worker process(es)", len(procs))
    try:
        for p in procs:
            p.join()
    except KeyboardInterrupt:
        log.warning("Interrupted; stopping stage workers")
        for p in procs:
            p.terminate()
        for p in procs:
            p.join()


if __name__ == "__main__":
    run(
        [s.strip() for s in os.getenv("RECON_STAGES", "").split(",") if s.strip()] or None,
        burst=os.getenv("RQ_BURST", "").strip().lower() in {"1", "true", "yes", "on"},
    )
