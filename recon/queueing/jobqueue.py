# recon/queueing/jobqueue.py
"""
Job queues, one named channel per stage.

Two implementations share the same contract:

  enqueue(stage, payload) -> JobHandle
  register_worker(stage, concurrency, handler)

RQJobQueue keeps jobs in Redis until a worker acknowledges them (at-least-once);
InlineJobQueue runs handlers in-process on a bounded thread pool per stage and
is used for single-process runs and tests.

Neither retries: a handler that raises marks its job failed, and only an
explicit re-enqueue runs it again.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Protocol

from redis import Redis
from rq import Queue

from recon.queueing import tasks
from recon.queueing.payloads import Stage, validate_payload

log = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]

STATUS_QUEUED = "queued"
STATUS_FINISHED = "finished"
STATUS_FAILED = "failed"


@dataclass
class JobHandle:
    stage: Stage
    job_id: str
    status: str = STATUS_QUEUED
    result: Any = None
    error: str | None = None


class JobQueue(Protocol):
    def enqueue(self, stage: Stage | str, payload: dict[str, Any]) -> JobHandle: ...

    def register_worker(self, stage: Stage | str, concurrency: int, handler: Handler) -> None: ...


# -----------------------------
# Redis / rq
# -----------------------------


class RQJobQueue:
    def __init__(
        self,
        connection: Redis,
        queue_names: dict[Stage, str],
        *,
        job_timeout: int = 900,
        result_ttl: int = 0,
        failure_ttl: int = 7 * 86400,
    ) -> None:
        self.connection = connection
        self.queues: dict[Stage, Queue] = {
            stage: Queue(name, connection=connection) for stage, name in queue_names.items()
        }
        self.job_timeout = job_timeout
        self.result_ttl = result_ttl
        self.failure_ttl = failure_ttl
        self.concurrency: dict[Stage, int] = {}

    def queue(self, stage: Stage | str) -> Queue:
        return self.queues[Stage(stage)]

    def enqueue(self, stage: Stage | str, payload: dict[str, Any]) -> JobHandle:
        st = Stage(stage)
        body = validate_payload(st, payload)
        job = self.queue(st).enqueue(
            tasks.run_stage_job,
            st.value,
            body,
            job_timeout=self.job_timeout,
            result_ttl=self.result_ttl,
            failure_ttl=self.failure_ttl,
            description=f"{st.value} {body}",
        )
        log.info("Queued %s job %s on %s", st.value, job.id, self.queue(st).name)
        return JobHandle(stage=st, job_id=job.id)

    def register_worker(self, stage: Stage | str, concurrency: int, handler: Handler) -> None:
        st = Stage(stage)
        self.concurrency[st] = max(1, int(concurrency))
        tasks.register_handler(st, handler, self.concurrency[st])

    def counts(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for stage, q in self.queues.items():
            out.append(
                {
                    "stage": stage.value,
                    "name": q.name,
                    "queued": q.count,
                    "started": q.started_job_registry.count,
                    "failed": q.failed_job_registry.count,
                }
            )
        return out

    def requeue_failed(self, stage: Stage | str) -> int:
        """Explicit re-enqueue of every failed job of a stage; returns how many."""
        registry = self.queue(stage).failed_job_registry
        job_ids = registry.get_job_ids()
        for job_id in job_ids:
            registry.requeue(job_id)
        if job_ids:
            log.warning("Requeued %d failed %s job(s)", len(job_ids), Stage(stage).value)
        return len(job_ids)


# -----------------------------
# In-process
# -----------------------------


class InlineJobQueue:
    """
    In-process queue with a bounded thread pool per stage.

    Jobs enqueued before a worker is registered wait in a FIFO backlog.
    With synchronous=True handlers run in the caller's thread instead, which
    keeps tests deterministic.
    """

    def __init__(self, *, synchronous: bool = False) -> None:
        self.synchronous = synchronous
        self.handlers: dict[Stage, Handler] = {}
        self.concurrency: dict[Stage, int] = {}
        self.handles: list[JobHandle] = []
        self._pools: dict[Stage, ThreadPoolExecutor] = {}
        self._backlog: dict[Stage, deque[tuple[JobHandle, dict[str, Any]]]] = {}
        self._futures: list[Future] = []
        self._lock = threading.Lock()

    def register_worker(self, stage: Stage | str, concurrency: int, handler: Handler) -> None:
        st = Stage(stage)
        with self._lock:
            self.handlers[st] = handler
            self.concurrency[st] = max(1, int(concurrency))
            if not self.synchronous and st not in self._pools:
                self._pools[st] = ThreadPoolExecutor(
                    max_workers=self.concurrency[st], thread_name_prefix=f"recon-{st.value}"
                )
            backlog = self._backlog.pop(st, deque())
        while backlog:
            handle, body = backlog.popleft()
            self._dispatch(handle, body)

    def enqueue(self, stage: Stage | str, payload: dict[str, Any]) -> JobHandle:
        st = Stage(stage)
        body = validate_payload(st, payload)
        handle = JobHandle(stage=st, job_id=uuid.uuid4().hex)
        with self._lock:
            self.handles.append(handle)
            if st not in self.handlers:
                self._backlog.setdefault(st, deque()).append((handle, body))
                return handle
        self._dispatch(handle, body)
        return handle

    def _dispatch(self, handle: JobHandle, body: dict[str, Any]) -> None:
        if self.synchronous:
            self._run(handle, body)
            return
        fut = self._pools[handle.stage].submit(self._run, handle, body)
        with self._lock:
            self._futures.append(fut)

    def _run(self, handle: JobHandle, body: dict[str, Any]) -> JobHandle:
        handler = self.handlers[handle.stage]
        try:
            handle.result = handler(body)
            handle.status = STATUS_FINISHED
        except Exception as exc:  # noqa: BLE001
            handle.status = STATUS_FAILED
            handle.error = str(exc)
            log.error("Job %s (%s) failed: %s", handle.job_id, handle.stage.value, exc)
        return handle

    def join(self) -> None:
        """Wait until every dispatched job, including ones queued by handlers, is done."""
        while True:
            with self._lock:
                pending = [f for f in self._futures if not f.done()]
            if not pending:
                return
            for fut in pending:
                fut.result()

    def pending(self, stage: Stage | str) -> int:
        return len(self._backlog.get(Stage(stage), ()))

    def shutdown(self) -> None:
        self.join()
        for pool in self._pools.values():
            pool.shutdown(wait=True)
        self._pools.clear()


__all__ = [
    "Handler",
    "JobHandle",
    "JobQueue",
    "RQJobQueue",
    "InlineJobQueue",
    "STATUS_QUEUED",
    "STATUS_FINISHED",
    "STATUS_FAILED",
]
