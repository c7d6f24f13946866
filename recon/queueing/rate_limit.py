# recon/queueing/rate_limit.py
"""
Per-stage concurrency cap shared by every worker host.

A stage's counter lives at sem:stage:<stage>. Each running job holds one
unit; the counter carries a TTL equal to the default job timeout, so a
worker killed mid-job cannot pin a slot forever.
"""

import logging
import time
from contextlib import contextmanager

from redis import Redis
from redis.exceptions import RedisError, WatchError

log = logging.getLogger(__name__)

STAGE_SEM = "sem:stage:{stage}"
SEM_TTL = 900


def _counter(raw) -> int:
    return int(raw) if raw is not None else 0


def try_acquire(redis: Redis, key: str, limit: int) -> bool:
    """Take one unit under `key` unless `limit` units are already held."""
    with redis.pipeline() as p:
        while True:
            try:
                p.watch(key)
                held = _counter(p.get(key))
                if held >= limit:
                    p.reset()
                    return False
                p.multi()
                p.incr(key)
                p.expire(key, SEM_TTL)
                p.execute()
                return True
            except WatchError:
                # another job moved the counter between WATCH and EXEC
                continue


def release(redis: Redis, key: str) -> None:
    """Return one unit; the counter is deleted at zero and never goes negative."""
    with redis.pipeline() as p:
        while True:
            try:
                p.watch(key)
                remaining = _counter(p.get(key)) - 1
                p.multi()
                if remaining > 0:
                    p.set(key, remaining, ex=SEM_TTL)
                else:
                    p.delete(key)
                p.execute()
                return
            except WatchError:
                continue
            except RedisError as exc:
                # the TTL reclaims the unit eventually
                log.warning("Could not release %s: %s", key, exc)
                return


@contextmanager
def stage_slot(
    stage: str,
    *,
    redis: Redis,
    max_concurrency: int,
    acquire_timeout_s: float = 600.0,
    poll_ms: int = 100,
):
    """Hold one of `max_concurrency` slots for `stage`; TimeoutError if none frees up."""
    limit = max(1, int(max_concurrency))
    key = STAGE_SEM.format(stage=stage)
    deadline = time.monotonic() + acquire_timeout_s
    while not try_acquire(redis, key, limit):
        if time.monotonic() > deadline:
            raise TimeoutError(f"No {stage} slot free after {acquire_timeout_s:g}s")
        time.sleep(poll_ms / 1000.0)
    try:
        yield key
    finally:
        release(redis, key)
