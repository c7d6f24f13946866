# recon/queueing/redis_conn.py
from functools import lru_cache

from redis import Redis

from recon.config import load_settings


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    """Process-wide connection for rq queues, stage semaphores and event publishing."""
    # rq pickles job data, so responses must stay bytes
    return Redis.from_url(load_settings().queue.rq_redis_url, decode_responses=False)
