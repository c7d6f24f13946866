# recon/notify.py
"""
Notification sinks: emit(event, payload).

Observers (a UI, a log tail) subscribe to the Redis pub/sub channel. Events
may be delivered more than once; consumers must tolerate duplicates.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any, Protocol

from redis import Redis
from redis.exceptions import RedisError

from recon.db import utc_now_iso

log = logging.getLogger(__name__)

# Event names
DOMAIN_UPDATED = "domainUpdated"
SOURCE_UPDATE = "sourceUpdate"
SOURCE_MINED = "sourceMined"
SOURCE_FAILED = "sourceFailed"
TARGET_STATUS_UPDATED = "targetStatusUpdated"
PROFILE_GENERATED = "profileGenerated"
PRETEXT_GENERATED = "pretextGenerated"
RECON_UPDATE = "reconUpdate"
RECON_COMPLETE = "reconComplete"
RELATED_DOMAINS_FOUND = "relatedDomainsFound"
SCRAPE_UPDATE = "scrapeUpdate"
TARGET_DELETED = "targetDeleted"
PRETEXT_STATUS_UPDATED = "pretextStatusUpdated"


class Notifier(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None: ...


class LogNotifier:
    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        log.log(self.level, "event %s %s", event, json.dumps(payload, default=str))


class RedisNotifier:
    """Publish events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis: Redis, channel: str) -> None:
        self.redis = redis
        self.channel = channel

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps({"event": event, "payload": payload, "ts": utc_now_iso()}, default=str)
        try:
            self.redis.publish(self.channel, message)
        except RedisError:
            # observers are best-effort
            log.exception("Failed to publish %s on %s", event, self.channel)


class FanoutNotifier:
    def __init__(self, sinks: Iterable[Notifier]) -> None:
        self.sinks = list(sinks)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        for sink in self.sinks:
            sink.emit(event, payload)


__all__ = [
    "Notifier",
    "LogNotifier",
    "RedisNotifier",
    "FanoutNotifier",
    "DOMAIN_UPDATED",
    "SOURCE_UPDATE",
    "SOURCE_MINED",
    "SOURCE_FAILED",
    "TARGET_STATUS_UPDATED",
    "PROFILE_GENERATED",
    "PRETEXT_GENERATED",
    "RECON_UPDATE",
    "RECON_COMPLETE",
    "RELATED_DOMAINS_FOUND",
    "SCRAPE_UPDATE",
    "TARGET_DELETED",
    "PRETEXT_STATUS_UPDATED",
]
