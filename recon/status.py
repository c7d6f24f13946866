"""
Status vocabularies and transition tables for Target, SourceData and Pretext.

The string values are persisted as-is and must stay bit-exact.

Target:
    pending  -> enriched   (aggregator, once every mapped source has settled)
    enriched -> complete   (profile stage, after a profile was written)
    enriched/complete/failed -> pending   (contact discovery reopens a target
                                           that gained a new unsettled source)

SourceData:
    pending/mined/failed/processing -> processing   (scrape picked it up; a
                                                     replayed job may re-enter)
    processing -> mined | failed
"""

from __future__ import annotations

from enum import Enum

from recon.exceptions import IllegalTransitionError


class TargetStatus(str, Enum):
    PENDING = "pending"
    ENRICHED = "enriched"
    COMPLETE = "complete"
    FAILED = "failed"


class SourceStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    MINED = "mined"
    FAILED = "failed"


class PretextStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    REJECTED = "rejected"


TARGET_TRANSITIONS: dict[TargetStatus, frozenset[TargetStatus]] = {
    TargetStatus.PENDING: frozenset({TargetStatus.ENRICHED, TargetStatus.FAILED}),
    TargetStatus.ENRICHED: frozenset(
        {TargetStatus.COMPLETE, TargetStatus.PENDING, TargetStatus.FAILED}
    ),
    TargetStatus.COMPLETE: frozenset({TargetStatus.PENDING}),
    TargetStatus.FAILED: frozenset({TargetStatus.PENDING}),
}

SOURCE_TRANSITIONS: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.PENDING: frozenset({SourceStatus.PROCESSING}),
    SourceStatus.PROCESSING: frozenset(
        {SourceStatus.PROCESSING, SourceStatus.MINED, SourceStatus.FAILED}
    ),
    SourceStatus.MINED: frozenset({SourceStatus.PROCESSING}),
    SourceStatus.FAILED: frozenset({SourceStatus.PROCESSING}),
}

# Settled sources no longer block their targets, whether they succeeded or not.
SETTLED_SOURCE_STATUSES: frozenset[SourceStatus] = frozenset(
    {SourceStatus.MINED, SourceStatus.FAILED}
)


def _coerce(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as err:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(
            f"Invalid {enum_cls.__name__} {value!r}; expected one of: {allowed}"
        ) from err


def target_status(value: str | TargetStatus) -> TargetStatus:
    return _coerce(TargetStatus, value)


def source_status(value: str | SourceStatus) -> SourceStatus:
    return _coerce(SourceStatus, value)


def pretext_status(value: str | PretextStatus) -> PretextStatus:
    return _coerce(PretextStatus, value)


def can_transition_target(current: str | TargetStatus, new: str | TargetStatus) -> bool:
    cur, nxt = target_status(current), target_status(new)
    return nxt in TARGET_TRANSITIONS[cur]


def can_transition_source(current: str | SourceStatus, new: str | SourceStatus) -> bool:
    cur, nxt = source_status(current), source_status(new)
    return nxt in SOURCE_TRANSITIONS[cur]


def check_target_transition(current: str | TargetStatus, new: str | TargetStatus) -> None:
    if not can_transition_target(current, new):
        raise IllegalTransitionError(
            "Target", target_status(current).value, target_status(new).value
        )


def check_source_transition(current: str | SourceStatus, new: str | SourceStatus) -> None:
    if not can_transition_source(current, new):
        raise IllegalTransitionError(
            "SourceData", source_status(current).value, source_status(new).value
        )


__all__ = [
    "TargetStatus",
    "SourceStatus",
    "PretextStatus",
    "TARGET_TRANSITIONS",
    "SOURCE_TRANSITIONS",
    "SETTLED_SOURCE_STATUSES",
    "target_status",
    "source_status",
    "pretext_status",
    "can_transition_target",
    "can_transition_source",
    "check_target_transition",
    "check_source_transition",
]
