"""
Row operations over the recon tables.

All status writes go through this module so the transition tables in
recon.status are enforced at one boundary. Inserts that may race with a
replayed job use INSERT OR IGNORE / ON CONFLICT so re-running them is safe.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from recon.db import Store
from recon.exceptions import IllegalTransitionError
from recon.status import (
    SETTLED_SOURCE_STATUSES,
    SourceStatus,
    TargetStatus,
    check_source_transition,
    check_target_transition,
    pretext_status,
    source_status,
    target_status,
)

log = logging.getLogger(__name__)

_SETTLED_SQL = ", ".join(f"'{s.value}'" for s in sorted(SETTLED_SOURCE_STATUSES))


# -----------------------------
# Domain
# -----------------------------


def ensure_domain(store: Store, name: str) -> bool:
    """Insert a bare Domain row if missing. Returns True when a row was created."""
    res = store.run("INSERT OR IGNORE INTO Domain (name) VALUES (?)", (name,))
    return res.rowcount == 1


def upsert_domain_records(
    store: Store, name: str, *, mx: str | None, spf: str | None, dmarc: str | None
) -> None:
    store.run(
        "INSERT INTO Domain (name, mx, spf, dmarc) VALUES (?, ?, ?, ?) "
        "ON CONFLICT(name) DO UPDATE SET mx = excluded.mx, spf = excluded.spf, "
        "dmarc = excluded.dmarc",
        (name, mx, spf, dmarc),
    )


def set_domain_email_format(store: Store, name: str, pattern: str) -> None:
    store.run("UPDATE Domain SET email_format = ? WHERE name = ?", (pattern, name))


def get_domain(store: Store, name: str) -> dict[str, Any] | None:
    return store.get("SELECT * FROM Domain WHERE name = ?", (name,))


def list_domains(store: Store) -> list[dict[str, Any]]:
    return store.all("SELECT * FROM Domain ORDER BY name")


def ensure_source_domain(store: Store, name: str) -> None:
    store.run("INSERT OR IGNORE INTO SourceDomain (name) VALUES (?)", (name,))


# -----------------------------
# Target
# -----------------------------


def get_target(store: Store, email: str) -> dict[str, Any] | None:
    return store.get("SELECT * FROM Target WHERE email = ?", (email,))


def list_targets(store: Store, domain: str | None = None) -> list[dict[str, Any]]:
    sql = (
        "SELECT t.*, COUNT(tsm.source_id) AS source_count "
        "FROM Target t LEFT JOIN TargetSourceMap tsm ON t.email = tsm.target_email "
    )
    params: tuple[Any, ...] = ()
    if domain:
        sql += "WHERE t.domain_name = ? "
        params = (domain,)
    sql += "GROUP BY t.email ORDER BY t.email"
    return store.all(sql, params)


def upsert_target(
    store: Store,
    *,
    email: str,
    name: str | None,
    domain_name: str,
    tenure_start: str | None,
) -> None:
    """
    Create a Target in 'pending' or refresh its descriptive fields.

    Status is left alone on conflict; reopening is decided by the caller
    once the target's sources are known.
    """
    store.run(
        "INSERT INTO Target (email, name, domain_name, status, tenure_start) "
        "VALUES (?, ?, ?, ?, ?) "
        "ON CONFLICT(email) DO UPDATE SET name = excluded.name, "
        "domain_name = excluded.domain_name, "
        "tenure_start = COALESCE(excluded.tenure_start, tenure_start)",
        (email, name, domain_name, TargetStatus.PENDING.value, tenure_start),
    )


def set_target_status(store: Store, email: str, new: TargetStatus | str) -> dict[str, Any]:
    """
    Move a target to `new`, validating against the transition table.

    Setting the status a target already has is a no-op. Returns the target
    row as it was before the update.
    """
    row = get_target(store, email)
    if row is None:
        raise KeyError(f"Target not found: {email}")
    cur = target_status(row["status"] or TargetStatus.PENDING.value)
    nxt = target_status(new)
    if cur == nxt:
        return row
    check_target_transition(cur, nxt)
    store.run(
        "UPDATE Target SET status = ? WHERE email = ? AND status = ?",
        (nxt.value, email, cur.value),
    )
    return row


def advance_target_if_status(
    store: Store, email: str, *, expected: TargetStatus, new: TargetStatus
) -> bool:
    """
    Compare-and-swap on Target.status. True only for the caller that won.
    """
    check_target_transition(expected, new)
    res = store.run(
        "UPDATE Target SET status = ? WHERE email = ? AND status = ?",
        (new.value, email, expected.value),
    )
    return res.rowcount == 1


def set_target_profile(store: Store, email: str, profile: str) -> None:
    store.run("UPDATE Target SET profile = ? WHERE email = ?", (profile, email))


def reopen_target(store: Store, email: str) -> bool:
    """Return a settled target to 'pending'. True when the status changed."""
    row = get_target(store, email)
    if row is None:
        return False
    cur = target_status(row["status"] or TargetStatus.PENDING.value)
    if cur == TargetStatus.PENDING:
        return False
    try:
        set_target_status(store, email, TargetStatus.PENDING)
    except IllegalTransitionError:
        log.warning("Target %s cannot be reopened from %s", email, cur.value)
        return False
    return True


# -----------------------------
# SourceData / TargetSourceMap
# -----------------------------


def insert_source(
    store: Store,
    *,
    url: str,
    source_domain_name: str | None,
    discovery_method: str,
    data: dict[str, Any] | None,
) -> int:
    """
    Insert a SourceData row in 'pending' unless the URL is already known.
    Returns the id of the (new or existing) row.
    """
    res = store.run(
        "INSERT OR IGNORE INTO SourceData "
        "(url, source_domain_name, discovery_method, data, status) VALUES (?, ?, ?, ?, ?)",
        (
            url,
            source_domain_name,
            discovery_method,
            json.dumps(data) if data is not None else None,
            SourceStatus.PENDING.value,
        ),
    )
    if res.rowcount == 1 and res.lastrowid:
        return int(res.lastrowid)
    row = store.get("SELECT id FROM SourceData WHERE url = ?", (url,))
    if row is None:  # pragma: no cover - the insert above guarantees a row
        raise RuntimeError(f"SourceData row missing after insert: {url}")
    return int(row["id"])


def map_target_source(store: Store, email: str, source_id: int) -> bool:
    res = store.run(
        "INSERT OR IGNORE INTO TargetSourceMap (target_email, source_id) VALUES (?, ?)",
        (email, source_id),
    )
    return res.rowcount == 1


def get_source(store: Store, source_id: int) -> dict[str, Any] | None:
    return store.get("SELECT * FROM SourceData WHERE id = ?", (source_id,))


def list_sources(store: Store) -> list[dict[str, Any]]:
    return store.all(
        "SELECT sd.*, COUNT(tsm.target_email) AS target_count "
        "FROM SourceData sd LEFT JOIN TargetSourceMap tsm ON sd.id = tsm.source_id "
        "GROUP BY sd.id ORDER BY sd.last_checked DESC"
    )


def set_source_status(
    store: Store,
    source_id: int,
    new: SourceStatus | str,
    *,
    message: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    row = get_source(store, source_id)
    if row is None:
        raise KeyError(f"SourceData not found: {source_id}")
    cur = source_status(row["status"] or SourceStatus.PENDING.value)
    nxt = source_status(new)
    check_source_transition(cur, nxt)
    if data is not None:
        store.run(
            "UPDATE SourceData SET status = ?, status_message = ?, data = ?, "
            "last_checked = CURRENT_TIMESTAMP WHERE id = ?",
            (nxt.value, message, json.dumps(data), source_id),
        )
    else:
        store.run(
            "UPDATE SourceData SET status = ?, status_message = ?, "
            "last_checked = CURRENT_TIMESTAMP WHERE id = ?",
            (nxt.value, message, source_id),
        )


def target_emails_for_source(store: Store, source_id: int) -> list[str]:
    rows = store.all(
        "SELECT target_email FROM TargetSourceMap WHERE source_id = ? ORDER BY id",
        (source_id,),
    )
    return [r["target_email"] for r in rows]


def source_counts_for_target(store: Store, email: str) -> tuple[int, int]:
    """Return (total mapped sources, unsettled mapped sources) for a target."""
    row = store.get(
        "SELECT COUNT(*) AS total, "
        f"COALESCE(SUM(CASE WHEN sd.status IN ({_SETTLED_SQL}) THEN 0 ELSE 1 END), 0) "
        "AS unsettled "
        "FROM SourceData sd JOIN TargetSourceMap tsm ON sd.id = tsm.source_id "
        "WHERE tsm.target_email = ?",
        (email,),
    )
    if row is None:
        return 0, 0
    return int(row["total"] or 0), int(row["unsettled"] or 0)


def sources_for_target(
    store: Store, email: str, status: SourceStatus | None = None
) -> list[dict[str, Any]]:
    sql = (
        "SELECT sd.* FROM SourceData sd "
        "JOIN TargetSourceMap tsm ON sd.id = tsm.source_id "
        "WHERE tsm.target_email = ?"
    )
    params: list[Any] = [email]
    if status is not None:
        sql += " AND sd.status = ?"
        params.append(status.value)
    sql += " ORDER BY sd.id"
    return store.all(sql, params)


def unmined_sources(store: Store, emails: list[str] | None = None) -> list[dict[str, Any]]:
    """Sources still worth scraping, optionally limited to some targets."""
    if emails:
        placeholders = ",".join("?" for _ in emails)
        return store.all(
            "SELECT DISTINCT sd.id, sd.url, sd.source_domain_name FROM SourceData sd "
            "JOIN TargetSourceMap tsm ON sd.id = tsm.source_id "
            f"WHERE tsm.target_email IN ({placeholders}) AND sd.status != ? ORDER BY sd.id",
            [*emails, SourceStatus.MINED.value],
        )
    return store.all(
        "SELECT id, url, source_domain_name FROM SourceData WHERE status != ? ORDER BY id",
        (SourceStatus.MINED.value,),
    )


# -----------------------------
# Prompt / Pretext
# -----------------------------


def get_prompt(store: Store, prompt_id: int) -> dict[str, Any] | None:
    return store.get("SELECT * FROM Prompt WHERE id = ?", (prompt_id,))


def get_prompt_by_name(store: Store, name: str) -> dict[str, Any] | None:
    return store.get("SELECT * FROM Prompt WHERE name = ?", (name,))


def list_prompts(store: Store) -> list[dict[str, Any]]:
    return store.all("SELECT id, name FROM Prompt ORDER BY name")


def insert_prompt(
    store: Store,
    *,
    name: str,
    template: str,
    system_prompt: str = "",
    dos: str = "",
    donts: str = "",
) -> int:
    res = store.run(
        "INSERT INTO Prompt (name, template, system_prompt, dos, donts, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)",
        (name, template, system_prompt, dos, donts),
    )
    return int(res.lastrowid or 0)


def insert_pretext(
    store: Store,
    *,
    target_email: str,
    prompt_id: int,
    prompt_text: str,
    subject: str,
    body: str,
    link: str,
) -> int:
    res = store.run(
        "INSERT INTO Pretext (target_email, prompt_id, prompt_text, subject, body, link, status) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (target_email, prompt_id, prompt_text, subject, body, link, pretext_status("draft").value),
    )
    return int(res.lastrowid or 0)


def get_pretext(store: Store, pretext_id: int) -> dict[str, Any] | None:
    return store.get("SELECT * FROM Pretext WHERE id = ?", (pretext_id,))


def pretexts_for_target(store: Store, email: str) -> list[dict[str, Any]]:
    return store.all(
        "SELECT p.*, pr.name AS prompt_name FROM Pretext p "
        "JOIN Prompt pr ON p.prompt_id = pr.id "
        "WHERE p.target_email = ? ORDER BY p.created_at DESC, p.id DESC",
        (email,),
    )
