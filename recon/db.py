# recon/db.py
from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from recon.config import db_path_from_env

SCHEMA = """
CREATE TABLE IF NOT EXISTS Domain (
  name TEXT PRIMARY KEY,
  mx TEXT,
  spf TEXT,
  dmarc TEXT,
  email_format TEXT
);

CREATE TABLE IF NOT EXISTS SourceDomain (
  name TEXT PRIMARY KEY,
  mx TEXT,
  spf TEXT,
  dmarc TEXT,
  last_checked TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
  created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS Target (
  email TEXT PRIMARY KEY,
  name TEXT,
  profile TEXT,
  domain_name TEXT,
  tenure_start TIMESTAMP,
  status TEXT DEFAULT 'pending', -- pending, enriched, complete, failed
  FOREIGN KEY (domain_name) REFERENCES Domain(name)
);

CREATE TABLE IF NOT EXISTS SourceData (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  url TEXT UNIQUE NOT NULL,
  source_domain_name TEXT,
  discovery_method TEXT NOT NULL,
  data TEXT,
  status TEXT DEFAULT 'pending', -- pending, processing, mined, failed
  status_message TEXT,
  last_checked TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
  created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS TargetSourceMap (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  target_email TEXT,
  source_id INTEGER,
  UNIQUE (target_email, source_id),
  FOREIGN KEY (target_email) REFERENCES Target(email),
  FOREIGN KEY (source_id) REFERENCES SourceData(id)
);

CREATE INDEX IF NOT EXISTS idx_target_source_map_source_id
  ON TargetSourceMap(source_id);

CREATE TABLE IF NOT EXISTS Prompt (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT UNIQUE NOT NULL,
  template TEXT NOT NULL,
  system_prompt TEXT,
  dos TEXT,
  donts TEXT,
  created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
  updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS Pretext (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  target_email TEXT,
  prompt_id INTEGER,
  prompt_text TEXT NOT NULL,
  subject TEXT,
  body TEXT,
  link TEXT,
  status TEXT DEFAULT 'draft', -- draft, approved, rejected
  created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
  FOREIGN KEY (target_email) REFERENCES Target(email),
  FOREIGN KEY (prompt_id) REFERENCES Prompt(id)
);
"""


def utc_now_iso() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """
    Shared SQLite connection helper for stages, CLI and scripts.

    - If db_path is None, uses DATABASE_URL/DATABASE_PATH/db/recon.db.
    - Ensures foreign key enforcement.
    - Sets row_factory to sqlite3.Row for dict-like access.
    - Allows use from worker threads; Store serializes access.
    """
    if db_path is None:
        db_path = db_path_from_env()
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys=ON")
    return con


def ensure_schema(con: sqlite3.Connection) -> None:
    con.executescript(SCHEMA)


class RunResult:
    __slots__ = ("lastrowid", "rowcount")

    def __init__(self, lastrowid: int | None, rowcount: int) -> None:
        self.lastrowid = lastrowid
        self.rowcount = rowcount

    def __repr__(self) -> str:
        return f"RunResult(lastrowid={self.lastrowid!r}, rowcount={self.rowcount!r})"


class Store:
    """
    Thin row-level facade over a sqlite3 connection.

    get()  -> first row as dict (or None)
    all()  -> list of dicts
    run()  -> RunResult(lastrowid, rowcount)

    The connection runs in autocommit mode, so every run() is its own
    single-statement transaction. Multi-statement changes go through
    transaction(), which wraps them in BEGIN/COMMIT and rolls back on error.
    """

    def __init__(self, con: sqlite3.Connection) -> None:
        self._con = con
        self._lock = threading.RLock()

    @classmethod
    def open(cls, db_path: str | None = None, *, init_schema: bool = True) -> Store:
        con = get_connection(db_path)
        if init_schema:
            ensure_schema(con)
        return cls(con)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._con

    def get(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        with self._lock:
            row = self._con.execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._con.execute(sql, tuple(params)).fetchall()
        return [dict(r) for r in rows]

    def run(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        with self._lock:
            cur = self._con.execute(sql, tuple(params))
            return RunResult(cur.lastrowid, cur.rowcount)

    @contextmanager
    def transaction(self) -> Iterator[Store]:
        with self._lock:
            self._con.execute("BEGIN")
            try:
                yield self
            except BaseException:
                self._con.execute("ROLLBACK")
                raise
            else:
                self._con.execute("COMMIT")

    def close(self) -> None:
        with self._lock:
            self._con.close()


__all__ = ["SCHEMA", "RunResult", "Store", "ensure_schema", "get_connection", "utc_now_iso"]
