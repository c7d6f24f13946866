from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _getenv_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as err:
        kind = "an integer" if cast is int else "a number"
        raise ValueError(f"{name} must be {kind}, got {raw!r}") from err


def _getenv_int(name: str, default: int) -> int:
    return _getenv_number(name, default, int)


def _getenv_float(name: str, default: float) -> float:
    return _getenv_number(name, default, float)


def _getenv_str(name: str, default: str) -> str:
    return (os.getenv(name) or default).strip()


# .env at the repository root, never overriding the real environment
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)

DEFAULT_DB_PATH = (ROOT / "db" / "recon.db").as_posix()

# Browser-like identity; some evidence hosts refuse obvious bot agents.
DEFAULT_FETCH_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

DEFAULT_NOTIFY_CHANNEL = "recon:events"


@dataclass(frozen=True)
class QueueConfig:
    rq_redis_url: str
    discovery_queue: str
    scrape_queue: str
    profile_queue: str
    pretext_queue: str
    job_timeout_sec: int
    result_ttl_sec: int
    failure_ttl_sec: int
    slot_acquire_timeout_sec: float


@dataclass(frozen=True)
class StageConfig:
    """Per-stage worker concurrency (parallel handler invocations)."""

    discovery_concurrency: int
    scrape_concurrency: int
    profile_concurrency: int
    pretext_concurrency: int


@dataclass(frozen=True)
class FetchConfig:
    user_agent: str
    timeout_sec: float
    max_content_chars: int
    dns_timeout_sec: float


@dataclass(frozen=True)
class LlmConfig:
    api_key: str | None
    api_base: str | None
    model: str
    profile_max_tokens: int
    pretext_max_tokens: int
    profile_tool_bytes_budget: int


@dataclass(frozen=True)
class HunterConfig:
    api_key: str | None
    base_url: str
    limit: int
    max_attempts: int


@dataclass(frozen=True)
class AppConfig:
    db_path: str
    notify_channel: str
    prompt_library_dir: str
    queue: QueueConfig
    stages: StageConfig
    fetch: FetchConfig
    llm: LlmConfig
    hunter: HunterConfig


def db_path_from_env() -> str:
    # Prefer DATABASE_URL if set; otherwise fall back to DATABASE_PATH; otherwise db/recon.db
    url = os.environ.get("DATABASE_URL")
    if url:
        if not url.startswith("sqlite:///"):
            raise RuntimeError(f"Only sqlite is supported; got {url}")
        return url.removeprefix("sqlite:///")
    path = os.environ.get("DATABASE_PATH")
    if path:
        return path
    return DEFAULT_DB_PATH


def load_settings() -> AppConfig:
    queue = QueueConfig(
        rq_redis_url=_getenv_str("RQ_REDIS_URL", "redis://127.0.0.1:6379/0"),
        discovery_queue=_getenv_str("DISCOVERY_QUEUE", "dns_lookups"),
        scrape_queue=_getenv_str("SCRAPE_QUEUE", "source-scraper"),
        profile_queue=_getenv_str("PROFILE_QUEUE", "profile-generation"),
        pretext_queue=_getenv_str("PRETEXT_QUEUE", "pretext-generation"),
        job_timeout_sec=_getenv_int("JOB_TIMEOUT_SEC", 900),
        result_ttl_sec=_getenv_int("JOB_RESULT_TTL_SEC", 0),
        failure_ttl_sec=_getenv_int("JOB_FAILURE_TTL_SEC", 7 * 86400),
        slot_acquire_timeout_sec=_getenv_float("STAGE_SLOT_ACQUIRE_TIMEOUT_SEC", 600.0),
    )
    stages = StageConfig(
        discovery_concurrency=_getenv_int("DISCOVERY_CONCURRENCY", 1),
        scrape_concurrency=_getenv_int("SCRAPE_CONCURRENCY", 5),
        profile_concurrency=_getenv_int("PROFILE_CONCURRENCY", 3),
        pretext_concurrency=_getenv_int("PRETEXT_CONCURRENCY", 3),
    )
    fetch = FetchConfig(
        user_agent=_getenv_str("FETCH_USER_AGENT", DEFAULT_FETCH_USER_AGENT),
        timeout_sec=_getenv_float("FETCH_TIMEOUT_SEC", 10.0),
        max_content_chars=_getenv_int("FETCH_MAX_CONTENT_CHARS", 10_000),
        dns_timeout_sec=_getenv_float("DNS_TIMEOUT_SEC", 10.0),
    )
    llm = LlmConfig(
        api_key=os.getenv("OPENAI_API_KEY", "").strip() or None,
        api_base=os.getenv("OPENAI_API_BASE", "").strip() or None,
        model=_getenv_str("OPENAI_MODEL", "gpt-4.1-mini"),
        profile_max_tokens=_getenv_int("PROFILE_MAX_TOKENS", 4000),
        pretext_max_tokens=_getenv_int("PRETEXT_MAX_TOKENS", 4000),
        profile_tool_bytes_budget=_getenv_int("PROFILE_TOOL_BYTES_BUDGET", 200_000),
    )
    hunter = HunterConfig(
        api_key=os.getenv("HUNTER_API_KEY", "").strip() or None,
        base_url=_getenv_str("HUNTER_BASE_URL", "https://api.hunter.io/v2"),
        limit=_getenv_int("HUNTER_LIMIT", 20),
        max_attempts=_getenv_int("HUNTER_MAX_ATTEMPTS", 3),
    )
    return AppConfig(
        db_path=db_path_from_env(),
        notify_channel=_getenv_str("NOTIFY_CHANNEL", DEFAULT_NOTIFY_CHANNEL),
        prompt_library_dir=_getenv_str(
            "PROMPT_LIBRARY_DIR", (ROOT / "prompt_library").as_posix()
        ),
        queue=queue,
        stages=stages,
        fetch=fetch,
        llm=llm,
        hunter=hunter,
    )


__all__ = [
    "QueueConfig",
    "StageConfig",
    "FetchConfig",
    "LlmConfig",
    "HunterConfig",
    "AppConfig",
    "db_path_from_env",
    "load_settings",
    "DEFAULT_FETCH_USER_AGENT",
    "DEFAULT_NOTIFY_CHANNEL",
]
