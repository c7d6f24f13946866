# recon/queueing/payloads.py
"""
Job payload shapes per stage.

Payloads travel through Redis as plain dicts with camelCase keys; handlers
validate them on entry so a malformed job fails fast instead of half-running.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Stage(str, Enum):
    DISCOVERY = "discovery"
    SCRAPE = "scraping"
    PROFILE = "profile-synthesis"
    PRETEXT = "pretext-synthesis"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_job(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class DiscoveryPayload(_Payload):
    domain: str

    @field_validator("domain")
    @classmethod
    def _norm_domain(cls, v: str) -> str:
        v = v.strip().lower().rstrip(".")
        if not v:
            raise ValueError("domain must not be empty")
        return v


class ScrapePayload(_Payload):
    source_id: int = Field(alias="sourceId")
    source_url: str = Field(alias="sourceUrl")
    source_domain: str | None = Field(default=None, alias="sourceDomain")


class ProfilePayload(_Payload):
    email: str


class PretextPayload(_Payload):
    email: str
    prompt_id: int = Field(alias="promptId")


PAYLOAD_MODELS: dict[Stage, type[_Payload]] = {
    Stage.DISCOVERY: DiscoveryPayload,
    Stage.SCRAPE: ScrapePayload,
    Stage.PROFILE: ProfilePayload,
    Stage.PRETEXT: PretextPayload,
}


def validate_payload(stage: Stage | str, payload: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalize a job payload; returns the camelCase dict."""
    model = PAYLOAD_MODELS[Stage(stage)]
    return model.model_validate(payload).to_job()


__all__ = [
    "Stage",
    "DiscoveryPayload",
    "ScrapePayload",
    "ProfilePayload",
    "PretextPayload",
    "PAYLOAD_MODELS",
    "validate_payload",
]
