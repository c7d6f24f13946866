# recon/stages/profile.py
"""
Profile synthesis for an enriched target.

Three tiers, each tried only when the previous one produced nothing usable:

  1) direct      one request with every mined source inline
  2) tool loop   the model pulls sources one at a time via read_source_data
  3) fallback    one minimal request naming the source URLs, then a
                 programmatic placeholder if that fails too

Tier 3 always yields a string, so once the preconditions hold the stage
always persists a profile and moves the target to 'complete'.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from recon import repository as repo
from recon.db import Store
from recon.exceptions import NoSourcesError, PreconditionError
from recon.llm.client import Completion
from recon.notify import PROFILE_GENERATED, RECON_UPDATE, TARGET_STATUS_UPDATED, Notifier
from recon.queueing.payloads import ProfilePayload
from recon.status import SourceStatus, TargetStatus, target_status

log = logging.getLogger(__name__)

DIRECT_SOURCE_CHARS = 5_000
DIRECT_PROMPT_CHARS = 100_000
TOOL_SOURCE_CHARS = 8_000
DEFAULT_TOOL_BYTES_BUDGET = 200_000
TEMPERATURE = 0.2
FALLBACK_MAX_TOKENS = 2_000

READ_SOURCE_TOOL = "read_source_data"

DIRECT_SYSTEM = (
    "You write a professional profile of one person from the source material "
    "provided. Structure it with: name and email, professional roles, education, "
    "skills, and connections. Cite each claim with [Source: URL]. Return only the "
    "finished profile without commentary on your process."
)

TOOL_SYSTEM = """Write a concise profile from the available sources. Sections:
- Name and email
- Professional experience
- Education and skills
- Connections

Cite each claim with [Source: URL]. Read sources with the read_source_data tool.
If the sources are thin, write a short profile from whatever is available."""

NUDGE = (
    "You have now read all the available sources. "
    "Please provide the final profile based on this information."
)


class CompletionService(Protocol):
    def complete(
        self,
        *,
        system: str | None,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.2,
    ) -> Completion: ...


@dataclass
class SourceDoc:
    index: int  # 1-based, as exposed to the model
    id: int
    url: str
    domain: str | None
    method: str | None
    content: str


def _source_content(raw: Any) -> str:
    if raw is None:
        return "No content available"
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return raw
    else:
        data = raw
    if isinstance(data, dict):
        content = data.get("content")
        if content is None:
            return "No content available"
        return content if isinstance(content, str) else json.dumps(content)
    return json.dumps(data)


def build_source_docs(rows: list[dict[str, Any]]) -> list[SourceDoc]:
    return [
        SourceDoc(
            index=i,
            id=int(r["id"]),
            url=r["url"],
            domain=r.get("source_domain_name"),
            method=r.get("discovery_method"),
            content=_source_content(r.get("data")),
        )
        for i, r in enumerate(rows, start=1)
    ]


def read_source_tool(n_sources: int) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": READ_SOURCE_TOOL,
            "description": "Reads content of a source by index (1-based)",
            "parameters": {
                "type": "object",
                "properties": {
                    "sourceIndex": {
                        "type": "integer",
                        "description": f"Index of the source (1 to {n_sources})",
                    }
                },
                "required": ["sourceIndex"],
            },
        },
    }


def placeholder_profile(email: str, docs: list[SourceDoc]) -> str:
    urls = ", ".join(d.url for d in docs)
    return (
        f"Profile for {email}\n\n"
        f"Based on sources: {urls}\n\n"
        "Unable to generate a complete profile from the available sources. "
        "The collected data may not contain sufficient personal or professional information."
    )


class ProfileStage:
    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        completion: CompletionService,
        *,
        max_tokens: int = 4000,
        tool_bytes_budget: int = DEFAULT_TOOL_BYTES_BUDGET,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.completion = completion
        self.max_tokens = max_tokens
        self.tool_bytes_budget = tool_bytes_budget

    # -----------------------------
    # Job entry
    # -----------------------------

    def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        email = ProfilePayload.model_validate(payload).email
        try:
            return self._handle(email)
        except Exception as exc:
            self.notifier.emit(
                RECON_UPDATE, {"message": f"Error generating profile for {email}: {exc}"}
            )
            raise

    def _handle(self, email: str) -> dict[str, Any]:
        self.notifier.emit(RECON_UPDATE, {"message": f"Starting profile generation for {email}..."})

        target = repo.get_target(self.store, email)
        if target is None:
            raise PreconditionError(f"Target not found: {email}")
        status = target_status(target["status"] or TargetStatus.PENDING.value)
        if status != TargetStatus.ENRICHED:
            raise PreconditionError(f"Target {email} status is {status.value}, not enriched")

        rows = repo.sources_for_target(self.store, email, status=SourceStatus.MINED)
        if not rows:
            raise NoSourcesError(f"No mined sources found for {email}")

        docs = build_source_docs(rows)
        self.notifier.emit(
            RECON_UPDATE, {"message": f"Processing {len(docs)} sources for {email}..."}
        )
        profile = self.generate_profile(email, docs)

        repo.set_target_profile(self.store, email, profile)
        completed = repo.advance_target_if_status(
            self.store, email, expected=TargetStatus.ENRICHED, new=TargetStatus.COMPLETE
        )
        self.notifier.emit(PROFILE_GENERATED, {"email": email, "profile": profile})
        if completed:
            self.notifier.emit(
                TARGET_STATUS_UPDATED,
                {
                    "email": email,
                    "status": TargetStatus.COMPLETE.value,
                    "message": f"Target {email} has been marked as complete",
                    "domain": target["domain_name"],
                },
            )
            log.info("Target %s has been updated to 'complete' status", email)
        else:
            log.warning("Target %s left 'enriched' during profile generation; status kept", email)
        return {"success": True, "email": email, "profile": profile}

    # -----------------------------
    # Tiers
    # -----------------------------

    def generate_profile(self, email: str, docs: list[SourceDoc]) -> str:
        try:
            text = self._direct(email, docs)
            if text:
                return text
            log.info("Direct profile generation for %s returned no text", email)
        except Exception as exc:  # noqa: BLE001
            log.warning("Direct profile generation failed for %s: %s", email, exc)
        self.notifier.emit(
            RECON_UPDATE,
            {"message": f"Direct approach failed, trying alternative method for {email}..."},
        )

        try:
            text = self._tool_loop(email, docs)
            if text:
                return text
        except Exception as exc:  # noqa: BLE001
            log.warning("Tool-based profile generation failed for %s: %s", email, exc)

        return self._fallback(email, docs)

    def _direct(self, email: str, docs: list[SourceDoc]) -> str | None:
        parts = [f"Generate a professional profile for {email} based on the following sources:\n"]
        for d in docs:
            parts.append(f"SOURCE {d.index}: {d.url}\nCONTENT: {d.content[:DIRECT_SOURCE_CHARS]}\n")
        parts.append(
            "\nCreate a structured profile with sections for basic information, professional "
            "roles, education, skills, and connections. Add [Source: URL] after each claim."
        )
        prompt = "\n".join(parts)[:DIRECT_PROMPT_CHARS]
        resp = self.completion.complete(
            system=DIRECT_SYSTEM,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=TEMPERATURE,
        )
        return resp.text

    def _tool_loop(self, email: str, docs: list[SourceDoc]) -> str | None:
        n = len(docs)
        by_index = {d.index: d for d in docs}
        max_iterations = 2 * n + 3
        tools = [read_source_tool(n)]
        messages: list[dict[str, Any]] = [
            {
                "role": "user",
                "content": (
                    f"Generate a profile for {email} based on {n} sources. "
                    f"I'll provide content through the {READ_SOURCE_TOOL} tool."
                ),
            }
        ]
        read: set[int] = set()
        used_chars = 0
        nudged = False
        iterations = 0

        while iterations < max_iterations:
            iterations += 1
            log.debug("Profile tool loop %s: iteration %d/%d", email, iterations, max_iterations)
            resp = self.completion.complete(
                system=TOOL_SYSTEM,
                messages=messages,
                tools=tools,
                max_tokens=self.max_tokens,
                temperature=TEMPERATURE,
            )
            if not resp.tool_calls:
                if resp.text:
                    return resp.text
                log.warning("Neither text nor tool calls for %s; aborting tool loop", email)
                return None

            messages.append(resp.assistant_message())
            for call in resp.tool_calls:
                content, size = self._answer_tool_call(email, call, by_index, read, used_chars)
                used_chars += size
                messages.append({"role": "tool", "tool_call_id": call.id, "content": content})

            if not nudged and len(read) == n and iterations > n:
                messages.append({"role": "user", "content": NUDGE})
                nudged = True

        log.warning("Reached max iterations (%d) for %s", max_iterations, email)
        return None

    def _answer_tool_call(
        self,
        email: str,
        call: Any,
        by_index: dict[int, SourceDoc],
        read: set[int],
        used_chars: int,
    ) -> tuple[str, int]:
        n = len(by_index)
        if call.name != READ_SOURCE_TOOL:
            return f"Error: unknown tool {call.name}.", 0
        raw = call.arguments.get("sourceIndex")
        try:
            idx = int(raw)
        except (TypeError, ValueError):
            idx = None
        doc = by_index.get(idx) if idx is not None else None
        if doc is None:
            log.info("Source index %s out of range for %s (1-%d)", raw, email, n)
            return f"Error: Source index {raw} is out of range. Valid range is 1-{n}.", 0

        read.add(doc.index)
        body = doc.content[:TOOL_SOURCE_CHARS]
        if used_chars + len(body) > self.tool_bytes_budget:
            return (
                "Error: source content budget exhausted. "
                "Finalize the profile from the sources already read.",
                0,
            )
        self.notifier.emit(
            RECON_UPDATE, {"message": f"Reading source {doc.index}/{n} for {email}..."}
        )
        return f"Content from {doc.url}:\n\n{body}", len(body)

    def _fallback(self, email: str, docs: list[SourceDoc]) -> str:
        urls = ", ".join(d.url for d in docs)
        try:
            resp = self.completion.complete(
                system=None,
                messages=[
                    {
                        "role": "user",
                        "content": (
                            f"Generate a brief professional profile for {email} based on these "
                            f"sources: {urls}. Include whatever information you can find from "
                            "these sources."
                        ),
                    }
                ],
                max_tokens=FALLBACK_MAX_TOKENS,
                temperature=TEMPERATURE,
            )
            if resp.text:
                return resp.text
        except Exception as exc:  # noqa: BLE001
            log.warning("Final profile attempt failed for %s: %s", email, exc)
        return placeholder_profile(email, docs)


__all__ = [
    "CompletionService",
    "ProfileStage",
    "SourceDoc",
    "build_source_docs",
    "placeholder_profile",
    "read_source_tool",
]
