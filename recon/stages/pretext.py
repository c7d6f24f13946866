# recon/stages/pretext.py
from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from recon import repository as repo
from recon.db import Store
from recon.exceptions import PreconditionError, PretextParseError
from recon.notify import PRETEXT_GENERATED, RECON_UPDATE, Notifier
from recon.queueing.payloads import PretextPayload
from recon.stages.profile import CompletionService
from recon.status import TargetStatus, target_status

log = logging.getLogger(__name__)

PROFILE_PLACEHOLDER = "{{target_profile}}"
DEFAULT_SYSTEM_PROMPT = "You are an expert at writing highly personalized emails. "
JSON_ONLY = (
    "\n\nIMPORTANT: Respond with ONLY a JSON object. "
    "Do not include any explanatory text before or after the JSON."
)
TEMPERATURE = 0.7

_LINE_BREAKS = re.compile(r"[\r\n]+")


class PretextDraft(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subject: str
    body: str
    resource_description: str = ""


def extract_json_from_text(text: str) -> Any:
    """
    Parse the span from the first '{' to the last '}'. If that fails, retry
    with embedded line breaks collapsed to spaces.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise PretextParseError("No valid JSON found in the response")
    candidate = text[start : end + 1]
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(_LINE_BREAKS.sub(" ", candidate).strip())
    except json.JSONDecodeError as exc:
        raise PretextParseError(f"Failed to process pretext: {exc}") from exc


def parse_pretext(text: str) -> PretextDraft:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        log.info("Direct JSON parsing failed, attempting to extract JSON from text")
        data = extract_json_from_text(text)
    try:
        return PretextDraft.model_validate(data)
    except ValidationError as exc:
        raise PretextParseError(f"Failed to process pretext: {exc}") from exc


def build_system_prompt(prompt: dict[str, Any]) -> str:
    system = (prompt.get("system_prompt") or DEFAULT_SYSTEM_PROMPT) + JSON_ONLY
    if prompt.get("dos"):
        system += "\n\nDO:\n" + prompt["dos"]
    if prompt.get("donts"):
        system += "\n\nDON'T:\n" + prompt["donts"]
    return system


def render_template(template: str, profile: str | None) -> str:
    return template.replace(PROFILE_PLACEHOLDER, profile or "No profile available")


class PretextStage:
    """
    Draft one pretext message for a complete target from a stored prompt.

    Never touches Target.status; every generated draft is a new Pretext row.
    """

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        completion: CompletionService,
        *,
        max_tokens: int = 4000,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.completion = completion
        self.max_tokens = max_tokens

    def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        p = PretextPayload.model_validate(payload)
        try:
            return self._handle(p.email, p.prompt_id)
        except Exception as exc:
            self.notifier.emit(
                RECON_UPDATE, {"message": f"Error generating pretext for {p.email}: {exc}"}
            )
            raise

    def _handle(self, email: str, prompt_id: int) -> dict[str, Any]:
        self.notifier.emit(
            RECON_UPDATE,
            {"message": f"Starting pretext generation for {email} using prompt ID {prompt_id}..."},
        )
        target = repo.get_target(self.store, email)
        if target is None:
            raise PreconditionError(f"Target not found: {email}")
        status = target_status(target["status"] or TargetStatus.PENDING.value)
        if status != TargetStatus.COMPLETE:
            raise PreconditionError(f"Target {email} status is {status.value}, not complete")
        prompt = repo.get_prompt(self.store, prompt_id)
        if prompt is None:
            raise PreconditionError(f"Prompt not found: {prompt_id}")

        system = build_system_prompt(prompt)
        user = render_template(prompt["template"], target["profile"])
        resp = self.completion.complete(
            system=system,
            messages=[{"role": "user", "content": user}],
            max_tokens=self.max_tokens,
            temperature=TEMPERATURE,
        )
        if not resp.text:
            raise PretextParseError("No valid response received from the completion service")
        draft = parse_pretext(resp.text)

        pretext_id = repo.insert_pretext(
            self.store,
            target_email=email,
            prompt_id=prompt_id,
            prompt_text=(
                f"System Prompt:\n{prompt['system_prompt'] or ''}"
                f"\n\nPrompt:\n{prompt['template']}"
            ),
            subject=draft.subject,
            body=draft.body,
            link=draft.resource_description,
        )
        self.notifier.emit(
            PRETEXT_GENERATED, {"email": email, "pretextId": pretext_id, "subject": draft.subject}
        )
        log.info("Pretext %s drafted for %s", pretext_id, email)
        return {
            "success": True,
            "email": email,
            "pretextId": pretext_id,
            "subject": draft.subject,
            "body": draft.body,
        }


__all__ = [
    "PretextDraft",
    "PretextStage",
    "build_system_prompt",
    "extract_json_from_text",
    "parse_pretext",
    "render_template",
]
