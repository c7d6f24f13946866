# recon/llm/client.py
"""
Thin wrapper around the OpenAI chat completions API.

complete(system, messages, tools?) -> Completion(text?, tool_calls)

Messages use the chat completions shape; an assistant turn that requested
tools is replayed with Completion.assistant_message(), and each answer is a
{"role": "tool", "tool_call_id": ..., "content": ...} message.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from openai import OpenAI

from recon.config import LlmConfig, load_settings
from recon.exceptions import CompletionError

log = logging.getLogger(__name__)


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Completion:
    text: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None

    def assistant_message(self) -> dict[str, Any]:
        msg: dict[str, Any] = {"role": "assistant", "content": self.text}
        if self.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in self.tool_calls
            ]
        return msg


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        log.warning("Tool call arguments are not valid JSON: %r", raw[:200])
        return {}
    return data if isinstance(data, dict) else {}


class CompletionClient:
    def __init__(self, config: LlmConfig | None = None, *, client: Any = None) -> None:
        self.config = config or load_settings().llm
        self._client = client

    def _get_client(self) -> Any:
        """Build the OpenAI client lazily; raises CompletionError when no key is set."""
        if self._client is not None:
            return self._client
        if not self.config.api_key:
            raise CompletionError("OPENAI_API_KEY is not set; completion service unavailable")
        self._client = OpenAI(
            api_key=self.config.api_key,
            base_url=self.config.api_base or None,
        )
        return self._client

    def complete(
        self,
        *,
        system: str | None,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.2,
    ) -> Completion:
        client = self._get_client()
        chat: list[dict[str, Any]] = []
        if system:
            chat.append({"role": "system", "content": system})
        chat.extend(messages)

        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": chat,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = tools

        try:
            resp = client.chat.completions.create(**kwargs)
        except Exception as exc:
            raise CompletionError(f"Completion request failed: {exc}") from exc

        if not resp.choices:
            raise CompletionError("Completion service returned no choices")
        choice = resp.choices[0]
        message = choice.message
        calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
            )
            for tc in (message.tool_calls or [])
        ]
        text = message.content if message.content and message.content.strip() else None
        log.debug(
            "Completion finished: reason=%s text=%s tool_calls=%d",
            choice.finish_reason,
            bool(text),
            len(calls),
        )
        return Completion(text=text, tool_calls=calls, finish_reason=choice.finish_reason)


__all__ = ["Completion", "ToolCall", "CompletionClient"]
