"""Chat-Completions Wire Format

Builds request envelopes for OpenAI-compatible /chat/completions endpoints
and parses their responses. Shared by the dialect prober and the coordinator
so probes and real calls are shaped identically.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Sequence

import httpx

from gitgen.llm.base import LLMError
from gitgen.llm.transport import RequestEnvelope

if TYPE_CHECKING:
    from gitgen.llm.dialect import DialectParameters

AZURE_URL_PATTERN = "openai.azure.com"
AZURE_API_KEY_HEADER = "api-key"
BEARER_PREFIX = "Bearer"


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Completion:
    """Parsed chat completion plus the dialect that produced it."""
    content: str
    model: str
    dialect: DialectParameters
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    healed: bool = False


def build_messages(prompt: str, system_prompt: str | None = None) -> tuple[Message, ...]:
    messages = []
    if system_prompt:
        messages.append(Message(role="system", content=system_prompt))
    messages.append(Message(role="user", content=prompt))
    return tuple(messages)


def build_auth_headers(url: str, api_key: str | None, requires_auth: bool) -> dict[str, str]:
    """Azure endpoints take an api-key header, everything else a Bearer token."""
    if not requires_auth:
        return {}
    if not api_key:
        raise LLMError("API key is missing for a provider that requires authentication.")
    if AZURE_URL_PATTERN in url:
        return {AZURE_API_KEY_HEADER: api_key}
    return {"Authorization": f"{BEARER_PREFIX} {api_key}"}


def build_chat_payload(model: str, messages: Sequence[Message], dialect: DialectParameters,
                       max_tokens: int, send_temperature: bool = True) -> dict[str, Any]:
    """Exactly one token-limit parameter is set, chosen by the dialect.

    With send_temperature=False the temperature key is left out and the
    endpoint applies its own default.
    """
    payload: dict[str, Any] = {
        "model": model,
        "messages": [m.to_dict() for m in messages],
        dialect.token_style.parameter_name: max_tokens,
    }
    if send_temperature:
        payload["temperature"] = dialect.temperature
    return payload


def build_chat_envelope(url: str, api_key: str | None, requires_auth: bool, model: str,
                        messages: Sequence[Message], dialect: DialectParameters,
                        max_tokens: int, error_context: str | None = None,
                        send_temperature: bool = True) -> RequestEnvelope:
    return RequestEnvelope.json(
        "POST",
        url,
        build_chat_payload(model, messages, dialect, max_tokens, send_temperature=send_temperature),
        headers=build_auth_headers(url, api_key, requires_auth),
        error_context=error_context,
    )


def _optional_int(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def parse_completion(response: httpx.Response, model: str, dialect: DialectParameters,
                     healed: bool = False) -> Completion:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise LLMError(f"Invalid response from provider (not JSON): {response.text[:200]}")
    if not isinstance(data, dict):
        raise LLMError("Invalid response from provider: expected a JSON object")

    content = ""
    choices = data.get("choices") or []
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
        if not isinstance(message, dict):
            raise LLMError(f"Invalid response from provider: message is not an object: {str(message)[:200]}")
        content = message.get("content") or ""
        if not isinstance(content, str):
            raise LLMError(f"Invalid response from provider: content is not text: {str(content)[:200]}")

    usage = data.get("usage")
    if not isinstance(usage, dict):
        usage = {}
    return Completion(
        content=content,
        model=data.get("model") or model,
        dialect=dialect,
        prompt_tokens=_optional_int(usage.get("prompt_tokens")),
        completion_tokens=_optional_int(usage.get("completion_tokens")),
        total_tokens=_optional_int(usage.get("total_tokens")),
        healed=healed,
    )
