"""Failure Classification for OpenAI-Compatible Endpoints

Maps a failed HTTP exchange (status code, body text, headers) to exactly one
FailureKind. Pure and total: unrecognised input becomes Unknown, never an
exception.

Provider wording is matched here and nowhere else. Context-length phrasings
live in CONTEXT_LENGTH_MATCHERS so a new provider's wording can be added with
register_context_length_matcher() without touching retry or heal logic.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Mapping

from gitgen import TEMPERATURE_PARAMETER, TOKEN_PARAMETERS

AUTH_ERROR_PHRASES = (
    "invalid_api_key",
    "Incorrect API key provided",
    "Invalid API key",
)

PARAMETER_ERROR_MARKERS = (
    "unsupported_parameter",
    "unsupported parameter",
    "unsupported_value",
    "unsupported value",
    "invalid_request_error",
)

UNSUPPORTED_VALUE_MARKERS = (
    "unsupported_value",
    "unsupported value",
    "invalid_request_error",
)

CONTEXT_LENGTH_CODE = "context_length_exceeded"


# =============================================================================
# Failure kinds
# =============================================================================

@dataclass(frozen=True)
class FailureKind:
    """Base for every classification result."""

    @property
    def retryable(self) -> bool:
        return False

    @property
    def is_dialect_mismatch(self) -> bool:
        return False


@dataclass(frozen=True)
class Transient(FailureKind):
    status_code: int | None = None

    @property
    def retryable(self) -> bool:
        return True


@dataclass(frozen=True)
class RateLimited(FailureKind):
    retry_after: float | None = None  # seconds

    @property
    def retryable(self) -> bool:
        return True


@dataclass(frozen=True)
class Authentication(FailureKind):
    pass


@dataclass(frozen=True)
class ParameterMismatch(FailureKind):
    parameter_name: str

    @property
    def is_dialect_mismatch(self) -> bool:
        return True


@dataclass(frozen=True)
class TemperatureRejected(FailureKind):

    @property
    def is_dialect_mismatch(self) -> bool:
        return True


@dataclass(frozen=True)
class ContextLengthExceeded(FailureKind):
    max_context_length: int | None = None
    requested_tokens: int | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


@dataclass(frozen=True)
class ClientError(FailureKind):
    status_code: int


@dataclass(frozen=True)
class Unknown(FailureKind):
    status_code: int | None
    body: str = ""


# =============================================================================
# Context-length matchers
# =============================================================================

@dataclass(frozen=True)
class ContextLengthMatcher:
    """One provider's phrasing of a context-length error.

    Each pattern captures integers; breakdown captures (prompt, completion).
    """
    name: str
    max_context: re.Pattern
    requested: re.Pattern
    breakdown: re.Pattern | None = None

    def matches(self, body: str) -> bool:
        return bool(self.max_context.search(body) or self.requested.search(body))


CONTEXT_LENGTH_MATCHERS: tuple[ContextLengthMatcher, ...] = (
    # "This model's maximum context length is 4097 tokens. However, you requested
    #  4927 tokens (3927 in the messages, 1000 in the completion)."
    ContextLengthMatcher(
        name="openai",
        max_context=re.compile(r"maximum context length is (\d+) tokens"),
        requested=re.compile(r"requested (\d+) tokens"),
        breakdown=re.compile(r"\((\d+) in the messages, (\d+) in the completion\)"),
    ),
    # xAI: "maximum prompt length is 131072 but the request contains 150000 tokens"
    ContextLengthMatcher(
        name="terse",
        max_context=re.compile(r"maximum prompt length is (\d+)"),
        requested=re.compile(r"request contains (\d+) tokens"),
    ),
)


def register_context_length_matcher(matcher: ContextLengthMatcher) -> None:
    """Add a provider phrasing. Later matchers only fill fields earlier ones left empty."""
    global CONTEXT_LENGTH_MATCHERS
    CONTEXT_LENGTH_MATCHERS = CONTEXT_LENGTH_MATCHERS + (matcher,)


def _first_int(pattern: re.Pattern, body: str) -> int | None:
    match = pattern.search(body)
    return int(match.group(1)) if match else None


def parse_context_length(body: str) -> ContextLengthExceeded | None:
    """Extract context-length numbers from a provider error body.

    Returns None when no registered phrasing (and no context_length_exceeded
    code) is present.
    """
    if not body:
        return None

    matched = [m for m in CONTEXT_LENGTH_MATCHERS if m.matches(body)]
    if not matched:
        if CONTEXT_LENGTH_CODE in body:
            return ContextLengthExceeded()
        return None

    max_context = requested = prompt = completion = None
    for matcher in matched:
        if max_context is None:
            max_context = _first_int(matcher.max_context, body)
        if requested is None:
            requested = _first_int(matcher.requested, body)
        if matcher.breakdown is not None and prompt is None:
            breakdown = matcher.breakdown.search(body)
            if breakdown:
                prompt, completion = int(breakdown.group(1)), int(breakdown.group(2))

    return ContextLengthExceeded(
        max_context_length=max_context,
        requested_tokens=requested,
        prompt_tokens=prompt,
        completion_tokens=completion,
    )


# =============================================================================
# Helpers
# =============================================================================

def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header: delta seconds or an HTTP-date."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(seconds, 0.0)

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    delta = retry_at - datetime.now(timezone.utc)
    return max(delta.total_seconds(), 0.0)


def _error_param(body: str) -> str | None:
    """The `error.param` field of an OpenAI-style JSON error body, if any."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("param"), str):
        return error["param"]
    return None


def _rejected_token_parameter(body: str) -> str | None:
    param = _error_param(body)
    if param is not None:
        return param if param in TOKEN_PARAMETERS else None

    # No structured field: the first token parameter named is the rejected one
    # ("'max_tokens' is not supported ... Use 'max_completion_tokens' instead.")
    positions = {}
    for name in TOKEN_PARAMETERS:
        match = re.search(rf"\b{name}\b", body)
        if match:
            positions[name] = match.start()
    if not positions:
        return None
    return min(positions, key=positions.get)


def _has_marker(body: str, markers: tuple[str, ...]) -> bool:
    lowered = body.lower()
    return any(marker in lowered for marker in markers)


def _is_temperature_error(body: str) -> bool:
    param = _error_param(body)
    if param is not None and param != TEMPERATURE_PARAMETER:
        return False
    return TEMPERATURE_PARAMETER in body and _has_marker(body, UNSUPPORTED_VALUE_MARKERS)


# =============================================================================
# Classifier
# =============================================================================

def classify(status_code: int | None, body: str | None,
             headers: Mapping[str, str] | None = None) -> FailureKind:
    """Classify a failed exchange. Rules are applied in priority order."""
    body = body or ""

    if status_code in (401, 403) or any(phrase in body for phrase in AUTH_ERROR_PHRASES):
        return Authentication()

    if status_code == 429:
        headers_lower = {k.lower(): v for k, v in (headers or {}).items()}
        return RateLimited(retry_after=parse_retry_after(headers_lower.get("retry-after")))

    if status_code is not None and 500 <= status_code <= 599:
        return Transient(status_code=status_code)

    if status_code == 400:
        if _has_marker(body, PARAMETER_ERROR_MARKERS):
            parameter = _rejected_token_parameter(body)
            if parameter is not None:
                return ParameterMismatch(parameter_name=parameter)
        if _is_temperature_error(body):
            return TemperatureRejected()

    context = parse_context_length(body)
    if context is not None:
        return context

    if status_code is not None and 400 <= status_code <= 499:
        return ClientError(status_code=status_code)
    return Unknown(status_code=status_code, body=body)
