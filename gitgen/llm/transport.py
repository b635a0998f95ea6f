"""Resilient HTTP Transport

Sends a RequestEnvelope with automatic retries for transient failures and
rate limiting. Every non-2xx response is classified; only Transient and
RateLimited outcomes are retried, everything else stops immediately since
resending the same bytes will not fix it.

execute() returns a tagged TransportResult and never raises for HTTP
failures. send() is the raising convenience on top of it.
"""

from __future__ import annotations

import asyncio
import json
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Union

import httpx
from loguru import logger

from gitgen.llm.classifier import FailureKind, RateLimited, Transient, classify
from gitgen.llm.exceptions import (
    BODY_TRUNCATION,
    HttpResponseError,
    TransportConnectionError,
)

BASE_BACKOFF = 1.0  # seconds
MAX_BACKOFF = 30.0
MAX_RETRY_AFTER = 60.0
DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_RETRIES = 3

RETRYABLE_NETWORK_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


class LogSuppression(Enum):
    SILENT = "silent"    # probing: failures are expected, keep the console quiet
    NORMAL = "normal"
    VERBOSE = "verbose"  # full response bodies in raised failures


@dataclass(frozen=True)
class RequestPolicy:
    """Per-call transport options. Passed by value, never mutated."""
    throw_on_error: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    log_suppression: LogSuppression = LogSuppression.NORMAL
    error_context: str | None = None
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def for_probing(cls, error_context: str | None = None, **overrides: Any) -> RequestPolicy:
        return cls(log_suppression=LogSuppression.SILENT, error_context=error_context, **overrides)


@dataclass(frozen=True)
class RequestEnvelope:
    """Immutable description of one HTTP request.

    The body is kept as bytes and turned into a fresh httpx.Request for every
    attempt, so a failed attempt can never leave a consumed stream behind.
    """
    method: str
    url: str
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""
    error_context: str | None = None

    @classmethod
    def json(cls, method: str, url: str, payload: Mapping[str, Any],
             headers: Mapping[str, str] | None = None,
             error_context: str | None = None) -> RequestEnvelope:
        all_headers = {"Content-Type": "application/json"}
        all_headers.update(headers or {})
        return cls(
            method=method.upper(),
            url=url,
            headers=tuple(all_headers.items()),
            body=json.dumps(payload).encode("utf-8"),
            error_context=error_context,
        )

    def header(self, name: str) -> str | None:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return None

    def payload(self) -> Any:
        """Decode the JSON body (used for debugging and tests)."""
        return json.loads(self.body.decode("utf-8")) if self.body else None


@dataclass(frozen=True)
class Success:
    response: httpx.Response
    attempts: int = 1


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    response: httpx.Response
    attempts: int = 1

    @property
    def status_code(self) -> int:
        return self.response.status_code


TransportResult = Union[Success, Failure]


def _truncate(text: str, limit: int = BODY_TRUNCATION) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class HttpTransport:
    """Retrying async HTTP transport.

    Owns its httpx.AsyncClient unless one is passed in. `sleep` and `rng` are
    injectable so tests can observe backoff without waiting for it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter for the given zero-based attempt."""
        ceiling = min(MAX_BACKOFF, BASE_BACKOFF * (2 ** attempt))
        return ceiling / 2 + self._rng.uniform(0, ceiling / 2)

    def retry_delay(self, kind: FailureKind, attempt: int) -> float:
        if isinstance(kind, RateLimited) and kind.retry_after is not None:
            return min(kind.retry_after, MAX_RETRY_AFTER)
        return self.backoff_delay(attempt)

    def _build_request(self, envelope: RequestEnvelope, policy: RequestPolicy) -> httpx.Request:
        return self._client.build_request(
            envelope.method,
            envelope.url,
            headers=list(envelope.headers),
            content=bytes(envelope.body),
            timeout=policy.timeout,
        )

    @staticmethod
    def _log(policy: RequestPolicy, level: str, message: str) -> None:
        if policy.log_suppression is LogSuppression.SILENT:
            logger.debug(message)
        else:
            logger.log(level, message)

    async def execute(self, envelope: RequestEnvelope, policy: RequestPolicy | None = None) -> TransportResult:
        """Attempt the request up to max_retries + 1 times and return the outcome."""
        policy = policy or RequestPolicy()
        context = policy.error_context or envelope.error_context
        label = f"{envelope.method} {envelope.url}" + (f" ({context})" if context else "")
        last_network_error: Exception | None = None

        for attempt in range(policy.max_retries + 1):
            is_last = attempt >= policy.max_retries
            request = self._build_request(envelope, policy)
            try:
                response = await self._client.send(request)
            except RETRYABLE_NETWORK_ERRORS as e:
                last_network_error = e
                if is_last:
                    break
                delay = self.backoff_delay(attempt)
                self._log(policy, "WARNING",
                          f"Request failed ({type(e).__name__}). Waiting {delay:.1f}s before retry attempt {attempt + 1}: {label}")
                await self._sleep(delay)
                continue

            if response.is_success:
                if attempt:
                    logger.debug(f"{label} succeeded after {attempt + 1} attempts")
                return Success(response=response, attempts=attempt + 1)

            kind = classify(response.status_code, response.text, response.headers)
            if not kind.retryable or is_last:
                body = response.text
                if policy.log_suppression is not LogSuppression.VERBOSE:
                    body = _truncate(body)
                self._log(policy, "ERROR", f"API error: {response.status_code} {type(kind).__name__} from {label}: {body}")
                return Failure(kind=kind, response=response, attempts=attempt + 1)

            delay = self.retry_delay(kind, attempt)
            if isinstance(kind, RateLimited):
                source = "as specified by Retry-After header" if kind.retry_after is not None else "before retry"
                self._log(policy, "WARNING", f"Rate limited. Waiting {delay:.1f}s {source}: {label}")
            elif isinstance(kind, Transient):
                self._log(policy, "WARNING",
                          f"Request failed with status {response.status_code}. "
                          f"Waiting {delay:.1f}s before retry attempt {attempt + 1}: {label}")
            await self._sleep(delay)

        attempts = policy.max_retries + 1
        self._log(policy, "ERROR", f"Giving up on {label} after {attempts} attempts: {last_network_error}")
        raise TransportConnectionError(
            f"Request to {envelope.url} failed after {attempts} attempts: {last_network_error}",
            url=envelope.url,
            attempts=attempts,
        ) from last_network_error

    async def send(self, envelope: RequestEnvelope, policy: RequestPolicy | None = None) -> httpx.Response:
        """Send and return the response.

        On failure raises the structured HttpResponseError subclass when
        policy.throw_on_error, otherwise returns the last raw response.
        """
        policy = policy or RequestPolicy()
        result = await self.execute(envelope, policy)
        if isinstance(result, Success):
            return result.response
        if policy.throw_on_error:
            raise HttpResponseError.from_failure(result, envelope, policy)
        return result.response
