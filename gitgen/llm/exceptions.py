"""Structured Exceptions Raised by the Transport and Coordinator

Every failure that reaches a caller carries the status code, the classified
FailureKind and, for context-length failures, the numeric token breakdown,
so callers can render a specific message without re-parsing provider text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from gitgen.llm.base import LLMError
from gitgen.llm.classifier import (
    Authentication,
    ContextLengthExceeded,
    FailureKind,
    RateLimited,
)

if TYPE_CHECKING:
    from gitgen.llm.transport import Failure, RequestEnvelope, RequestPolicy

BODY_TRUNCATION = 200


class HttpResponseError(LLMError):
    """An HTTP exchange that failed with a non-success status."""

    def __init__(
        self,
        status_code: int,
        kind: FailureKind,
        url: str | None = None,
        method: str | None = None,
        response_body: str | None = None,
        error_context: str | None = None,
        attempts: int = 1,
        include_full_body: bool = False,
    ):
        self.status_code = status_code
        self.kind = kind
        self.url = url
        self.method = method
        self.response_body = response_body
        self.error_context = error_context
        self.attempts = attempts
        super().__init__(self._build_message(include_full_body))

    def _build_message(self, include_full_body: bool) -> str:
        message = f"HTTP request failed with status {self.status_code}"
        if self.url:
            message += f" from {self.url}"
        if self.method:
            message += f" (Method: {self.method})"
        if self.error_context:
            message += f" - {self.error_context}"
        body = self.response_body
        if body:
            if not include_full_body and len(body) > BODY_TRUNCATION:
                body = body[:BODY_TRUNCATION] + "..."
            message += f". Response: {body}"
        return message

    @property
    def is_authentication_error(self) -> bool:
        return self.status_code in (401, 403) or isinstance(self.kind, Authentication)

    @property
    def is_rate_limit_error(self) -> bool:
        return self.status_code == 429

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600

    @classmethod
    def from_failure(cls, failure: Failure, envelope: RequestEnvelope,
                     policy: RequestPolicy) -> HttpResponseError:
        """Build the exception subclass matching the failure's kind."""
        from gitgen.llm.transport import LogSuppression

        kind = failure.kind
        if isinstance(kind, Authentication):
            error_cls = AuthenticationError
        elif isinstance(kind, ContextLengthExceeded):
            error_cls = ContextLengthExceededError
        elif isinstance(kind, RateLimited):
            error_cls = RateLimitError
        elif kind.is_dialect_mismatch:
            error_cls = DialectMismatchError
        else:
            error_cls = HttpResponseError

        return error_cls(
            status_code=failure.response.status_code,
            kind=kind,
            url=envelope.url,
            method=envelope.method,
            response_body=failure.response.text,
            error_context=policy.error_context or envelope.error_context,
            attempts=failure.attempts,
            include_full_body=policy.log_suppression is LogSuppression.VERBOSE,
        )


class AuthenticationError(HttpResponseError):
    """Credentials were rejected. Never retried or healed."""


class DialectMismatchError(HttpResponseError):
    """The endpoint rejected the token parameter or temperature."""


class RateLimitError(HttpResponseError):
    """Rate limiting persisted through every retry."""

    @property
    def retry_after(self) -> float | None:
        return self.kind.retry_after


class ContextLengthExceededError(HttpResponseError):
    """The request exceeded the model's context window."""

    @property
    def max_context_length(self) -> int | None:
        return self.kind.max_context_length

    @property
    def requested_tokens(self) -> int | None:
        return self.kind.requested_tokens

    @property
    def prompt_tokens(self) -> int | None:
        return self.kind.prompt_tokens

    @property
    def completion_tokens(self) -> int | None:
        return self.kind.completion_tokens

    @property
    def api_error_message(self) -> str | None:
        return self.response_body


class SelfHealingError(LLMError):
    """The endpoint rejected the dialect again right after re-detection."""


class TransportConnectionError(LLMError):
    """No response could be obtained after every retry (connect errors, timeouts)."""

    def __init__(self, message: str, url: str | None = None, attempts: int = 1):
        self.url = url
        self.attempts = attempts
        super().__init__(message)
