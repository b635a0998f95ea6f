"""
Unit tests for failure classification and context-length parsing.

Run with:
    pytest tests/test_classifier.py -v
"""

import json
import re
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from gitgen.llm import classifier
from gitgen.llm.classifier import (
    Authentication,
    ClientError,
    ContextLengthExceeded,
    ContextLengthMatcher,
    ParameterMismatch,
    RateLimited,
    TemperatureRejected,
    Transient,
    Unknown,
    classify,
    parse_context_length,
    parse_retry_after,
    register_context_length_matcher,
)


def _error_body(message, type="invalid_request_error", param=None, code=None) -> str:
    return json.dumps({"error": {"message": message, "type": type, "param": param, "code": code}})


OPENAI_CONTEXT_BODY = _error_body(
    "This model's maximum context length is 4097 tokens. However, you requested 4927 tokens "
    "(3927 in the messages, 1000 in the completion). Please reduce the length of the messages or completion.",
    param="messages",
    code="context_length_exceeded",
)

TERSE_CONTEXT_BODY = _error_body(
    "This model's maximum prompt length is 131072 but the request contains 150000 tokens.",
)


# ---------------------------------------------------------------------------
# Status-code rules
# ---------------------------------------------------------------------------

class TestStatusRules:
    """Authentication, rate limiting and server errors."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses(self, status):
        assert classify(status, "") == Authentication()

    @pytest.mark.parametrize("phrase", ["invalid_api_key", "Incorrect API key provided", "Invalid API key"])
    def test_auth_phrase_on_400(self, phrase):
        assert classify(400, f'{{"error": {{"message": "{phrase}"}}}}') == Authentication()

    def test_auth_wins_over_parameter_markers(self):
        body = _error_body("Invalid API key", code="unsupported_parameter", param="max_tokens")
        assert classify(400, body) == Authentication()

    def test_rate_limit_without_header(self):
        assert classify(429, "slow down") == RateLimited(retry_after=None)

    def test_rate_limit_reads_retry_after_case_insensitively(self):
        assert classify(429, "", {"Retry-After": "7"}) == RateLimited(retry_after=7.0)
        assert classify(429, "", {"retry-after": "3"}) == RateLimited(retry_after=3.0)

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 599])
    def test_server_errors_are_transient(self, status):
        kind = classify(status, "upstream exploded")
        assert kind == Transient(status_code=status)
        assert kind.retryable

    def test_408_is_a_plain_client_error(self):
        kind = classify(408, "request timeout")
        assert kind == ClientError(status_code=408)
        assert not kind.retryable

    def test_unclassifiable_status(self):
        kind = classify(302, "moved")
        assert kind == Unknown(status_code=302, body="moved")

    def test_missing_status_and_body(self):
        assert classify(None, None) == Unknown(status_code=None, body="")


# ---------------------------------------------------------------------------
# Dialect mismatches
# ---------------------------------------------------------------------------

class TestDialectRules:
    """Token-parameter and temperature rejections on 400."""

    def test_max_tokens_rejected(self):
        body = _error_body(
            "Unsupported parameter: 'max_tokens' is not supported with this model. "
            "Use 'max_completion_tokens' instead.",
            param="max_tokens",
            code="unsupported_parameter",
        )
        kind = classify(400, body)
        assert kind == ParameterMismatch(parameter_name="max_tokens")
        assert kind.is_dialect_mismatch
        assert not kind.retryable

    def test_max_completion_tokens_rejected(self):
        body = _error_body(
            "Unrecognized request argument supplied: max_completion_tokens",
            param="max_completion_tokens",
        )
        assert classify(400, body) == ParameterMismatch(parameter_name="max_completion_tokens")

    def test_first_named_parameter_without_param_field(self):
        # plain text body: the rejected name comes first, the suggestion second
        body = "unsupported_parameter: 'max_tokens' is not supported. Use 'max_completion_tokens' instead."
        assert classify(400, body) == ParameterMismatch(parameter_name="max_tokens")

    def test_param_field_wins_over_text_order(self):
        body = _error_body(
            "Use max_tokens instead of max_completion_tokens",
            param="max_completion_tokens",
            code="unsupported_parameter",
        )
        assert classify(400, body) == ParameterMismatch(parameter_name="max_completion_tokens")

    def test_temperature_rejected(self):
        body = _error_body(
            "Unsupported value: 'temperature' does not support 0.2 with this model. "
            "Only the default (1) value is supported.",
            param="temperature",
            code="unsupported_value",
        )
        kind = classify(400, body)
        assert kind == TemperatureRejected()
        assert kind.is_dialect_mismatch

    def test_parameter_names_outside_400_are_not_mismatches(self):
        body = _error_body("Unsupported parameter: max_tokens", param="max_tokens")
        assert classify(422, body) == ClientError(status_code=422)

    def test_marker_without_token_parameter(self):
        body = _error_body("Unsupported parameter: 'logprobs'", param="logprobs", code="unsupported_parameter")
        assert classify(400, body) == ClientError(status_code=400)


# ---------------------------------------------------------------------------
# Context length
# ---------------------------------------------------------------------------

class TestContextLength:
    """Both provider phrasings and the bare error code."""

    def test_openai_phrasing(self):
        kind = classify(400, OPENAI_CONTEXT_BODY)
        assert kind == ContextLengthExceeded(
            max_context_length=4097,
            requested_tokens=4927,
            prompt_tokens=3927,
            completion_tokens=1000,
        )
        assert not kind.retryable
        assert not kind.is_dialect_mismatch

    def test_terse_phrasing(self):
        kind = classify(400, TERSE_CONTEXT_BODY)
        assert kind == ContextLengthExceeded(max_context_length=131072, requested_tokens=150000)

    def test_code_only_gives_empty_breakdown(self):
        body = _error_body("Too long.", code="context_length_exceeded")
        assert classify(400, body) == ContextLengthExceeded()

    def test_context_length_on_413(self):
        assert classify(413, OPENAI_CONTEXT_BODY).max_context_length == 4097

    def test_no_match(self):
        assert parse_context_length("something else entirely") is None
        assert parse_context_length("") is None

    def test_registered_matcher(self, monkeypatch):
        monkeypatch.setattr(classifier, "CONTEXT_LENGTH_MATCHERS", classifier.CONTEXT_LENGTH_MATCHERS)
        register_context_length_matcher(ContextLengthMatcher(
            name="window",
            max_context=re.compile(r"window of (\d+)"),
            requested=re.compile(r"got (\d+)"),
        ))
        kind = classify(400, "input exceeds the window of 8192, got 9000")
        assert kind == ContextLengthExceeded(max_context_length=8192, requested_tokens=9000)


# ---------------------------------------------------------------------------
# Retry-After
# ---------------------------------------------------------------------------

class TestRetryAfter:
    """Seconds and HTTP-date forms."""

    @pytest.mark.parametrize("value, expected", [
        ("2", 2.0),
        (" 1.5 ", 1.5),
        ("0", 0.0),
        ("-4", 0.0),
    ])
    def test_seconds(self, value, expected):
        assert parse_retry_after(value) == expected

    def test_http_date(self):
        retry_at = datetime.now(timezone.utc) + timedelta(seconds=30)
        delay = parse_retry_after(format_datetime(retry_at, usegmt=True))
        assert 25 <= delay <= 31

    def test_date_in_the_past(self):
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_unparseable(self, value):
        assert parse_retry_after(value) is None


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------

class TestDeterminism:

    @pytest.mark.parametrize("status, body", [
        (400, OPENAI_CONTEXT_BODY),
        (400, TERSE_CONTEXT_BODY),
        (400, _error_body("Unsupported parameter: max_tokens", param="max_tokens")),
        (401, ""),
        (503, "busy"),
        (418, "teapot"),
    ])
    def test_same_input_same_kind(self, status, body):
        results = {classify(status, body, {"Retry-After": "1"}) for _ in range(5)}
        assert len(results) == 1
