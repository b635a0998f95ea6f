"""
Tests for the retrying HTTP transport.

HTTP is simulated with httpx.MockTransport and backoff sleeps are recorded
instead of awaited, except for the one Retry-After wall-clock test.

Run with:
    pytest tests/test_transport.py -v
"""

import random

import httpx
import pytest

from gitgen.llm.classifier import Authentication, ClientError, RateLimited, Transient
from gitgen.llm.exceptions import (
    AuthenticationError,
    ContextLengthExceededError,
    HttpResponseError,
    RateLimitError,
    TransportConnectionError,
)
from gitgen.llm.transport import (
    MAX_BACKOFF,
    MAX_RETRY_AFTER,
    Failure,
    HttpTransport,
    LogSuppression,
    RequestEnvelope,
    RequestPolicy,
    Success,
)
from tests.fakes import (
    CHAT_URL,
    RecordingSleep,
    ScriptedEndpoint,
    chat_response,
    context_length_exceeded,
    error_response,
    invalid_api_key,
    make_transport,
)


@pytest.fixture
def envelope():
    return RequestEnvelope.json("post", CHAT_URL, {"model": "gpt-test", "messages": []},
                                headers={"Authorization": "Bearer sk-test"})


# ---------------------------------------------------------------------------
# Envelope and policy
# ---------------------------------------------------------------------------

class TestRequestEnvelope:

    def test_json_envelope(self, envelope):
        assert envelope.method == "POST"
        assert envelope.header("content-type") == "application/json"
        assert envelope.header("AUTHORIZATION") == "Bearer sk-test"
        assert envelope.payload() == {"model": "gpt-test", "messages": []}

    def test_missing_header(self, envelope):
        assert envelope.header("api-key") is None


class TestRequestPolicy:

    def test_defaults(self):
        policy = RequestPolicy()
        assert policy.throw_on_error is True
        assert policy.max_retries == 3
        assert policy.log_suppression is LogSuppression.NORMAL

    def test_probing_policy_is_silent(self):
        policy = RequestPolicy.for_probing("parameter detection", max_retries=1)
        assert policy.log_suppression is LogSuppression.SILENT
        assert policy.error_context == "parameter detection"
        assert policy.max_retries == 1

    @pytest.mark.parametrize("kwargs", [{"max_retries": -1}, {"timeout": 0}])
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RequestPolicy(**kwargs)


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

class TestBackoff:

    @pytest.mark.parametrize("attempt, low, high", [
        (0, 0.5, 1.0),
        (1, 1.0, 2.0),
        (2, 2.0, 4.0),
        (3, 4.0, 8.0),
        (10, MAX_BACKOFF / 2, MAX_BACKOFF),
    ])
    def test_jittered_exponential(self, attempt, low, high):
        transport = HttpTransport(client=httpx.AsyncClient(), rng=random.Random(42))
        for _ in range(20):
            assert low <= transport.backoff_delay(attempt) <= high

    def test_retry_after_is_honoured_and_capped(self):
        transport = HttpTransport(client=httpx.AsyncClient())
        assert transport.retry_delay(RateLimited(retry_after=2.0), 0) == 2.0
        assert transport.retry_delay(RateLimited(retry_after=600.0), 0) == MAX_RETRY_AFTER

    def test_rate_limit_without_header_uses_backoff(self):
        transport = HttpTransport(client=httpx.AsyncClient(), rng=random.Random(1))
        assert 0.5 <= transport.retry_delay(RateLimited(), 0) <= 1.0


# ---------------------------------------------------------------------------
# execute()
# ---------------------------------------------------------------------------

class TestExecute:

    @pytest.mark.asyncio
    async def test_success_first_try(self, envelope):
        endpoint = ScriptedEndpoint(chat_response())
        result = await make_transport(endpoint).execute(envelope)
        assert isinstance(result, Success)
        assert result.attempts == 1
        assert endpoint.calls == 1

    @pytest.mark.asyncio
    async def test_retry_bound_is_max_retries_plus_one(self, envelope):
        endpoint = ScriptedEndpoint(error_response(503, "overloaded", type="server_error"))
        sleep = RecordingSleep()
        result = await make_transport(endpoint, sleep=sleep).execute(envelope, RequestPolicy(max_retries=3))
        assert isinstance(result, Failure)
        assert result.kind == Transient(status_code=503)
        assert result.attempts == 4
        assert endpoint.calls == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_zero_retries_means_one_attempt(self, envelope):
        endpoint = ScriptedEndpoint(error_response(500, "boom", type="server_error"))
        result = await make_transport(endpoint).execute(envelope, RequestPolicy(max_retries=0))
        assert result.attempts == 1
        assert endpoint.calls == 1

    @pytest.mark.asyncio
    async def test_recovers_after_transient(self, envelope):
        endpoint = ScriptedEndpoint(error_response(502, "bad gateway"), chat_response())
        result = await make_transport(endpoint).execute(envelope)
        assert isinstance(result, Success)
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_invalid_key_400_is_sent_once(self, envelope):
        endpoint = ScriptedEndpoint(invalid_api_key(status=400))
        sleep = RecordingSleep()
        result = await make_transport(endpoint, sleep=sleep).execute(envelope, RequestPolicy(max_retries=5))
        assert isinstance(result, Failure)
        assert result.kind == Authentication()
        assert endpoint.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, envelope):
        endpoint = ScriptedEndpoint(error_response(404, "no such model"))
        result = await make_transport(endpoint).execute(envelope)
        assert result.kind == ClientError(status_code=404)
        assert endpoint.calls == 1

    @pytest.mark.asyncio
    async def test_rate_limit_sleeps_for_retry_after(self, envelope):
        endpoint = ScriptedEndpoint(
            error_response(429, "Rate limit reached", type="requests", headers={"Retry-After": "7"}),
            chat_response(),
        )
        sleep = RecordingSleep()
        result = await make_transport(endpoint, sleep=sleep).execute(envelope)
        assert isinstance(result, Success)
        assert sleep.delays == [7.0]

    @pytest.mark.asyncio
    async def test_body_is_resent_on_every_attempt(self, envelope):
        endpoint = ScriptedEndpoint(error_response(500, "boom"), error_response(500, "boom"), chat_response())
        await make_transport(endpoint).execute(envelope)
        assert endpoint.calls == 3
        assert all(request.content == envelope.body for request in endpoint.requests)
        assert all(request.headers["Authorization"] == "Bearer sk-test" for request in endpoint.requests)

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self, envelope):
        endpoint = ScriptedEndpoint(httpx.ConnectError, httpx.ReadTimeout, chat_response())
        sleep = RecordingSleep()
        result = await make_transport(endpoint, sleep=sleep).execute(envelope)
        assert isinstance(result, Success)
        assert result.attempts == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_persistent_network_error(self, envelope):
        endpoint = ScriptedEndpoint(httpx.ConnectError)
        with pytest.raises(TransportConnectionError) as exc_info:
            await make_transport(endpoint).execute(envelope, RequestPolicy(max_retries=2))
        assert exc_info.value.attempts == 3
        assert exc_info.value.url == CHAT_URL
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert endpoint.calls == 3


class TestRateLimitWallClock:
    """Real sleep: the second attempt must not start before Retry-After elapses."""

    @pytest.mark.asyncio
    async def test_waits_at_least_retry_after(self, envelope):
        endpoint = ScriptedEndpoint(
            error_response(429, "Rate limit reached", type="requests", headers={"Retry-After": "2"}),
            chat_response(),
        )
        client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
        async with HttpTransport(client=client) as transport:
            result = await transport.execute(envelope)
        await client.aclose()

        assert isinstance(result, Success)
        assert endpoint.calls == 2
        assert endpoint.timestamps[1] - endpoint.timestamps[0] >= 1.99


# ---------------------------------------------------------------------------
# send()
# ---------------------------------------------------------------------------

class TestSend:

    @pytest.mark.asyncio
    async def test_returns_response(self, envelope):
        response = await make_transport(ScriptedEndpoint(chat_response("hi"))).send(envelope)
        assert response.json()["choices"][0]["message"]["content"] == "hi"

    @pytest.mark.asyncio
    async def test_raises_typed_errors(self, envelope):
        transport = make_transport(ScriptedEndpoint(invalid_api_key()))
        with pytest.raises(AuthenticationError) as exc_info:
            await transport.send(envelope)
        assert exc_info.value.status_code == 401
        assert exc_info.value.is_authentication_error
        assert exc_info.value.is_client_error

    @pytest.mark.asyncio
    async def test_context_length_fields(self, envelope):
        transport = make_transport(ScriptedEndpoint(context_length_exceeded()))
        with pytest.raises(ContextLengthExceededError) as exc_info:
            await transport.send(envelope)
        error = exc_info.value
        assert (error.max_context_length, error.requested_tokens) == (4097, 4927)
        assert (error.prompt_tokens, error.completion_tokens) == (3927, 1000)
        assert "maximum context length" in error.api_error_message

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit(self, envelope):
        endpoint = ScriptedEndpoint(error_response(429, "slow down", headers={"Retry-After": "1"}))
        with pytest.raises(RateLimitError) as exc_info:
            await make_transport(endpoint).send(envelope, RequestPolicy(max_retries=1))
        assert exc_info.value.retry_after == 1.0
        assert exc_info.value.attempts == 2
        assert exc_info.value.is_rate_limit_error

    @pytest.mark.asyncio
    async def test_no_throw_returns_last_response(self, envelope):
        endpoint = ScriptedEndpoint(error_response(500, "first"), error_response(500, "second"))
        response = await make_transport(endpoint).send(
            envelope, RequestPolicy(throw_on_error=False, max_retries=1)
        )
        assert response.status_code == 500
        assert "second" in response.text

    @pytest.mark.asyncio
    async def test_message_truncates_body(self, envelope):
        long_message = "x" * 500
        transport = make_transport(ScriptedEndpoint(error_response(404, long_message)))
        with pytest.raises(HttpResponseError) as exc_info:
            await transport.send(envelope, RequestPolicy(error_context="unit test"))
        message = str(exc_info.value)
        assert message.startswith(f"HTTP request failed with status 404 from {CHAT_URL} (Method: POST) - unit test")
        assert message.endswith("...")
        assert long_message not in message

    @pytest.mark.asyncio
    async def test_verbose_keeps_full_body(self, envelope):
        long_message = "y" * 500
        transport = make_transport(ScriptedEndpoint(error_response(404, long_message)))
        with pytest.raises(HttpResponseError) as exc_info:
            await transport.send(envelope, RequestPolicy(log_suppression=LogSuppression.VERBOSE))
        assert long_message in str(exc_info.value)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

class TestLogging:

    @pytest.mark.asyncio
    async def test_normal_policy_logs_warnings_and_errors(self, envelope, log_messages):
        endpoint = ScriptedEndpoint(error_response(503, "busy"))
        await make_transport(endpoint).execute(envelope, RequestPolicy(max_retries=1))
        assert any("Waiting" in m for m in log_messages("WARNING"))
        assert any("API error: 503" in m for m in log_messages("ERROR"))

    @pytest.mark.asyncio
    async def test_silent_policy_only_logs_debug(self, envelope, log_records):
        endpoint = ScriptedEndpoint(error_response(503, "busy"))
        await make_transport(endpoint).execute(envelope, RequestPolicy.for_probing(max_retries=1))
        assert log_records
        assert {r["level"].name for r in log_records} == {"DEBUG"}
