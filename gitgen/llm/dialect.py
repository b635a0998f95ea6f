"""Dialect Detection for OpenAI-Compatible Endpoints

Providers disagree on request shape: newer OpenAI models want
`max_completion_tokens` and refuse any temperature but 1, older ones and most
compatible servers want `max_tokens`. DialectProber discovers which shape an
endpoint accepts with two tiny probe requests.

The probes are ordered. Temperature is only tested once the token parameter
is known, because a rejected token parameter would hide the real temperature
response.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from gitgen import (
    DEFAULT_TEMPERATURE,
    MAX_COMPLETION_TOKENS_PARAMETER,
    MAX_TOKENS_PARAMETER,
    REASONING_MODEL_TEMPERATURE,
)
from gitgen.llm.classifier import Authentication, ParameterMismatch, TemperatureRejected
from gitgen.llm.exceptions import HttpResponseError
from gitgen.llm.request import Message, build_chat_envelope
from gitgen.llm.transport import (
    Failure,
    HttpTransport,
    RequestEnvelope,
    RequestPolicy,
    TransportResult,
)

TEST_PROMPT = "Hello!"
TEST_TOKEN_LIMIT = 5
MAX_MODEL_NAME_LENGTH = 100
INVALID_MODEL_CHARS = set("\"'`$\\\n\r\t")


class TokenParameterStyle(Enum):
    LEGACY = "legacy"
    MODERN = "modern"

    @property
    def parameter_name(self) -> str:
        if self is TokenParameterStyle.LEGACY:
            return MAX_TOKENS_PARAMETER
        return MAX_COMPLETION_TOKENS_PARAMETER

    @property
    def label(self) -> str:
        return f"{self.value.capitalize()} ({self.parameter_name})"


@dataclass(frozen=True)
class DialectParameters:
    """Snapshot of the request shape one model endpoint accepts.

    Replaced as a whole whenever detection runs; token style and temperature
    are never updated independently.
    """
    token_style: TokenParameterStyle = TokenParameterStyle.MODERN
    temperature: float = DEFAULT_TEMPERATURE

    @property
    def use_legacy_max_tokens(self) -> bool:
        return self.token_style is TokenParameterStyle.LEGACY

    def to_dict(self) -> dict:
        return {"use_legacy_max_tokens": self.use_legacy_max_tokens, "temperature": self.temperature}

    @classmethod
    def from_dict(cls, data: dict) -> DialectParameters:
        style = TokenParameterStyle.LEGACY if data.get("use_legacy_max_tokens") else TokenParameterStyle.MODERN
        return cls(token_style=style, temperature=float(data.get("temperature", DEFAULT_TEMPERATURE)))


def model_name_error(model: str | None) -> str | None:
    """Return why a model name is unusable, or None when it is fine."""
    if not model or not model.strip():
        return "Model name cannot be empty"
    if len(model) > MAX_MODEL_NAME_LENGTH:
        return f"Model name cannot exceed {MAX_MODEL_NAME_LENGTH} characters"
    if any(c in INVALID_MODEL_CHARS for c in model):
        return "Model name contains invalid characters"
    if any(unicodedata.category(c) == "Cc" for c in model):
        return "Model name cannot contain control characters"
    return None


class DialectProber:
    """Runs the probe protocol through an HttpTransport."""

    def __init__(self, transport: HttpTransport, max_retries: int | None = None):
        self.transport = transport
        overrides = {} if max_retries is None else {"max_retries": max_retries}
        self.policy = RequestPolicy.for_probing(error_context="parameter detection", **overrides)

    def _probe_envelope(self, url: str, api_key: str | None, requires_auth: bool, model: str,
                        dialect: DialectParameters, send_temperature: bool = True) -> RequestEnvelope:
        return build_chat_envelope(
            url, api_key, requires_auth, model,
            messages=(Message(role="user", content=TEST_PROMPT),),
            dialect=dialect,
            max_tokens=TEST_TOKEN_LIMIT,
            error_context="parameter detection",
            send_temperature=send_temperature,
        )

    def _error(self, failure: Failure, envelope: RequestEnvelope) -> HttpResponseError:
        return HttpResponseError.from_failure(failure, envelope, self.policy)

    async def detect(self, url: str, api_key: str | None, model: str,
                     requires_auth: bool = True) -> DialectParameters:
        """Discover the token-parameter style and temperature the endpoint accepts.

        Any failure the protocol does not expect is raised unchanged as its
        structured exception; detection never guesses.
        """
        error = model_name_error(model)
        if error:
            raise ValueError(error)

        logger.debug(f"Starting API parameter detection for model: {model}")
        token_style = await self._detect_token_style(url, api_key, requires_auth, model)
        temperature = await self._detect_temperature(url, api_key, requires_auth, model, token_style)

        dialect = DialectParameters(token_style=token_style, temperature=temperature)
        logger.info(f"Parameter detection complete for {model}: "
                    f"token parameter {token_style.label}, temperature {temperature}")
        return dialect

    async def _detect_token_style(self, url, api_key, requires_auth, model) -> TokenParameterStyle:
        # Modern first: its rejection message is what identifies a legacy endpoint.
        # No temperature here, reasoning models would reject it before the token parameter.
        envelope = self._probe_envelope(
            url, api_key, requires_auth, model,
            DialectParameters(TokenParameterStyle.MODERN), send_temperature=False,
        )
        result = await self.transport.execute(envelope, self.policy)
        if not isinstance(result, Failure):
            logger.debug("Model supports modern max_completion_tokens parameter")
            return TokenParameterStyle.MODERN

        kind = result.kind
        if isinstance(kind, ParameterMismatch) and kind.parameter_name == MAX_COMPLETION_TOKENS_PARAMETER:
            logger.debug("Model requires legacy max_tokens parameter")
            return TokenParameterStyle.LEGACY
        raise self._error(result, envelope)

    async def _detect_temperature(self, url, api_key, requires_auth, model,
                                  token_style: TokenParameterStyle) -> float:
        envelope = self._probe_envelope(
            url, api_key, requires_auth, model,
            DialectParameters(token_style, DEFAULT_TEMPERATURE),
        )
        result = await self.transport.execute(envelope, self.policy)
        if not isinstance(result, Failure):
            logger.debug(f"Model supports custom temperature: {DEFAULT_TEMPERATURE}")
            return DEFAULT_TEMPERATURE
        if not isinstance(result.kind, TemperatureRejected):
            raise self._error(result, envelope)

        logger.debug("Custom temperature not supported, trying reasoning model default")
        envelope = self._probe_envelope(
            url, api_key, requires_auth, model,
            DialectParameters(token_style, REASONING_MODEL_TEMPERATURE),
        )
        result = await self.transport.execute(envelope, self.policy)
        if isinstance(result, Failure):
            raise self._error(result, envelope)
        logger.debug(f"Model requires fixed temperature: {REASONING_MODEL_TEMPERATURE}")
        return REASONING_MODEL_TEMPERATURE

    async def validate_connection(self, url: str, api_key: str | None, model: str,
                                  requires_auth: bool = True) -> bool:
        """Basic connectivity check without detection.

        Raises AuthenticationError for rejected credentials; any other HTTP
        failure just returns False.
        """
        envelope = self._probe_envelope(
            url, api_key, requires_auth, model,
            DialectParameters(TokenParameterStyle.LEGACY, DEFAULT_TEMPERATURE),
        )
        result: TransportResult = await self.transport.execute(envelope, self.policy)
        if not isinstance(result, Failure):
            logger.debug("API connection validated successfully")
            return True
        if isinstance(result.kind, Authentication):
            logger.error("Authentication failed during connection validation")
            raise self._error(result, envelope)
        logger.debug(f"API connection validation failed with status {result.status_code}")
        return False
