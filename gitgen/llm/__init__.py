"""LLM Client Package"""

from gitgen.llm.base import LLMClient, LLMResponse, LLMError
from gitgen.llm.classifier import (
    Authentication,
    ClientError,
    ContextLengthExceeded,
    FailureKind,
    ParameterMismatch,
    RateLimited,
    TemperatureRejected,
    Transient,
    Unknown,
    classify,
    register_context_length_matcher,
)
from gitgen.llm.coordinator import DialectPersister, SelfHealingCoordinator
from gitgen.llm.dialect import DialectParameters, DialectProber, TokenParameterStyle
from gitgen.llm.exceptions import (
    AuthenticationError,
    ContextLengthExceededError,
    DialectMismatchError,
    HttpResponseError,
    RateLimitError,
    SelfHealingError,
    TransportConnectionError,
)
from gitgen.llm.openai import OpenAIClient
from gitgen.llm.request import Completion, Message
from gitgen.llm.transport import (
    Failure,
    HttpTransport,
    LogSuppression,
    RequestEnvelope,
    RequestPolicy,
    Success,
)


def get_client(config, persister: DialectPersister | None = None,
               transport: HttpTransport | None = None,
               policy: RequestPolicy | None = None) -> LLMClient:
    """Get an LLM client for a resolved ModelConfig."""
    return OpenAIClient(config, transport=transport, persister=persister, policy=policy)


__all__ = [
    "LLMClient",
    "LLMResponse",
    "LLMError",
    "OpenAIClient",
    "get_client",
    "SelfHealingCoordinator",
    "DialectPersister",
    "DialectProber",
    "DialectParameters",
    "TokenParameterStyle",
    "HttpTransport",
    "RequestEnvelope",
    "RequestPolicy",
    "LogSuppression",
    "Success",
    "Failure",
    "Message",
    "Completion",
    "FailureKind",
    "Transient",
    "RateLimited",
    "Authentication",
    "ParameterMismatch",
    "TemperatureRejected",
    "ContextLengthExceeded",
    "ClientError",
    "Unknown",
    "classify",
    "register_context_length_matcher",
    "HttpResponseError",
    "AuthenticationError",
    "ContextLengthExceededError",
    "DialectMismatchError",
    "RateLimitError",
    "SelfHealingError",
    "TransportConnectionError",
]
