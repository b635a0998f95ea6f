"""Self-Healing Chat Completions

SelfHealingCoordinator sends a chat request with the model's stored dialect.
When the endpoint rejects the token parameter or temperature, it re-detects
the dialect, resends once with the new snapshot and hands the snapshot to a
DialectPersister so the next run starts with the right shape.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Sequence

from loguru import logger

from gitgen.llm.base import LLMError
from gitgen.llm.dialect import DialectParameters, DialectProber
from gitgen.llm.exceptions import HttpResponseError, SelfHealingError
from gitgen.llm.request import Completion, Message, build_chat_envelope, parse_completion
from gitgen.llm.transport import (
    Failure,
    HttpTransport,
    RequestEnvelope,
    RequestPolicy,
    TransportResult,
)

if TYPE_CHECKING:
    from gitgen.config import ModelConfig

ERROR_CONTEXT = "chat completion"


class DialectPersister(Protocol):
    def update_dialect(self, model_id: str, dialect: DialectParameters) -> None:
        ...


class SelfHealingCoordinator:
    """Runs one chat completion, healing a stale dialect at most once per call."""

    def __init__(
        self,
        transport: HttpTransport,
        prober: DialectProber | None = None,
        persister: DialectPersister | None = None,
        policy: RequestPolicy | None = None,
    ):
        self.transport = transport
        self.policy = policy or RequestPolicy(error_context=ERROR_CONTEXT)
        self.prober = prober or DialectProber(transport, max_retries=self.policy.max_retries)
        self.persister = persister

    def _envelope(self, config: ModelConfig, messages: Sequence[Message],
                  dialect: DialectParameters) -> RequestEnvelope:
        return build_chat_envelope(
            config.url,
            config.api_key,
            config.requires_auth,
            config.model_id,
            messages,
            dialect=dialect,
            max_tokens=config.max_output_tokens,
            error_context=ERROR_CONTEXT,
        )

    def _error(self, failure: Failure, envelope: RequestEnvelope) -> HttpResponseError:
        return HttpResponseError.from_failure(failure, envelope, self.policy)

    async def generate(self, config: ModelConfig, messages: Sequence[Message]) -> Completion:
        envelope = self._envelope(config, messages, config.dialect)
        result: TransportResult = await self.transport.execute(envelope, self.policy)
        if not isinstance(result, Failure):
            return parse_completion(result.response, config.model_id, config.dialect)
        if not result.kind.is_dialect_mismatch:
            raise self._error(result, envelope)

        mismatch = self._error(result, envelope)
        logger.warning(f"{config.model_id} rejected its stored parameters "
                       f"({type(result.kind).__name__}), re-detecting")
        return await self._heal(config, messages, mismatch)

    async def _heal(self, config: ModelConfig, messages: Sequence[Message],
                    mismatch: HttpResponseError) -> Completion:
        try:
            dialect = await self.prober.detect(
                config.url, config.api_key, config.model_id, requires_auth=config.requires_auth,
            )
        except (LLMError, ValueError) as e:
            raise e from mismatch

        healed = config.with_dialect(dialect)
        envelope = self._envelope(healed, messages, dialect)
        result = await self.transport.execute(envelope, self.policy)

        if isinstance(result, Failure) and result.kind.is_dialect_mismatch:
            raise SelfHealingError(
                f"{config.model_id} rejected the re-detected parameters "
                f"({dialect.token_style.label}, temperature {dialect.temperature}); "
                f"the endpoint is answering inconsistently"
            ) from self._error(result, envelope)

        self.persist(config.model_id, dialect)
        if isinstance(result, Failure):
            raise self._error(result, envelope)
        logger.info(f"Self-healed {config.model_id}: {dialect.token_style.label}, "
                    f"temperature {dialect.temperature}")
        return parse_completion(result.response, config.model_id, dialect, healed=True)

    def persist(self, model_id: str, dialect: DialectParameters) -> None:
        """Hand a detected dialect to the persister; failures are logged, not raised."""
        if self.persister is None:
            return
        try:
            self.persister.update_dialect(model_id, dialect)
        except Exception:
            logger.exception(f"Failed to save detected parameters for {model_id}")
