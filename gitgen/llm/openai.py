"""OpenAI-Compatible LLM Client"""

from typing import TYPE_CHECKING, Optional

from loguru import logger

from gitgen.llm.base import LLMClient, LLMResponse
from gitgen.llm.coordinator import DialectPersister, SelfHealingCoordinator
from gitgen.llm.dialect import DialectParameters, DialectProber
from gitgen.llm.request import build_messages
from gitgen.llm.transport import HttpTransport, RequestPolicy

if TYPE_CHECKING:
    from gitgen.config import ModelConfig

EMPTY_RESPONSE_FALLBACK = "No response received from LLM."


class OpenAIClient(LLMClient):
    """Client for any endpoint speaking the OpenAI chat-completions protocol.

    Holds its own ModelConfig snapshot. When a call heals the dialect the
    snapshot is swapped for the corrected one, so later calls on this client
    start from the right request shape even without a persister.
    """

    def __init__(
        self,
        config: 'ModelConfig',
        transport: Optional[HttpTransport] = None,
        persister: Optional[DialectPersister] = None,
        policy: Optional[RequestPolicy] = None,
    ):
        self.config = config
        self._owns_transport = transport is None
        self.transport = transport or HttpTransport()
        self.persister = persister
        self.policy = policy or RequestPolicy(error_context="chat completion")
        self.prober = DialectProber(self.transport, max_retries=self.policy.max_retries)
        self.coordinator = SelfHealingCoordinator(
            self.transport, prober=self.prober, persister=persister, policy=self.policy,
        )

    @property
    def name(self) -> str:
        return f"{self.config.name} ({self.config.model_id})"

    async def generate(self, prompt: str, system_prompt: str | None = None) -> LLMResponse:
        completion = await self.coordinator.generate(self.config, build_messages(prompt, system_prompt))
        if completion.healed:
            self.config = self.config.with_dialect(completion.dialect)

        content = completion.content.strip()
        if not content:
            logger.warning(f"{self.config.model_id} returned an empty response")
            content = EMPTY_RESPONSE_FALLBACK

        return LLMResponse(
            content=content,
            model=completion.model,
            input_tokens=completion.prompt_tokens,
            output_tokens=completion.completion_tokens,
            total_tokens=completion.total_tokens,
            healed=completion.healed,
        )

    async def detect_parameters(self) -> DialectParameters:
        """Probe the endpoint, adopt the detected dialect and persist it."""
        dialect = await self.prober.detect(
            self.config.url, self.config.api_key, self.config.model_id,
            requires_auth=self.config.requires_auth,
        )
        self.config = self.config.with_dialect(dialect)
        self.coordinator.persist(self.config.model_id, dialect)
        return dialect

    async def validate_connection(self) -> bool:
        return await self.prober.validate_connection(
            self.config.url, self.config.api_key, self.config.model_id,
            requires_auth=self.config.requires_auth,
        )

    async def aclose(self) -> None:
        if self._owns_transport:
            await self.transport.aclose()
