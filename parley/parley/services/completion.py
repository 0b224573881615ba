"""Chat completion service clients."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache

import httpx
from openai import APITimeoutError, AsyncOpenAI, OpenAIError

from parley.config import Settings, settings
from parley.errors import CompletionError, EmptyCompletionError

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    content: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class CompletionService(ABC):
    """Generates text from an ordered list of role-tagged messages."""

    model: str

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
    ) -> CompletionResult:
        """
        Run a completion.

        Raises:
            CompletionError: The provider failed or timed out
            EmptyCompletionError: The provider answered without content
        """


class OpenAICompletionService(CompletionService):
    """Completions through any OpenAI-compatible chat API."""

    def __init__(self, config: Settings, http_client: httpx.AsyncClient | None = None):
        self.model = config.completion_model
        self.max_tokens = config.completion_max_tokens
        self.temperature = config.completion_temperature
        self.timeout = config.completion_timeout_seconds
        self.client = AsyncOpenAI(
            api_key=config.completion_key,
            base_url=config.completion_base_url,
            timeout=config.completion_timeout_seconds,
            max_retries=0,
            http_client=http_client,
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
    ) -> CompletionResult:
        model = model or self.model

        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except APITimeoutError as e:
            raise CompletionError(f"Completion timed out after {self.timeout}s") from e
        except OpenAIError as e:
            logger.exception(f"Completion request failed: {e}")
            raise CompletionError(f"Completion request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise EmptyCompletionError()

        usage = response.usage
        return CompletionResult(
            content=content.strip(),
            model=response.model or model,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )


@lru_cache
def get_completion_service() -> CompletionService:
    if not settings.completion_key:
        logger.warning("No completion API key configured, completion calls will fail")
    return OpenAICompletionService(settings)
