"""Embedding service clients."""

import logging
from abc import ABC, abstractmethod
from functools import lru_cache

import httpx
from openai import AsyncOpenAI, OpenAIError

from parley.config import Settings, settings
from parley.errors import EmbeddingError
from parley.models import EMBEDDING_DIMENSIONS

logger = logging.getLogger(__name__)


class EmbeddingService(ABC):
    """Converts text to a fixed-dimension vector."""

    dimensions: int

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text. Raises EmbeddingError on failure."""


class OpenAIEmbeddingService(EmbeddingService):
    """Embeddings through the OpenAI API; transient failures are retried by the client."""

    dimensions = EMBEDDING_DIMENSIONS

    def __init__(self, config: Settings, http_client: httpx.AsyncClient | None = None):
        self.model = config.embedding_model
        self.client = AsyncOpenAI(
            api_key=config.openai_api_key,
            base_url=config.embedding_base_url,
            max_retries=config.embedding_max_retries,
            http_client=http_client,
        )

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text,
                encoding_format="float",
            )
        except OpenAIError as e:
            logger.exception(f"Embedding request failed: {e}")
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if not response.data:
            raise EmbeddingError("Embedding response contained no data")

        embedding = response.data[0].embedding
        if len(embedding) != self.dimensions:
            raise EmbeddingError(
                f"Expected {self.dimensions} dimensions from {self.model}, got {len(embedding)}"
            )
        return embedding


@lru_cache
def get_embedding_service() -> EmbeddingService | None:
    """Return the configured embedding service, or None if no API key is set."""
    if not settings.openai_api_key:
        logger.warning("No OpenAI API key configured, embeddings are disabled")
        return None
    return OpenAIEmbeddingService(settings)
