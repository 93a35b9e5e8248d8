from typing import List, Protocol
import logging

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class OpenAIEmbedder:
    """Single-text embedding adapter over the OpenAI embeddings endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        logger.debug(f"Generating embedding for text of length {len(text)}")
        response = await self.client.embeddings.create(input=text, model=self.model)
        return response.data[0].embedding
