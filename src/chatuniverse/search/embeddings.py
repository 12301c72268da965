"""OpenAI query embedding backend."""

import logging
from typing import Optional

from openai import OpenAI, OpenAIError

from chatuniverse.config import settings
from chatuniverse.exceptions import EmbeddingUnavailableError

logger = logging.getLogger(__name__)


class OpenAIEmbeddingBackend:
    """
    Embed search queries with the OpenAI embeddings API.

    Args:
        api_key: OpenAI API key (defaults to ``settings.openai_api_key``)
        model: Embedding model (defaults to ``settings.openai_embedding_model``)
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        api_key = api_key or settings.openai_api_key
        if not api_key:
            raise ValueError("OpenAI API key is required")

        self.client = OpenAI(api_key=api_key)
        self.model = model or settings.openai_embedding_model
        logger.info(f"Initialized OpenAI embedding backend with model: {self.model}")

    def embed(self, text: str) -> list[float]:
        """
        Embed a single query string.

        Raises:
            EmbeddingUnavailableError: If the API call fails or returns no data
        """
        try:
            response = self.client.embeddings.create(model=self.model, input=text)
        except OpenAIError as e:
            logger.error(f"OpenAI embedding request failed: {e}")
            raise EmbeddingUnavailableError(str(e)) from e

        if not response.data:
            raise EmbeddingUnavailableError("OpenAI returned no embedding")
        return list(response.data[0].embedding)
