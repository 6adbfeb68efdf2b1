"""
TaskLoop Embedding - Text embedding for result enrichment and context lookup.

This module provides the embedding clients: OpenAI's hosted embedding
endpoint and a local sentence-transformers model.
"""

import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import numpy as np

from taskloop.errors import ConfigError, EmbeddingError
from taskloop.providers.base import RateLimitExceeded, retry_rate_limited
from taskloop.validation.config import Config


class Embedder(ABC):
    """Turns text into a fixed-length vector."""

    model_name: str

    @abstractmethod
    def embed_documents(self, documents: List[str]) -> np.ndarray:
        """
        Embed multiple documents.

        Args:
            documents: List of document texts to embed.

        Returns:
            Numpy array of embeddings (one row per document).
        """

    def embed_query(self, query: str) -> np.ndarray:
        """
        Embed a single text.

        Args:
            query: The text to embed.

        Returns:
            Numpy array of the embedding.
        """
        return self.embed_documents([query])[0]


class OpenAIEmbedder(Embedder):
    """
    Embedder backed by the OpenAI embeddings endpoint.

    Rate-limited requests are retried with the same policy as completions.

    Example:
        >>> embedder = OpenAIEmbedder(api_key="sk-...")
        >>> embedder.embed_query("Write a haiku").shape
        (1536,)
    """

    DEFAULT_MODEL = "text-embedding-ada-002"

    def __init__(
        self,
        api_key: str,
        model_name: Optional[str] = None,
        timeout: int = 120,
        retry_count: int = 3,
        rate_limit_wait: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model_name = model_name or self.DEFAULT_MODEL
        self.retry_count = retry_count
        self.rate_limit_wait = rate_limit_wait
        self._api_key = api_key
        self._timeout = timeout
        self._sleep = sleep
        self._client = None

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            try:
                import openai
            except ImportError:
                raise ImportError("openai package required. Install with: pip install openai")
            self._client = openai.OpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    def _create(self, texts: List[str]):
        client = self.client
        import openai

        try:
            return client.embeddings.create(input=texts, model=self.model_name)
        except openai.RateLimitError as e:
            raise RateLimitExceeded(str(e)) from e
        except openai.OpenAIError as e:
            raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e

    def embed_documents(self, documents: List[str]) -> np.ndarray:
        # ada-002 expects single-line input
        texts = [doc.replace("\n", " ") for doc in documents]
        response = retry_rate_limited(
            lambda: self._create(texts),
            "OpenAI embeddings",
            retry_count=self.retry_count,
            wait=self.rate_limit_wait,
            sleep=self._sleep,
            error_class=EmbeddingError,
        )

        rows = sorted(response.data, key=lambda item: item.index)
        return np.array([row.embedding for row in rows], dtype=np.float32)


class SentenceTransformerEmbedder(Embedder):
    """
    Text embedder using sentence-transformers.

    Runs locally, so no API key is needed. Note that the default model
    produces 384-dimensional vectors; size the index accordingly.
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"

    def __init__(self, model_name: Optional[str] = None):
        """
        Initialize the Embedder.

        Args:
            model_name: Name of the sentence-transformers model to use.
                       Defaults to 'all-MiniLM-L6-v2'.
        """
        self.model_name = model_name or self.DEFAULT_MODEL
        self._model = None

    @property
    def model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer

                self._model = SentenceTransformer(self.model_name)
            except ImportError:
                raise ImportError(
                    "sentence-transformers is required for local embeddings. "
                    "Install with: pip install taskloop[local]"
                )
        return self._model

    def embed_documents(self, documents: List[str]) -> np.ndarray:
        return self.model.encode(documents, convert_to_numpy=True)


def cosine_similarity(query_embedding: np.ndarray, document_embeddings: np.ndarray) -> np.ndarray:
    """
    Calculate cosine similarity between a query and multiple documents.

    Zero vectors score 0.0 instead of producing NaN.
    """
    query_norm = np.linalg.norm(query_embedding)
    doc_norms = np.linalg.norm(document_embeddings, axis=1)
    denom = doc_norms * query_norm
    dots = document_embeddings @ query_embedding
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, dots / denom, 0.0)
    return scores


def create_embedder(config: Config) -> Embedder:
    """Build the embedder selected by the ``embedding`` config section."""
    settings = config.merged.embedding

    if settings.backend == "openai":
        api_key = config.get_api_key("openai")
        if not api_key:
            raise ConfigError("OPENAI_API_KEY is required for the openai embedding backend")
        return OpenAIEmbedder(
            api_key=api_key,
            model_name=settings.model,
            timeout=config.merged.agent.timeout,
            retry_count=config.merged.agent.retry_count,
            rate_limit_wait=config.merged.agent.rate_limit_wait,
        )
    if settings.backend == "local":
        return SentenceTransformerEmbedder(model_name=settings.model)

    raise ConfigError(f"Unknown embedding backend: {settings.backend}")
