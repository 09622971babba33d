import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Union

from openai import APIConnectionError, APITimeoutError, AzureOpenAI, OpenAI, OpenAIError, RateLimitError

from statute.core.exceptions import EmbeddingError
from statute.core.tokens import validate_chunk_size
from statute.settings import (
    AZURE_OPENAI_API_KEY,
    AZURE_OPENAI_API_VERSION,
    AZURE_OPENAI_ENDPOINT,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MAX_TOKENS,
    EMBEDDING_MODEL,
    OPENAI_API_KEY,
)

logger = logging.getLogger(__name__)

# Rate limiting config
MAX_RETRIES = 4
BASE_BACKOFF = 1.0  # seconds
MAX_BACKOFF = 120.0
BATCH_DELAY = 0.1  # seconds between batches

_openai_client = None
_openai_client_lock = threading.Lock()


def get_openai_client() -> Union[AzureOpenAI, OpenAI]:
    """Lazy load the embeddings client (thread-safe).

    Uses Azure OpenAI when AZURE_OPENAI_ENDPOINT is set, otherwise OpenAI.
    """
    global _openai_client
    if _openai_client is None:
        with _openai_client_lock:
            if _openai_client is None:
                if AZURE_OPENAI_ENDPOINT:
                    logger.info("Initializing Azure OpenAI client...")
                    _openai_client = AzureOpenAI(
                        api_key=AZURE_OPENAI_API_KEY,
                        api_version=AZURE_OPENAI_API_VERSION,
                        azure_endpoint=AZURE_OPENAI_ENDPOINT,
                        max_retries=0,  # We handle retries manually
                        timeout=60.0,
                    )
                else:
                    logger.info("Initializing OpenAI client...")
                    _openai_client = OpenAI(api_key=OPENAI_API_KEY, max_retries=0, timeout=60.0)
    return _openai_client


class EmbeddingService(ABC):
    """Turns texts into vectors, preserving input order."""

    @abstractmethod
    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed texts. Raises EmbeddingError on failure."""


class OpenAIEmbeddingService(EmbeddingService):
    """Batched embeddings via the OpenAI embeddings endpoint.

    Every text is checked against the model's token limit before any
    request is made, so an oversized text fails fast with TOKEN_LIMIT.
    """

    def __init__(
        self,
        client: Optional[Union[AzureOpenAI, OpenAI]] = None,
        model: str = EMBEDDING_MODEL,
        dimensions: Optional[int] = EMBEDDING_DIMENSIONS,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        max_tokens: int = EMBEDDING_MAX_TOKENS,
        max_retries: int = MAX_RETRIES,
        batch_delay: float = BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.batch_delay = batch_delay
        self._sleep = sleep

    @property
    def client(self) -> Union[AzureOpenAI, OpenAI]:
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def validate(self, texts: List[str]) -> None:
        for index, text in enumerate(texts):
            validation = validate_chunk_size(text, self.max_tokens)
            if not validation.valid:
                raise EmbeddingError(
                    f"Text at index {index} exceeds token limit: "
                    f"{validation.tokens} tokens (max {self.max_tokens})",
                    EmbeddingError.TOKEN_LIMIT,
                    {"index": index, "tokens": validation.tokens},
                )

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        kwargs = {"model": self.model, "input": texts}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions

        for attempt in range(self.max_retries):
            try:
                response = self.client.embeddings.create(**kwargs)
                return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]

            except (RateLimitError, APITimeoutError, APIConnectionError) as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Failed to generate embeddings after {self.max_retries} attempts: {e}")
                    raise EmbeddingError(
                        "Rate limit exceeded after max retries",
                        EmbeddingError.RATE_LIMIT,
                        {"error": str(e), "attempts": self.max_retries},
                    ) from e

                backoff = min(BASE_BACKOFF * (2**attempt), MAX_BACKOFF)
                sleep_time = backoff + random.uniform(0, backoff * 0.1)
                logger.warning(
                    f"{type(e).__name__}: {e}, retrying in {sleep_time:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                self._sleep(sleep_time)

            except OpenAIError as e:
                logger.error(f"Non-retryable error generating embeddings: {type(e).__name__}: {e}")
                raise EmbeddingError(
                    "Failed to generate embeddings", EmbeddingError.API_ERROR, {"error": str(e)}
                ) from e

        raise EmbeddingError(
            f"Failed to generate embeddings after {self.max_retries} retries", EmbeddingError.API_ERROR
        )

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in batches, with a short delay between batches."""
        if not texts:
            return []

        self.validate(texts)

        vectors: List[List[float]] = []
        total_batches = (len(texts) + self.batch_size - 1) // self.batch_size
        for batch_number, start in enumerate(range(0, len(texts), self.batch_size), 1):
            batch = texts[start : start + self.batch_size]
            batch_start = time.time()
            embeddings = self._embed_batch(batch)
            if len(embeddings) != len(batch):
                raise EmbeddingError(
                    f"Expected {len(batch)} embeddings, got {len(embeddings)}",
                    EmbeddingError.API_ERROR,
                    {"batch": batch_number},
                )
            vectors.extend(embeddings)

            logger.debug(
                f"Embedding batch {batch_number}/{total_batches} "
                f"({len(batch)} texts, {time.time() - batch_start:.2f}s)"
            )

            if start + self.batch_size < len(texts):
                self._sleep(self.batch_delay)

        return vectors
