"""
Embedding Providers - Turn text into fixed-dimension vectors

Part of the Hybrid Search Engine.

The engine talks to embedding backends only through EmbeddingProvider.
OpenAIEmbeddingProvider calls the OpenAI embeddings API; any other backend
(local model, test double) can be wrapped with CallableEmbeddingProvider.

License: MIT
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Sequence
import logging
import time

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Implementations may block or fail; the engine bounds every call with a
    timeout and degrades to keyword-only retrieval on failure.
    """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Dimension of the vectors this provider returns."""
        pass

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        pass

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed several texts.

        Args:
            texts: Texts to embed

        Returns:
            One embedding per text, in input order
        """
        return [self.embed(text) for text in texts]

    def ping(self) -> bool:
        """Check whether the provider is reachable."""
        return True


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Generate embeddings with OpenAI's embedding models.

    Supports batch processing for document ingestion.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        batch_size: int = 100,
        timeout: float = 10.0,
    ):
        """
        Initialize the embedding provider.

        Args:
            model: OpenAI embedding model to use
            dimension: Expected embedding dimension
            batch_size: Number of texts to send in each request
            timeout: Request timeout in seconds
        """
        self.model = model
        self._dimension = dimension
        self.batch_size = batch_size
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            try:
                import openai

                self._client = openai.OpenAI(timeout=self.timeout)
            except ImportError:
                raise ImportError("OpenAI library is required. Install with: pip install openai")
        return self._client

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            ValueError: If text is empty
        """
        if not text.strip():
            raise ValueError("Text to embed cannot be empty")

        try:
            response = self.client.embeddings.create(input=[text], model=self.model)
            return response.data[0].embedding

        except Exception as e:
            logger.error(f"Error embedding text '{text[:50]}': {str(e)}")
            raise

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for many texts in batches.

        Args:
            texts: Texts to embed

        Returns:
            One embedding per text, in input order
        """
        if not texts:
            logger.warning("No texts provided for embedding generation")
            return []

        logger.info(f"Generating embeddings for {len(texts)} texts")
        start_time = time.time()

        embeddings: List[List[float]] = []
        try:
            for i in range(0, len(texts), self.batch_size):
                batch = list(texts[i : i + self.batch_size])
                response = self.client.embeddings.create(input=batch, model=self.model)
                embeddings.extend(item.embedding for item in response.data)

                # Log progress for large sets
                if len(texts) > 100:
                    progress = min(i + self.batch_size, len(texts))
                    logger.info(f"Processed {progress}/{len(texts)} texts")

        except Exception as e:
            logger.error(f"Error generating embeddings: {str(e)}")
            raise

        total_time = time.time() - start_time
        logger.info(f"Embedding generation completed in {total_time:.2f} seconds")

        return embeddings

    def ping(self) -> bool:
        try:
            self.client.models.retrieve(self.model)
            return True
        except Exception as e:
            logger.warning(f"Embedding provider ping failed: {str(e)}")
            return False


class CallableEmbeddingProvider(EmbeddingProvider):
    """Adapt a plain ``text -> vector`` function to the provider interface."""

    def __init__(self, embed_fn: Callable[[str], Sequence[float]], dimension: int):
        self._embed_fn = embed_fn
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        return [float(x) for x in self._embed_fn(text)]
