"""Embedding model implementations."""

import asyncio
import hashlib
import logging
import math
from typing import Optional

from docvault.exceptions import ModelNotLoadedError

from .base import BaseEmbedding

logger = logging.getLogger(__name__)


class DummyEmbedding(BaseEmbedding):
    """A dummy embedding model for testing.

    Returns zero vectors of a specified dimension.
    """

    def __init__(self, dimension: int = 384):
        """Initialize the dummy embedding.

        Args:
            dimension: Dimension of the embedding vectors
        """
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [[0.0] * self._dimension for _ in texts]

    async def embed_query(self, text: str) -> list[float]:
        return [0.0] * self._dimension


class FakeEmbedding(BaseEmbedding):
    """Fake embedding that generates deterministic unit vectors from text.

    Useful for testing when you want predictable embeddings. The same text
    always maps to the same vector; different texts map to unrelated ones.
    """

    def __init__(self, dimension: int = 384, seed: int = 42):
        """Initialize the fake embedding.

        Args:
            dimension: Dimension of the embedding vectors
            seed: Seed mixed into the hash for reproducibility
        """
        self._dimension = dimension
        self.seed = seed

    @property
    def dimension(self) -> int:
        return self._dimension

    def _hash_text(self, text: str) -> list[float]:
        """Generate a deterministic unit vector from the text hash."""
        values: list[float] = []
        counter = 0
        while len(values) < self._dimension:
            digest = hashlib.sha256(f"{self.seed}:{counter}:{text}".encode()).digest()
            values.extend(byte / 127.5 - 1.0 for byte in digest)
            counter += 1

        values = values[: self._dimension]
        norm = math.sqrt(sum(v * v for v in values)) or 1.0
        return [v / norm for v in values]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._hash_text(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._hash_text(text)


class LocalEmbedding(BaseEmbedding):
    """Local embedding model using sentence-transformers.

    Runs entirely on the local machine. The model is an explicitly owned
    resource: call ``load()`` once before embedding and ``unload()`` at
    shutdown. Embedding before ``load()`` raises ModelNotLoadedError.

    Note: Requires the 'local' extra to be installed.
    """

    # Known model dimensions
    MODEL_DIMENSIONS = {
        "all-MiniLM-L6-v2": 384,
        "all-mpnet-base-v2": 768,
        "paraphrase-multilingual-MiniLM-L12-v2": 384,
        "multi-qa-mpnet-base-dot-v1": 768,
    }

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: Optional[str] = None,
        normalize: bool = True,
    ):
        """Initialize the local embedding model.

        Args:
            model_name: Name or path of the sentence-transformers model
            device: Device to run on (cuda, cpu, mps). Auto-detected if None.
            normalize: Whether to normalize embeddings
        """
        self.model_name = model_name
        self.device = device
        self.normalize = normalize
        self._model = None

    @property
    def dimension(self) -> int:
        if self._model is not None:
            return self._model.get_sentence_embedding_dimension()
        return self.MODEL_DIMENSIONS.get(self.model_name, 384)

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        """Load the sentence-transformers model."""
        if self._model is not None:
            return

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "Local embedding requires 'sentence-transformers'. "
                "Install it with: pip install docvault[local]"
            )

        self._model = SentenceTransformer(self.model_name, device=self.device)
        logger.info(f"Loaded embedding model: {self.model_name}")

    def unload(self) -> None:
        """Release the model."""
        if self._model is not None:
            self._model = None
            logger.info(f"Unloaded embedding model: {self.model_name}")

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of documents using the local model."""
        model = self._model
        if model is None:
            raise ModelNotLoadedError(self.model_name)

        # Run in thread pool to avoid blocking
        loop = asyncio.get_event_loop()
        embeddings = await loop.run_in_executor(
            None,
            lambda: model.encode(
                texts,
                normalize_embeddings=self.normalize,
                convert_to_numpy=True,
            ),
        )

        return embeddings.tolist()

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single text using the local model."""
        embeddings = await self.embed_documents([text])
        return embeddings[0]


class OpenAIEmbedding(BaseEmbedding):
    """Embedding model behind an OpenAI-compatible endpoint.

    Point ``base_url`` at a local server (llama.cpp, Ollama, LM Studio) to
    keep documents on-device.

    Note: Requires the 'openai' extra to be installed.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        dimension: int = 768,
        base_url: Optional[str] = "http://localhost:11434/v1",
        api_key: Optional[str] = "local",
        batch_size: int = 32,
    ):
        """Initialize the endpoint embedding model.

        Args:
            model: Model name served by the endpoint
            dimension: Width of the vectors the model returns
            base_url: Base URL of the OpenAI-compatible API
            api_key: API key (local servers accept any value)
            batch_size: Batch size for embedding documents
        """
        self.model = model
        self._dimension = dimension
        self.base_url = base_url
        self.api_key = api_key
        self.batch_size = batch_size
        self._client = None

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "Endpoint embedding requires the 'openai' package. "
                    "Install it with: pip install docvault[openai]"
                )

            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of documents through the endpoint."""
        client = self._get_client()
        all_embeddings = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]

            try:
                response = await client.embeddings.create(model=self.model, input=batch)
            except Exception as e:
                if getattr(e, "status_code", None) == 404:
                    raise ModelNotLoadedError(self.model) from e
                raise

            all_embeddings.extend(item.embedding for item in response.data)

        return all_embeddings

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single text through the endpoint."""
        embeddings = await self.embed_documents([text])
        return embeddings[0]
