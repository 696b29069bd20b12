"""Base classes and abstract interfaces for vault components."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AsyncIterator, Iterable, Optional

if TYPE_CHECKING:
    from .document import Chunk, Document, RedactionReport, SearchResult, Session, StoreStats
    from .extraction import PdfExtractionResult
    from .generation import GenerationParams


class BaseEmbedding(ABC):
    """Abstract base class for embedding models.

    Embedding models convert text into fixed-width vectors.
    """

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of documents.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors

        Raises:
            ModelNotLoadedError: If no model is loaded
        """
        pass

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            ModelNotLoadedError: If no model is loaded
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of the embedding vectors."""
        pass

    @property
    def is_loaded(self) -> bool:
        """Whether the model is ready to embed."""
        return True


class BaseGenerator(ABC):
    """Abstract base class for text generation models."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        params: Optional["GenerationParams"] = None,
    ) -> AsyncIterator[str]:
        """Stream tokens for a prompt.

        The returned iterator is lazy; closing it (or cancelling the task
        consuming it) stops generation.

        Args:
            prompt: Prompt text
            params: Sampling parameters

        Yields:
            Generated text tokens in order
        """
        pass


class BaseRedactor(ABC):
    """Abstract base class for PII redactors.

    Redaction is a total function: it never raises.
    """

    @abstractmethod
    def redact(self, text: str) -> str:
        """Return text with sensitive substrings masked."""
        pass

    @abstractmethod
    def patterns_handled(self) -> list[str]:
        """Return human-readable names of the handled patterns."""
        pass

    def redact_with_report(self, text: str) -> tuple[str, "RedactionReport"]:
        """Redact text and report whether anything changed."""
        from .document import RedactionReport

        redacted = self.redact(text)
        return redacted, RedactionReport(changed=redacted != text)

    def contains_sensitive_data(self, text: str) -> bool:
        """Whether redacting text would change it."""
        return self.redact(text) != text


class BaseChunker(ABC):
    """Abstract base class for text chunkers."""

    @abstractmethod
    def chunk(self, text: str) -> list[str]:
        """Split text into ordered segments.

        Args:
            text: Raw text

        Returns:
            List of text segments (empty for empty input)
        """
        pass


class BaseVectorIndex(ABC):
    """Abstract base class for in-memory similarity indexes.

    Entries are ``(chunk_id, document_id, vector)`` triples. Implementations
    must be safe to call from executor threads.
    """

    @abstractmethod
    def attach(self, entries: Iterable[tuple[str, str, list[float]]]) -> None:
        """Attach the index, replacing its contents with the given entries.

        Raises:
            Exception: If the index backend cannot be attached
        """
        pass

    @abstractmethod
    def add(self, entries: Iterable[tuple[str, str, list[float]]]) -> None:
        """Append entries in insertion order."""
        pass

    @abstractmethod
    def remove(self, chunk_ids: Iterable[str]) -> None:
        """Remove entries by chunk ID."""
        pass

    @abstractmethod
    def search(
        self,
        query: list[float],
        limit: int,
        min_score: float = 0.0,
        document_ids: Optional[set[str]] = None,
    ) -> list[tuple[str, float]]:
        """Return ``(chunk_id, score)`` pairs ordered by descending score.

        Scores are cosine similarities clamped to [0, 1]; ties keep insertion
        order.
        """
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class BaseDocumentStore(ABC):
    """Abstract base class for document stores.

    Stores persist documents, chunks, vectors and sessions, and provide the
    similarity-search primitive.
    """

    @abstractmethod
    async def initialize(self, require_index_capability: bool = True) -> None:
        """Prepare storage and attach the similarity index.

        Args:
            require_index_capability: Fail if the index cannot be attached;
                otherwise continue in degraded mode where search returns nothing.
        """
        pass

    @abstractmethod
    async def add_document(self, document: "Document", chunks: list["Chunk"]) -> "Document":
        """Store a document and its chunks as a single unit.

        Returns:
            The document as stored (redacted, with chunk_count set)
        """
        pass

    @abstractmethod
    async def remove_document(self, document_id: str) -> bool:
        """Remove a document, cascading to chunks and index entries."""
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional["Document"]:
        """Get a document by its ID."""
        pass

    @abstractmethod
    async def search_similar(
        self,
        query_embedding: list[float],
        limit: int = 5,
        min_score: float = 0.7,
        document_ids: Optional[set[str]] = None,
    ) -> list["SearchResult"]:
        """Search for chunks similar to the query vector.

        Args:
            query_embedding: Query vector
            limit: Maximum number of results
            min_score: Minimum similarity in [0, 1]
            document_ids: Optional restriction to these documents

        Returns:
            Results ordered by descending similarity
        """
        pass

    @abstractmethod
    async def create_session(self, session: "Session") -> "Session":
        """Create a session."""
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional["Session"]:
        """Get a session by its ID."""
        pass

    @abstractmethod
    async def list_sessions(self) -> list["Session"]:
        """List all sessions."""
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session. Member documents are kept."""
        pass

    @abstractmethod
    async def add_document_to_session(self, session_id: str, document_id: str) -> None:
        """Add a document to a session."""
        pass

    @abstractmethod
    async def remove_document_from_session(self, session_id: str, document_id: str) -> bool:
        """Remove a document from a session."""
        pass

    @abstractmethod
    async def get_session_documents(self, session_id: str) -> list["Document"]:
        """List the documents in a session."""
        pass

    @abstractmethod
    async def get_stats(self) -> "StoreStats":
        """Return aggregate statistics."""
        pass


class BasePdfExtractor(ABC):
    """Abstract base class for PDF text extraction."""

    @abstractmethod
    async def extract(self, data: bytes) -> "PdfExtractionResult":
        """Extract text, page count and metadata from PDF bytes.

        Raises:
            PdfExtractionError: If the bytes cannot be parsed
        """
        pass
