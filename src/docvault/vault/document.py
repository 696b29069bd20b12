"""Document, chunk, session and retrieval data structures."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


def _new_id() -> str:
    return uuid.uuid4().hex


class Document(BaseModel):
    """A document stored in the vault.

    Attributes:
        id: Unique identifier for the document
        content: Full text content (redacted once stored)
        source: Source label, usually the file name
        metadata: Free-form key/value metadata
        chunk_count: Number of chunks stored for the document
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    id: str = Field(default_factory=_new_id)
    content: str
    source: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    chunk_count: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def __repr__(self) -> str:
        content_preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"Document(id={self.id!r}, source={self.source!r}, content={content_preview!r})"


class Chunk(BaseModel):
    """A bounded text segment of a document carrying its own embedding.

    Attributes:
        id: Unique identifier for the chunk
        document_id: ID of the owning document
        content: The text content of the chunk
        chunk_index: Ordinal position within the document
        token_count: Estimated token count of the content
        embedding: Fixed-width embedding vector
        created_at: Creation timestamp
    """

    id: str = Field(default_factory=_new_id)
    document_id: str
    content: str
    chunk_index: int = 0
    token_count: int = 0
    embedding: list[float] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    def __repr__(self) -> str:
        content_preview = self.content[:30] + "..." if len(self.content) > 30 else self.content
        return (
            f"Chunk(id={self.id!r}, doc_id={self.document_id!r}, "
            f"index={self.chunk_index}, content={content_preview!r})"
        )


class Session(BaseModel):
    """A named grouping of documents forming an active working set."""

    id: str = Field(default_factory=_new_id)
    name: str
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    last_accessed: datetime = Field(default_factory=datetime.now)


class SearchResult(BaseModel):
    """A similarity search hit.

    Attributes:
        chunk: The matching chunk
        document: The owning document
        similarity: Cosine similarity clamped to [0, 1]
    """

    chunk: Chunk
    document: Document
    similarity: float

    def __repr__(self) -> str:
        return f"SearchResult(chunk_id={self.chunk.id!r}, similarity={self.similarity:.4f})"


class ContextChunk(BaseModel):
    """A single excerpt of retrieved context with its source information."""

    content: str
    source_document: str
    document_id: str
    chunk_index: int
    relevance_score: float
    token_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class RetrievedContext(BaseModel):
    """Ranked, budget-limited context assembled for one query."""

    chunks: list[ContextChunk] = Field(default_factory=list)
    total_retrieved: int = 0
    query: str
    retrieval_time_ms: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    @property
    def total_tokens(self) -> int:
        return sum(chunk.token_count for chunk in self.chunks)


class RedactionReport(BaseModel):
    """Whether a redaction pass changed its input. Used for audit logging only."""

    changed: bool = False
    categories: list[str] = Field(default_factory=list)


class StoreStats(BaseModel):
    """Aggregate statistics about the vault contents."""

    document_count: int = 0
    chunk_count: int = 0
    session_count: int = 0
    total_content_chars: int = 0
    total_chunk_tokens: int = 0
    average_chunk_tokens: int = 0
    embedding_dimension: Optional[int] = None
    index_attached: bool = False
    oldest_document_at: Optional[datetime] = None
    newest_document_at: Optional[datetime] = None


class ContextWindowStats(BaseModel):
    """Token usage of the stored knowledge relative to a model's context window."""

    available_tokens: int
    used_tokens: int
    document_count: int
    oldest_document_age_seconds: float = 0.0
    newest_document_age_seconds: float = 0.0
