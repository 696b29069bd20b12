"""Private document vault with retrieval-augmented answering.

This module provides:
- Document, chunk and session data structures
- Paragraph-aware chunking with word overlap
- Regex-based PII redaction
- An encrypted SQLite document store with similarity search
- Contextual retrieval with deduplication and a token budget
- Event-streaming ingestion and query pipelines

Example:
    ```python
    from docvault.vault import (
        LocalEmbedding,
        OpenAICompatibleGenerator,
        VaultOrchestrator,
        create_document_store,
    )

    store = create_document_store("vault.db", passphrase="correct horse")
    await store.initialize()

    embedding = LocalEmbedding()
    embedding.load()

    orchestrator = VaultOrchestrator(store, embedding, OpenAICompatibleGenerator())

    async for event in orchestrator.ingest_text(text, source="dock-rules.txt"):
        print(event.kind)

    async for event in orchestrator.query("When can trucks use the dock?"):
        if event.kind == "token":
            print(event.text, end="")

    store.close()
    ```
"""

# Data structures
from .document import (
    Document,
    Chunk,
    Session,
    SearchResult,
    ContextChunk,
    RetrievedContext,
    RedactionReport,
    StoreStats,
    ContextWindowStats,
)

# Base classes
from .base import (
    BaseEmbedding,
    BaseGenerator,
    BaseRedactor,
    BaseChunker,
    BaseVectorIndex,
    BaseDocumentStore,
    BasePdfExtractor,
)

# Chunking
from .chunking import (
    ChunkingConfig,
    TextChunker,
    chunk_text,
    estimate_token_count,
)

# Redaction
from .redaction import (
    RegexPrivacyRedactor,
    NoOpRedactor,
)

# Embedding providers
from .embeddings import (
    DummyEmbedding,
    FakeEmbedding,
    LocalEmbedding,
    OpenAIEmbedding,
)

# Generation
from .generation import (
    GenerationParams,
    OpenAICompatibleGenerator,
    FakeGenerator,
)

# PDF extraction
from .extraction import (
    PdfExtractionResult,
    PypdfExtractor,
)

# Storage
from .crypto import VaultCipher
from .index import (
    NumpyVectorIndex,
    ChromaVectorIndex,
    cosine_similarity,
    create_vector_index,
)
from .store import (
    SQLiteDocumentStore,
    create_document_store,
)

# Retrieval
from .retriever import (
    RetrievalConfig,
    ContextualRetriever,
)

# Pipelines
from .events import (
    IngestionEvent,
    QueryEvent,
    Reading,
    Chunking,
    Embedding,
    Storing,
    IngestionComplete,
    IngestionError,
    Retrieving,
    ContextRetrieved,
    NoContext,
    Generating,
    Token,
    QueryComplete,
    QueryError,
)
from .pipeline import VaultOrchestrator

__all__ = [
    # Data structures
    "Document",
    "Chunk",
    "Session",
    "SearchResult",
    "ContextChunk",
    "RetrievedContext",
    "RedactionReport",
    "StoreStats",
    "ContextWindowStats",
    # Base classes
    "BaseEmbedding",
    "BaseGenerator",
    "BaseRedactor",
    "BaseChunker",
    "BaseVectorIndex",
    "BaseDocumentStore",
    "BasePdfExtractor",
    # Chunking
    "ChunkingConfig",
    "TextChunker",
    "chunk_text",
    "estimate_token_count",
    # Redaction
    "RegexPrivacyRedactor",
    "NoOpRedactor",
    # Embeddings
    "DummyEmbedding",
    "FakeEmbedding",
    "LocalEmbedding",
    "OpenAIEmbedding",
    # Generation
    "GenerationParams",
    "OpenAICompatibleGenerator",
    "FakeGenerator",
    # PDF extraction
    "PdfExtractionResult",
    "PypdfExtractor",
    # Storage
    "VaultCipher",
    "NumpyVectorIndex",
    "ChromaVectorIndex",
    "cosine_similarity",
    "create_vector_index",
    "SQLiteDocumentStore",
    "create_document_store",
    # Retrieval
    "RetrievalConfig",
    "ContextualRetriever",
    # Events
    "IngestionEvent",
    "QueryEvent",
    "Reading",
    "Chunking",
    "Embedding",
    "Storing",
    "IngestionComplete",
    "IngestionError",
    "Retrieving",
    "ContextRetrieved",
    "NoContext",
    "Generating",
    "Token",
    "QueryComplete",
    "QueryError",
    # Pipeline
    "VaultOrchestrator",
]
