"""
DocVault - A private, encrypted document vault with local retrieval-augmented answering.
"""

from docvault.exceptions import (
    VaultError,
    ConfigurationError,
    DimensionMismatchError,
    InvalidPassphraseError,
    VaultLockedError,
    IndexUnavailableError,
    StorageError,
    DocumentNotFoundError,
    SessionNotFoundError,
    DuplicateDocumentError,
    ModelNotLoadedError,
    PdfExtractionError,
)
from docvault.vault import (
    Document,
    Chunk,
    Session,
    SearchResult,
    RetrievedContext,
    ChunkingConfig,
    TextChunker,
    RegexPrivacyRedactor,
    SQLiteDocumentStore,
    create_document_store,
    RetrievalConfig,
    ContextualRetriever,
    GenerationParams,
    VaultOrchestrator,
)
from docvault.utils.config import VaultConfig, load_config

__version__ = "0.1.0"

__all__ = [
    # Errors
    "VaultError",
    "ConfigurationError",
    "DimensionMismatchError",
    "InvalidPassphraseError",
    "VaultLockedError",
    "IndexUnavailableError",
    "StorageError",
    "DocumentNotFoundError",
    "SessionNotFoundError",
    "DuplicateDocumentError",
    "ModelNotLoadedError",
    "PdfExtractionError",
    # Vault
    "Document",
    "Chunk",
    "Session",
    "SearchResult",
    "RetrievedContext",
    "ChunkingConfig",
    "TextChunker",
    "RegexPrivacyRedactor",
    "SQLiteDocumentStore",
    "create_document_store",
    "RetrievalConfig",
    "ContextualRetriever",
    "GenerationParams",
    "VaultOrchestrator",
    # Config
    "VaultConfig",
    "load_config",
]
