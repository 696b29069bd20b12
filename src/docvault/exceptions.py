"""
DocVault exceptions.
"""


class VaultError(Exception):
    """Base exception for vault-related errors."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ConfigurationError(VaultError):
    """Raised for fatal misconfiguration. Never retried automatically."""


class DimensionMismatchError(ConfigurationError):
    """Raised when a vector width disagrees with the store dimension."""

    def __init__(self, expected: int, actual: int, context: str = "embedding"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{context.capitalize()} dimension mismatch: expected {expected}, got {actual}. "
            "All embeddings in a vault must have the same dimension; "
            "use the same model for ingestion and queries or create a new vault.",
            code=1001,
        )


class InvalidPassphraseError(ConfigurationError):
    """Raised when an existing vault is opened with the wrong passphrase."""

    def __init__(self, message: str = "Invalid passphrase for encrypted vault"):
        super().__init__(message, code=1002)


class VaultLockedError(VaultError):
    """Raised when the store is used before its passphrase gate was passed."""

    def __init__(self, message: str = "Vault is locked; call unlock() or initialize() first"):
        super().__init__(message, code=1003)


class IndexUnavailableError(VaultError):
    """Raised when the similarity index is required but cannot be attached."""

    def __init__(self, message: str = "Similarity index is required but unavailable"):
        super().__init__(message, code=1004)


class StorageError(VaultError):
    """Raised when a storage read or write fails."""

    def __init__(self, message: str):
        super().__init__(f"Storage error: {message}", code=1005)


class DocumentNotFoundError(VaultError):
    """Raised when a referenced document does not exist."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' not found", code=1006)


class SessionNotFoundError(VaultError):
    """Raised when a referenced session does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found", code=1007)


class DuplicateDocumentError(VaultError):
    """Raised when a document id is already stored."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(
            f"Document '{document_id}' already exists; remove it before re-adding",
            code=1008,
        )


class ModelNotLoadedError(VaultError):
    """Raised by a model gateway when no model is loaded."""

    def __init__(self, model_name: str | None = None):
        self.model_name = model_name
        detail = f" '{model_name}'" if model_name else ""
        super().__init__(f"Model{detail} is not loaded", code=1009)


class PdfExtractionError(VaultError):
    """Raised when PDF text extraction fails."""

    def __init__(self, message: str):
        super().__init__(f"PDF extraction failed: {message}", code=1010)
