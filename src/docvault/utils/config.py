"""
Configuration utilities.
"""

import json
from pathlib import Path
from typing import TYPE_CHECKING, Literal, Optional

import yaml

from pydantic import BaseModel, ConfigDict, Field

from docvault.vault.chunking import ChunkingConfig
from docvault.vault.crypto import DEFAULT_KDF_ITERATIONS
from docvault.vault.generation import GenerationParams
from docvault.vault.retriever import RetrievalConfig
from docvault.utils.logging import set_log_level

if TYPE_CHECKING:
    from docvault.vault.store import SQLiteDocumentStore


class Config(BaseModel):
    """Base configuration class. Unknown top-level keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from a YAML file. An empty file gives defaults."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_json(cls, path: Path) -> "Config":
        """Load configuration from a JSON file."""
        with open(path, encoding="utf-8") as f:
            return cls.model_validate(json.load(f))

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file, dispatching on the suffix."""
        path = Path(path)
        suffix = path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        if suffix == ".json":
            return cls.from_json(path)
        raise ValueError(f"Unsupported config file format: {path.suffix}")


class VaultConfig(Config):
    """Configuration for a document vault.

    The passphrase is supplied at runtime and is never a config field.
    """
    database_path: str = "docvault.db"
    embedding_dimension: Optional[int] = None
    require_index: bool = True
    index_backend: Literal["numpy", "chroma"] = "numpy"
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    redact: bool = True
    log_level: str = "INFO"

    # Model settings
    embedding_model: str = "all-MiniLM-L6-v2"
    generator_base_url: str = "http://localhost:8080/v1"
    generator_model: str = "local-model"

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    generation: GenerationParams = Field(default_factory=GenerationParams)

    def create_store(self, passphrase: str) -> "SQLiteDocumentStore":
        """Create and unlock the configured document store."""
        from docvault.vault.index import create_vector_index
        from docvault.vault.redaction import NoOpRedactor, RegexPrivacyRedactor
        from docvault.vault.store import create_document_store

        set_log_level(self.log_level)
        return create_document_store(
            self.database_path,
            passphrase,
            redactor=RegexPrivacyRedactor() if self.redact else NoOpRedactor(),
            embedding_dimension=self.embedding_dimension,
            index=create_vector_index(self.index_backend),
            kdf_iterations=self.kdf_iterations,
        )


def load_config(path: str | Path = "docvault.yaml") -> VaultConfig:
    """
    Load vault configuration from file.

    Args:
        path: Path to config file

    Returns:
        VaultConfig instance (defaults when the file does not exist)
    """
    path = Path(path)

    if not path.exists():
        return VaultConfig()

    return VaultConfig.from_file(path)
