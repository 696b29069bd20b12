"""
Test configuration and fixtures.
"""

import re

import pytest

from docvault.vault import (
    BaseEmbedding,
    Chunk,
    Document,
    create_document_store,
)

# Keeps key derivation fast in tests
TEST_KDF_ITERATIONS = 1000


class ConceptEmbedding(BaseEmbedding):
    """Embedding with one axis per keyword concept.

    Texts that mention the same concepts get parallel vectors. Texts that
    mention none of them land on a separate "other" axis.
    """

    CONCEPTS = [
        re.compile(r"\bdocks?\b", re.IGNORECASE),
        re.compile(r"\btrucks?\b", re.IGNORECASE),
        re.compile(r"\b(?:feet|foot)\b", re.IGNORECASE),
        re.compile(r"\b[0-9]{1,2}\s*(?:am|pm)\b", re.IGNORECASE),
        re.compile(r"\b(?:lunch|cafeteria|menu)\b", re.IGNORECASE),
    ]

    @property
    def dimension(self) -> int:
        return len(self.CONCEPTS) + 1

    def _embed(self, text: str) -> list[float]:
        vector = [1.0 if pattern.search(text) else 0.0 for pattern in self.CONCEPTS]
        vector.append(0.0 if any(vector) else 1.0)
        return vector

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._embed(text)


def make_document(
    content: str,
    vectors: list[list[float]],
    source: str = "notes.txt",
    metadata: dict | None = None,
    document_id: str | None = None,
) -> tuple[Document, list[Chunk]]:
    """Build a document whose chunks all share its content, one per vector."""
    kwargs = {"id": document_id} if document_id else {}
    document = Document(content=content, source=source, metadata=metadata or {}, **kwargs)
    chunks = [
        Chunk(document_id=document.id, content=content, chunk_index=i, embedding=vector)
        for i, vector in enumerate(vectors)
    ]
    return document, chunks


@pytest.fixture
def vault_path(tmp_path):
    """Path of a fresh vault file."""
    return str(tmp_path / "vault.db")


@pytest.fixture
def store(vault_path):
    """Unlocked store on a fresh vault."""
    store = create_document_store(vault_path, "A", kdf_iterations=TEST_KDF_ITERATIONS)
    yield store
    store.close()


@pytest.fixture
def concept_embedding():
    return ConceptEmbedding()
