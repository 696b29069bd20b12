"""In-memory similarity indexes rebuilt from the vault on startup."""

import logging
import threading
from typing import Iterable, Optional

import numpy as np

from .base import BaseVectorIndex

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if len(a) != len(b):
        raise ValueError("Vectors must have the same dimension")

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def bounded_similarity(score: float) -> float:
    """Clamp a cosine similarity into [0, 1]."""
    return min(1.0, max(0.0, score))


class NumpyVectorIndex(BaseVectorIndex):
    """Exact cosine-similarity index over a normalized numpy matrix.

    Rows are kept in insertion order so a stable sort breaks score ties by
    insertion order.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._chunk_ids: list[str] = []
        self._document_ids: list[str] = []
        self._matrix: Optional[np.ndarray] = None

    def attach(self, entries: Iterable[tuple[str, str, list[float]]]) -> None:
        with self._lock:
            self._chunk_ids = []
            self._document_ids = []
            self._matrix = None
            self.add(entries)

    def add(self, entries: Iterable[tuple[str, str, list[float]]]) -> None:
        entries = list(entries)
        if not entries:
            return

        rows = np.vstack([self._normalize(vector) for _, _, vector in entries])

        with self._lock:
            if self._matrix is not None and self._matrix.shape[1] != rows.shape[1]:
                raise ValueError(
                    f"Index width is {self._matrix.shape[1]}, got vectors of width {rows.shape[1]}"
                )
            self._matrix = rows if self._matrix is None else np.vstack([self._matrix, rows])
            self._chunk_ids.extend(chunk_id for chunk_id, _, _ in entries)
            self._document_ids.extend(document_id for _, document_id, _ in entries)

    def remove(self, chunk_ids: Iterable[str]) -> None:
        doomed = set(chunk_ids)
        with self._lock:
            keep = [i for i, chunk_id in enumerate(self._chunk_ids) if chunk_id not in doomed]
            if len(keep) == len(self._chunk_ids):
                return

            self._chunk_ids = [self._chunk_ids[i] for i in keep]
            self._document_ids = [self._document_ids[i] for i in keep]
            if keep and self._matrix is not None:
                self._matrix = self._matrix[keep]
            else:
                self._matrix = None

    def search(
        self,
        query: list[float],
        limit: int,
        min_score: float = 0.0,
        document_ids: Optional[set[str]] = None,
    ) -> list[tuple[str, float]]:
        if limit <= 0:
            return []

        with self._lock:
            if self._matrix is None:
                return []
            matrix = self._matrix
            chunk_ids = list(self._chunk_ids)
            owners = list(self._document_ids)

        scores = np.clip(matrix @ self._normalize(query), 0.0, 1.0)
        order = np.argsort(-scores, kind="stable")

        results: list[tuple[str, float]] = []
        for i in order:
            score = float(scores[i])
            if score < min_score:
                break
            if document_ids is not None and owners[i] not in document_ids:
                continue
            results.append((chunk_ids[i], score))
            if len(results) >= limit:
                break

        return results

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunk_ids)

    @staticmethod
    def _normalize(vector) -> np.ndarray:
        v = np.asarray(vector, dtype=np.float32)
        norm = np.linalg.norm(v)
        return v / norm if norm > 0 else v


class ChromaVectorIndex(BaseVectorIndex):
    """ChromaDB-backed index held in an ephemeral, in-memory collection.

    Nothing is written to disk by ChromaDB; the vault file stays the single
    source of truth. Requires the 'chroma' extra to be installed.
    """

    def __init__(self, collection_name: str = "docvault"):
        """Initialize the ChromaDB index.

        Args:
            collection_name: Name of the ChromaDB collection
        """
        self.collection_name = collection_name
        self._client = None
        self._collection = None
        self._sequence: dict[str, int] = {}
        self._next_sequence = 0
        self._lock = threading.RLock()

    def _get_client(self):
        """Get or create the ChromaDB client."""
        if self._client is None:
            try:
                import chromadb
            except ImportError:
                raise ImportError(
                    "ChromaDB index requires 'chromadb'. "
                    "Install it with: pip install docvault[chroma]"
                )
            self._client = chromadb.EphemeralClient()
        return self._client

    def attach(self, entries: Iterable[tuple[str, str, list[float]]]) -> None:
        client = self._get_client()
        with self._lock:
            existing = [c.name if hasattr(c, "name") else c for c in client.list_collections()]
            if self.collection_name in existing:
                client.delete_collection(self.collection_name)
            self._collection = client.create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
            self._sequence = {}
            self._next_sequence = 0
        self.add(entries)

    def add(self, entries: Iterable[tuple[str, str, list[float]]]) -> None:
        entries = list(entries)
        if not entries or self._collection is None:
            return

        with self._lock:
            self._collection.add(
                ids=[chunk_id for chunk_id, _, _ in entries],
                embeddings=[list(map(float, vector)) for _, _, vector in entries],
                metadatas=[{"document_id": document_id} for _, document_id, _ in entries],
            )
            for chunk_id, _, _ in entries:
                self._sequence[chunk_id] = self._next_sequence
                self._next_sequence += 1

    def remove(self, chunk_ids: Iterable[str]) -> None:
        ids = list(chunk_ids)
        if not ids or self._collection is None:
            return

        with self._lock:
            self._collection.delete(ids=ids)
            for chunk_id in ids:
                self._sequence.pop(chunk_id, None)

    def search(
        self,
        query: list[float],
        limit: int,
        min_score: float = 0.0,
        document_ids: Optional[set[str]] = None,
    ) -> list[tuple[str, float]]:
        with self._lock:
            if self._collection is None or limit <= 0:
                return []
            count = self._collection.count()
            if count == 0:
                return []

            where = None
            if document_ids is not None:
                if not document_ids:
                    return []
                where = {"document_id": {"$in": sorted(document_ids)}}

            results = self._collection.query(
                query_embeddings=[list(map(float, query))],
                n_results=min(limit, count),
                where=where,
                include=["distances"],
            )
            sequence = dict(self._sequence)

        hits: list[tuple[str, float]] = []
        if results and results["ids"] and results["ids"][0]:
            for chunk_id, distance in zip(results["ids"][0], results["distances"][0]):
                # ChromaDB returns cosine distance, convert to similarity
                score = bounded_similarity(1.0 - distance)
                if score >= min_score:
                    hits.append((chunk_id, score))

        hits.sort(key=lambda hit: (-hit[1], sequence.get(hit[0], 0)))
        return hits

    def __len__(self) -> int:
        with self._lock:
            return self._collection.count() if self._collection is not None else 0


def create_vector_index(backend: str = "numpy") -> BaseVectorIndex:
    """Create an in-memory similarity index by backend name.

    Args:
        backend: "numpy" or "chroma"

    Returns:
        An unattached index
    """
    if backend == "numpy":
        return NumpyVectorIndex()
    if backend == "chroma":
        return ChromaVectorIndex()
    raise ValueError(f"Unknown index backend: {backend}")
