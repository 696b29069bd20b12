"""Encrypted SQLite document store."""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from docvault.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    DocumentNotFoundError,
    DuplicateDocumentError,
    IndexUnavailableError,
    InvalidPassphraseError,
    SessionNotFoundError,
    StorageError,
    VaultLockedError,
)

from .base import BaseDocumentStore, BaseRedactor, BaseVectorIndex
from .chunking import estimate_token_count
from .crypto import DEFAULT_KDF_ITERATIONS, VaultCipher, generate_salt
from .document import Chunk, Document, SearchResult, Session, StoreStats
from .index import NumpyVectorIndex
from .redaction import RegexPrivacyRedactor

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("docvault.audit")

SCHEMA_VERSION = "1"

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS vault_meta (
        key TEXT PRIMARY KEY,
        value BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        content BLOB NOT NULL,
        source BLOB NOT NULL,
        metadata BLOB NOT NULL,
        content_length INTEGER NOT NULL,
        chunk_count INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
        chunk_index INTEGER NOT NULL,
        token_count INTEGER NOT NULL,
        content BLOB NOT NULL,
        embedding BLOB NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_chunks_document
    ON chunks(document_id, chunk_index)
    """,
    """
    CREATE TABLE IF NOT EXISTS vector_index (
        chunk_id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
        embedding BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        name BLOB NOT NULL,
        description BLOB,
        created_at TEXT NOT NULL,
        last_accessed TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS session_documents (
        session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
        added_at TEXT NOT NULL,
        PRIMARY KEY (session_id, document_id)
    )
    """,
]


def _redact_value(value: Any, redact: Callable[[str], str]) -> Any:
    """Redact every string inside a metadata value, returning a new structure."""
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {key: _redact_value(item, redact) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, redact) for item in value]
    return value


class SQLiteDocumentStore(BaseDocumentStore):
    """Document store backed by a single encrypted SQLite file.

    Every user-data column holds a Fernet token; identifiers, ordinals,
    counts and timestamps stay in clear so rows can be joined and ordered.
    The similarity index is held in memory and rebuilt from the
    ``vector_index`` table on ``initialize()``.

    Example:
        ```python
        store = SQLiteDocumentStore("vault.db", passphrase="correct horse")
        await store.initialize()

        stored = await store.add_document(document, chunks)
        results = await store.search_similar(query_vector, limit=5)

        store.close()
        ```
    """

    def __init__(
        self,
        db_path: str = "docvault.db",
        passphrase: str = "",
        redactor: Optional[BaseRedactor] = None,
        embedding_dimension: Optional[int] = None,
        index: Optional[BaseVectorIndex] = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
        busy_timeout: float = 30.0,
    ):
        """Initialize the store. Nothing is read until ``unlock()``.

        Args:
            db_path: Path to the vault file
            passphrase: Passphrase protecting the vault; never stored
            redactor: Redactor applied to everything written (default: RegexPrivacyRedactor)
            embedding_dimension: Expected vector width; detected on first insert if None
            index: In-memory similarity index (default: NumpyVectorIndex)
            kdf_iterations: PBKDF2 iterations used when creating a new vault
            busy_timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.redactor = redactor or RegexPrivacyRedactor()
        self.index = index or NumpyVectorIndex()
        self.kdf_iterations = kdf_iterations
        self.busy_timeout = busy_timeout

        self._passphrase: Optional[str] = passphrase
        self._configured_dimension = embedding_dimension
        self._dimension: Optional[int] = None
        self._cipher: Optional[VaultCipher] = None
        self._closed = False
        self._initialized = False
        self._index_attached = False
        # Per-document write locks, kept only while some coroutine holds or awaits them
        self._document_locks: dict[str, asyncio.Lock] = {}
        self._document_lock_users: dict[str, int] = {}

    @property
    def is_unlocked(self) -> bool:
        return self._cipher is not None and not self._closed

    @property
    def embedding_dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def index_attached(self) -> bool:
        return self._index_attached

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _require_cipher(self) -> VaultCipher:
        if self._closed or self._cipher is None:
            raise VaultLockedError()
        return self._cipher

    # Unlocking

    def unlock(self) -> None:
        """Derive the key and open the vault.

        Creates the schema on a new vault; verifies the stored check token on
        an existing one. Safe to call more than once.

        Raises:
            InvalidPassphraseError: If the passphrase does not open the vault
            StorageError: If the file is not a vault or cannot be read
        """
        if self._closed:
            raise VaultLockedError("Vault has been closed")
        if self._cipher is not None:
            return
        if not self._passphrase:
            raise ConfigurationError("A non-empty passphrase is required")

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StorageError(f"{self.db_path} cannot be opened: {e}") from e

        try:
            try:
                tables = {
                    row["name"]
                    for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
                }
            except sqlite3.DatabaseError as e:
                raise StorageError(f"{self.db_path} is not a vault file") from e

            if not tables:
                cipher = self._create_vault(conn)
            elif "vault_meta" in tables:
                cipher = self._open_vault(conn)
            else:
                raise StorageError(f"{self.db_path} is not a vault file")
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

        self._cipher = cipher
        self._passphrase = None
        logger.info(f"Unlocked vault at {self.db_path}")

    def _create_vault(self, conn: sqlite3.Connection) -> VaultCipher:
        salt = generate_salt()
        cipher = VaultCipher.from_passphrase(self._passphrase, salt, self.kdf_iterations)

        conn.execute("BEGIN IMMEDIATE")
        try:
            for statement in _SCHEMA:
                conn.execute(statement)
            meta = {
                "schema_version": SCHEMA_VERSION.encode(),
                "salt": salt,
                "kdf_iterations": str(self.kdf_iterations).encode(),
                "check": cipher.make_check_token(),
            }
            if self._configured_dimension is not None:
                meta["embedding_dimension"] = str(self._configured_dimension).encode()
            conn.executemany(
                "INSERT INTO vault_meta (key, value) VALUES (?, ?)",
                list(meta.items()),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise

        self._dimension = self._configured_dimension
        logger.info(f"Created new vault at {self.db_path}")
        return cipher

    def _open_vault(self, conn: sqlite3.Connection) -> VaultCipher:
        meta = {
            row["key"]: bytes(row["value"])
            for row in conn.execute("SELECT key, value FROM vault_meta")
        }
        if "salt" not in meta or "check" not in meta:
            raise StorageError(f"{self.db_path} is missing vault metadata")

        iterations = int(meta.get("kdf_iterations", str(DEFAULT_KDF_ITERATIONS).encode()))
        cipher = VaultCipher.from_passphrase(self._passphrase, meta["salt"], iterations)
        if not cipher.verify(meta["check"]):
            raise InvalidPassphraseError()

        stored = meta.get("embedding_dimension")
        stored_dimension = int(stored) if stored is not None else None
        configured = self._configured_dimension

        if stored_dimension is not None and configured is not None and stored_dimension != configured:
            raise DimensionMismatchError(stored_dimension, configured, context="configured")
        if stored_dimension is None and configured is not None:
            conn.execute(
                "INSERT OR REPLACE INTO vault_meta (key, value) VALUES ('embedding_dimension', ?)",
                (str(configured).encode(),),
            )

        self._dimension = stored_dimension if stored_dimension is not None else configured
        return cipher

    # Lifecycle

    async def initialize(self, require_index_capability: bool = True) -> None:
        """Unlock, recover the persisted index and attach the in-memory index.

        Args:
            require_index_capability: Raise IndexUnavailableError if the index
                cannot be attached; otherwise run degraded (search returns [])
        """
        if not self.is_unlocked:
            self.unlock()

        loop = asyncio.get_event_loop()
        rebuilt, dropped = await loop.run_in_executor(None, self._recover_index_sync)
        if rebuilt or dropped:
            logger.warning(
                f"Index recovery rebuilt {rebuilt} missing entries and dropped {dropped} orphaned entries"
            )

        entries = await loop.run_in_executor(None, self._load_index_entries_sync)
        try:
            await loop.run_in_executor(None, self.index.attach, entries)
        except Exception as e:
            self._index_attached = False
            if require_index_capability:
                raise IndexUnavailableError(
                    f"Similarity index could not be attached: {e}"
                ) from e
            logger.warning(f"Similarity index unavailable, running degraded (search disabled): {e}")
        else:
            self._index_attached = True
            logger.info(f"Attached similarity index with {len(entries)} entries")

        self._initialized = True

    def _recover_index_sync(self) -> tuple[int, int]:
        """Rebuild index rows for chunks missing them and drop orphaned rows."""
        self._require_cipher()
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            missing = conn.execute(
                """
                SELECT c.id, c.document_id, c.embedding FROM chunks c
                LEFT JOIN vector_index v ON v.chunk_id = c.id
                WHERE v.chunk_id IS NULL
                """
            ).fetchall()
            conn.executemany(
                "INSERT INTO vector_index (chunk_id, document_id, embedding) VALUES (?, ?, ?)",
                [(row["id"], row["document_id"], row["embedding"]) for row in missing],
            )
            cursor = conn.execute(
                "DELETE FROM vector_index WHERE chunk_id NOT IN (SELECT id FROM chunks)"
            )
            conn.commit()
            return len(missing), cursor.rowcount
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def _load_index_entries_sync(self) -> list[tuple[str, str, list[float]]]:
        cipher = self._require_cipher()
        conn = self._get_connection()
        try:
            rows = conn.execute(
                """
                SELECT v.chunk_id, v.document_id, v.embedding FROM vector_index v
                JOIN chunks c ON c.id = v.chunk_id
                ORDER BY c.rowid
                """
            ).fetchall()
            return [
                (row["chunk_id"], row["document_id"], cipher.decrypt_vector(row["embedding"]).tolist())
                for row in rows
            ]
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def close(self) -> None:
        """Lock the vault and release the key. The store cannot be reused."""
        if self._closed:
            return
        self._closed = True
        self._cipher = None
        self._passphrase = None
        self._index_attached = False
        logger.info(f"Closed vault at {self.db_path}")

    @asynccontextmanager
    async def _document_lock(self, document_id: str) -> AsyncIterator[None]:
        """Serialize writes to one document id.

        The lock entry is dropped once no coroutine holds or waits on it.
        """
        lock = self._document_locks.setdefault(document_id, asyncio.Lock())
        self._document_lock_users[document_id] = self._document_lock_users.get(document_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._document_lock_users[document_id] - 1
            if remaining:
                self._document_lock_users[document_id] = remaining
            else:
                del self._document_lock_users[document_id]
                del self._document_locks[document_id]

    # Documents

    async def add_document(self, document: Document, chunks: list[Chunk]) -> Document:
        """Redact, encrypt and store a document with its chunks atomically.

        Args:
            document: Document to store
            chunks: Chunks of the document, each carrying its embedding

        Returns:
            The document as stored

        Raises:
            ValueError: If a chunk belongs to another document
            DimensionMismatchError: If any vector has the wrong width
            DuplicateDocumentError: If the document id is already stored
            StorageError: If the write fails; nothing is written
        """
        self._require_cipher()

        for chunk in chunks:
            if chunk.document_id != document.id:
                raise ValueError(
                    f"Chunk {chunk.id} belongs to document {chunk.document_id}, not {document.id}"
                )

        widths = {len(chunk.embedding) for chunk in chunks}
        if 0 in widths:
            raise ConfigurationError("Every chunk must carry an embedding")
        if len(widths) > 1:
            expected = len(chunks[0].embedding)
            actual = next(len(c.embedding) for c in chunks if len(c.embedding) != expected)
            raise DimensionMismatchError(expected, actual)
        if self._dimension is not None and widths and widths != {self._dimension}:
            raise DimensionMismatchError(self._dimension, widths.pop())

        stored_document, stored_chunks = self._redact_for_storage(document, chunks)

        async with self._document_lock(document.id):
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(
                None,
                self._add_document_sync,
                stored_document,
                stored_chunks,
            )

            if self._index_attached and stored_chunks:
                self.index.add(
                    (chunk.id, chunk.document_id, chunk.embedding) for chunk in stored_chunks
                )

        logger.info(f"Stored document {document.id} with {len(stored_chunks)} chunks")
        return stored_document

    def _redact_for_storage(
        self, document: Document, chunks: list[Chunk]
    ) -> tuple[Document, list[Chunk]]:
        categories: set[str] = set()

        def redact(text: str) -> str:
            redacted, report = self.redactor.redact_with_report(text)
            categories.update(report.categories)
            return redacted

        stored_chunks = []
        for chunk in chunks:
            content = redact(chunk.content)
            stored_chunks.append(
                chunk.model_copy(
                    update={"content": content, "token_count": estimate_token_count(content)}
                )
            )

        stored_document = document.model_copy(
            update={
                "content": redact(document.content),
                "source": redact(document.source),
                "metadata": _redact_value(document.metadata, redact),
                "chunk_count": len(stored_chunks),
            }
        )

        if categories:
            audit_logger.warning(
                f"Redacted sensitive data in document {document.id}: {', '.join(sorted(categories))}"
            )
        return stored_document, stored_chunks

    def _add_document_sync(self, document: Document, chunks: list[Chunk]) -> None:
        """Synchronous add implementation: one transaction."""
        cipher = self._require_cipher()
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")

            if conn.execute("SELECT 1 FROM documents WHERE id = ?", (document.id,)).fetchone():
                raise DuplicateDocumentError(document.id)

            # Re-check under the write lock: a concurrent writer may have fixed the width
            row = conn.execute(
                "SELECT value FROM vault_meta WHERE key = 'embedding_dimension'"
            ).fetchone()
            dimension = int(bytes(row["value"])) if row else None
            if chunks:
                width = len(chunks[0].embedding)
                if dimension is None:
                    conn.execute(
                        "INSERT INTO vault_meta (key, value) VALUES ('embedding_dimension', ?)",
                        (str(width).encode(),),
                    )
                    dimension = width
                elif width != dimension:
                    raise DimensionMismatchError(dimension, width)

            conn.execute(
                """
                INSERT INTO documents
                (id, content, source, metadata, content_length, chunk_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    cipher.encrypt_text(document.content),
                    cipher.encrypt_text(document.source),
                    cipher.encrypt_json(document.metadata),
                    len(document.content),
                    document.chunk_count,
                    document.created_at.isoformat(),
                    document.updated_at.isoformat(),
                ),
            )

            for chunk in chunks:
                vector = cipher.encrypt_vector(chunk.embedding)
                conn.execute(
                    """
                    INSERT INTO chunks
                    (id, document_id, chunk_index, token_count, content, embedding, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        chunk.id,
                        chunk.document_id,
                        chunk.chunk_index,
                        chunk.token_count,
                        cipher.encrypt_text(chunk.content),
                        vector,
                        chunk.created_at.isoformat(),
                    ),
                )
                conn.execute(
                    "INSERT INTO vector_index (chunk_id, document_id, embedding) VALUES (?, ?, ?)",
                    (chunk.id, chunk.document_id, vector),
                )

            conn.commit()
            self._dimension = dimension
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def remove_document(self, document_id: str) -> bool:
        """Remove a document with its chunks, index entries and session memberships."""
        self._require_cipher()

        async with self._document_lock(document_id):
            loop = asyncio.get_event_loop()
            chunk_ids = await loop.run_in_executor(
                None,
                self._remove_document_sync,
                document_id,
            )

            if chunk_ids is None:
                removed = False
            else:
                removed = True
                if self._index_attached:
                    self.index.remove(chunk_ids)

        if removed:
            logger.info(f"Removed document {document_id}")
        return removed

    def _remove_document_sync(self, document_id: str) -> Optional[list[str]]:
        """Synchronous remove implementation. Returns removed chunk ids, or None."""
        self._require_cipher()
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            chunk_ids = [
                row["id"]
                for row in conn.execute(
                    "SELECT id FROM chunks WHERE document_id = ?", (document_id,)
                )
            ]
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            conn.commit()
            return chunk_ids if cursor.rowcount > 0 else None
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def get_document(self, document_id: str) -> Optional[Document]:
        """Get a document by its ID."""
        self._require_cipher()
        loop = asyncio.get_event_loop()
        documents = await loop.run_in_executor(None, self._get_documents_sync, [document_id])
        return documents.get(document_id)

    def _get_documents_sync(self, document_ids: list[str]) -> dict[str, Document]:
        if not document_ids:
            return {}

        conn = self._get_connection()
        try:
            placeholders = ", ".join("?" for _ in document_ids)
            rows = conn.execute(
                f"SELECT * FROM documents WHERE id IN ({placeholders})",
                list(document_ids),
            ).fetchall()
            return {row["id"]: self._row_to_document(row) for row in rows}
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def list_documents(self) -> list[Document]:
        """List all documents in insertion order."""
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._list_documents_sync)

    def _list_documents_sync(self) -> list[Document]:
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT * FROM documents ORDER BY rowid").fetchall()
            return [self._row_to_document(row) for row in rows]
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def get_chunks(self, document_id: str) -> list[Chunk]:
        """Get the chunks of a document ordered by chunk index."""
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._get_chunks_sync, document_id)

    def _get_chunks_sync(self, document_id: str) -> list[Chunk]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            ).fetchall()
            return [self._row_to_chunk(row) for row in rows]
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def count_documents(self) -> int:
        return await self._count("documents")

    async def count_chunks(self) -> int:
        return await self._count("chunks")

    async def _count(self, table: str) -> int:
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._count_sync, table)

    def _count_sync(self, table: str) -> int:
        conn = self._get_connection()
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    # Search

    async def search_similar(
        self,
        query_embedding: list[float],
        limit: int = 5,
        min_score: float = 0.7,
        document_ids: Optional[set[str]] = None,
    ) -> list[SearchResult]:
        """Search for chunks similar to the query vector.

        Args:
            query_embedding: Query vector
            limit: Maximum number of results
            min_score: Minimum similarity in [0, 1]
            document_ids: Optional restriction to these documents

        Returns:
            Results ordered by descending similarity, ties in insertion order

        Raises:
            DimensionMismatchError: If the query width differs from the vault's
        """
        self._require_cipher()

        if self._dimension is not None and len(query_embedding) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(query_embedding), context="query")

        if not self._index_attached:
            if self._initialized:
                logger.debug("Similarity index is not attached; returning no results")
            return []
        if self._dimension is None or limit <= 0:
            return []

        loop = asyncio.get_event_loop()
        hits = await loop.run_in_executor(
            None,
            lambda: self.index.search(query_embedding, limit, min_score, document_ids),
        )
        if not hits:
            return []

        rows = await loop.run_in_executor(None, self._load_hits_sync, [chunk_id for chunk_id, _ in hits])

        results = []
        for chunk_id, score in hits:
            # A concurrent removal may have deleted the chunk after the search
            if chunk_id in rows:
                chunk, document = rows[chunk_id]
                results.append(SearchResult(chunk=chunk, document=document, similarity=score))

        logger.debug(f"Similarity search returned {len(results)} results")
        return results

    def _load_hits_sync(self, chunk_ids: list[str]) -> dict[str, tuple[Chunk, Document]]:
        conn = self._get_connection()
        try:
            placeholders = ", ".join("?" for _ in chunk_ids)
            chunk_rows = conn.execute(
                f"SELECT * FROM chunks WHERE id IN ({placeholders})",
                chunk_ids,
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

        chunks = [self._row_to_chunk(row) for row in chunk_rows]
        documents = self._get_documents_sync(sorted({chunk.document_id for chunk in chunks}))
        return {
            chunk.id: (chunk, documents[chunk.document_id])
            for chunk in chunks
            if chunk.document_id in documents
        }

    # Sessions

    async def create_session(self, session: Session) -> Session:
        """Create a session.

        Returns:
            The session as stored, with its name and description redacted
        """
        self._require_cipher()
        session = session.model_copy(
            update={
                "name": self.redactor.redact(session.name),
                "description": self.redactor.redact(session.description)
                if session.description is not None
                else None,
            }
        )
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._create_session_sync, session)
        logger.info(f"Created session {session.id}")
        return session

    def _create_session_sync(self, session: Session) -> None:
        cipher = self._require_cipher()
        conn = self._get_connection()
        try:
            conn.execute(
                """
                INSERT INTO sessions (id, name, description, created_at, last_accessed)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    cipher.encrypt_text(session.name),
                    cipher.encrypt_text(session.description)
                    if session.description is not None
                    else None,
                    session.created_at.isoformat(),
                    session.last_accessed.isoformat(),
                ),
            )
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Get a session by its ID."""
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._get_session_sync, session_id)

    def _get_session_sync(self, session_id: str) -> Optional[Session]:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            return self._row_to_session(row) if row else None
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def list_sessions(self) -> list[Session]:
        """List all sessions, most recently accessed first."""
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._list_sessions_sync)

    def _list_sessions_sync(self) -> list[Session]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM sessions ORDER BY last_accessed DESC, rowid"
            ).fetchall()
            return [self._row_to_session(row) for row in rows]
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session. Member documents are kept."""
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            self._execute_delete_sync,
            "DELETE FROM sessions WHERE id = ?",
            (session_id,),
        )

    async def add_document_to_session(self, session_id: str, document_id: str) -> None:
        """Add a document to a session and mark the session as accessed.

        Raises:
            SessionNotFoundError: If the session does not exist
            DocumentNotFoundError: If the document does not exist
        """
        self._require_cipher()
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(
            None,
            self._add_document_to_session_sync,
            session_id,
            document_id,
        )

    def _add_document_to_session_sync(self, session_id: str, document_id: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            if not conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone():
                raise SessionNotFoundError(session_id)
            if not conn.execute("SELECT 1 FROM documents WHERE id = ?", (document_id,)).fetchone():
                raise DocumentNotFoundError(document_id)

            now = datetime.now().isoformat()
            conn.execute(
                """
                INSERT OR IGNORE INTO session_documents (session_id, document_id, added_at)
                VALUES (?, ?, ?)
                """,
                (session_id, document_id, now),
            )
            conn.execute(
                "UPDATE sessions SET last_accessed = ? WHERE id = ?",
                (now, session_id),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def remove_document_from_session(self, session_id: str, document_id: str) -> bool:
        """Remove a document from a session. The document itself is kept."""
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            self._execute_delete_sync,
            "DELETE FROM session_documents WHERE session_id = ? AND document_id = ?",
            (session_id, document_id),
        )

    def _execute_delete_sync(self, statement: str, params: tuple) -> bool:
        conn = self._get_connection()
        try:
            cursor = conn.execute(statement, params)
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def get_session_documents(self, session_id: str) -> list[Document]:
        """List a session's documents in the order they were added.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._get_session_documents_sync, session_id)

    async def get_session_document_ids(self, session_id: str) -> set[str]:
        """Return the ids of a session's documents.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        documents = await self.get_session_documents(session_id)
        return {document.id for document in documents}

    def _get_session_documents_sync(self, session_id: str) -> list[Document]:
        conn = self._get_connection()
        try:
            if not conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone():
                raise SessionNotFoundError(session_id)
            rows = conn.execute(
                """
                SELECT d.* FROM documents d
                JOIN session_documents sd ON sd.document_id = d.id
                WHERE sd.session_id = ?
                ORDER BY sd.rowid
                """,
                (session_id,),
            ).fetchall()
            return [self._row_to_document(row) for row in rows]
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    # Statistics

    async def get_stats(self) -> StoreStats:
        """Return aggregate statistics about the vault contents."""
        self._require_cipher()
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._get_stats_sync)

    def _get_stats_sync(self) -> StoreStats:
        conn = self._get_connection()
        try:
            documents = conn.execute(
                """
                SELECT COUNT(*) AS count,
                       COALESCE(SUM(content_length), 0) AS chars,
                       MIN(created_at) AS oldest,
                       MAX(created_at) AS newest
                FROM documents
                """
            ).fetchone()
            chunks = conn.execute(
                """
                SELECT COUNT(*) AS count,
                       COALESCE(SUM(token_count), 0) AS tokens
                FROM chunks
                """
            ).fetchone()
            session_count = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

        chunk_count = chunks["count"]
        return StoreStats(
            document_count=documents["count"],
            chunk_count=chunk_count,
            session_count=session_count,
            total_content_chars=documents["chars"],
            total_chunk_tokens=chunks["tokens"],
            average_chunk_tokens=chunks["tokens"] // chunk_count if chunk_count else 0,
            embedding_dimension=self._dimension,
            index_attached=self._index_attached,
            oldest_document_at=datetime.fromisoformat(documents["oldest"]) if documents["oldest"] else None,
            newest_document_at=datetime.fromisoformat(documents["newest"]) if documents["newest"] else None,
        )

    # Row conversion

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        cipher = self._require_cipher()
        return Document(
            id=row["id"],
            content=cipher.decrypt_text(row["content"]),
            source=cipher.decrypt_text(row["source"]),
            metadata=cipher.decrypt_json(row["metadata"]),
            chunk_count=row["chunk_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_chunk(self, row: sqlite3.Row) -> Chunk:
        cipher = self._require_cipher()
        return Chunk(
            id=row["id"],
            document_id=row["document_id"],
            content=cipher.decrypt_text(row["content"]),
            chunk_index=row["chunk_index"],
            token_count=row["token_count"],
            embedding=cipher.decrypt_vector(row["embedding"]).tolist(),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        cipher = self._require_cipher()
        description = row["description"]
        return Session(
            id=row["id"],
            name=cipher.decrypt_text(row["name"]),
            description=cipher.decrypt_text(description) if description is not None else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            last_accessed=datetime.fromisoformat(row["last_accessed"]),
        )


def create_document_store(
    path: str,
    passphrase: str,
    redactor: Optional[BaseRedactor] = None,
    embedding_dimension: Optional[int] = None,
    index: Optional[BaseVectorIndex] = None,
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
) -> SQLiteDocumentStore:
    """Create and unlock a document store.

    The returned store still needs ``await store.initialize()`` before
    similarity search is available.

    Args:
        path: Path to the vault file (created if missing)
        passphrase: Passphrase protecting the vault
        redactor: Redactor for stored text (default: RegexPrivacyRedactor)
        embedding_dimension: Expected vector width, or None to detect it
        index: In-memory similarity index (default: NumpyVectorIndex)
        kdf_iterations: PBKDF2 iterations for a new vault

    Returns:
        An unlocked SQLiteDocumentStore

    Raises:
        InvalidPassphraseError: If the passphrase does not open an existing vault
    """
    store = SQLiteDocumentStore(
        db_path=path,
        passphrase=passphrase,
        redactor=redactor or RegexPrivacyRedactor(),
        embedding_dimension=embedding_dimension,
        index=index,
        kdf_iterations=kdf_iterations,
    )
    store.unlock()
    return store
