"""Ingestion and query orchestration."""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

from .base import BaseDocumentStore, BaseEmbedding, BaseGenerator, BasePdfExtractor, BaseRedactor
from .chunking import ChunkingConfig, TextChunker, estimate_token_count
from .document import Chunk, Document
from .events import (
    Chunking,
    ContextRetrieved,
    Embedding,
    Generating,
    IngestionComplete,
    IngestionError,
    IngestionEvent,
    NoContext,
    QueryComplete,
    QueryError,
    QueryEvent,
    Reading,
    Retrieving,
    Storing,
    Token,
)
from .generation import GenerationParams
from .redaction import RegexPrivacyRedactor
from .retriever import ContextualRetriever, RetrievalConfig

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt", ".md"}
PDF_SUFFIX = ".pdf"


class VaultOrchestrator:
    """Runs ingestion and question answering as streams of progress events.

    Every pipeline is an async generator whose stages run strictly in order.
    Failures are reported as a terminal error event rather than raised.

    Example:
        ```python
        store = create_document_store("vault.db", passphrase="correct horse")
        await store.initialize()

        orchestrator = VaultOrchestrator(
            store=store,
            embedding=embedding,
            generator=OpenAICompatibleGenerator(),
        )

        async for event in orchestrator.ingest_text(text, source="notes.txt"):
            print(event.kind)

        async for event in orchestrator.query("When do trucks arrive?"):
            if event.kind == "token":
                print(event.text, end="")
        ```
    """

    def __init__(
        self,
        store: BaseDocumentStore,
        embedding: BaseEmbedding,
        generator: Optional[BaseGenerator] = None,
        retriever: Optional[ContextualRetriever] = None,
        pdf_extractor: Optional[BasePdfExtractor] = None,
        chunking_config: Optional[ChunkingConfig] = None,
        redactor: Optional[BaseRedactor] = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Unlocked document store
            embedding: Embedding model for chunks and queries
            generator: Generator used to answer queries (optional)
            retriever: Context retriever (default: ContextualRetriever over store)
            pdf_extractor: PDF text extractor (optional)
            chunking_config: Default chunking configuration
            redactor: Redactor applied before chunking (default: the store's)
        """
        self.store = store
        self.embedding = embedding
        self.generator = generator
        self.retriever = retriever or ContextualRetriever(store, embedding)
        self.pdf_extractor = pdf_extractor
        self.chunker = TextChunker(chunking_config)
        self.redactor = redactor or getattr(store, "redactor", None) or RegexPrivacyRedactor()

    # Ingestion

    async def ingest_text(
        self,
        content: str,
        source: str,
        metadata: Optional[dict[str, Any]] = None,
        config: Optional[ChunkingConfig] = None,
        session_id: Optional[str] = None,
    ) -> AsyncIterator[IngestionEvent]:
        """Ingest a text document.

        Args:
            content: Raw document text
            source: Source label, usually the file name
            metadata: Document metadata
            config: Chunking configuration overriding the default
            session_id: Session to add the document to after it is stored

        Yields:
            Reading, Chunking, Embedding per chunk, Storing, then
            IngestionComplete or IngestionError
        """
        start = time.monotonic()
        yield Reading(source=source)

        async for event in self._process(content, source, metadata or {}, config, session_id, start):
            yield event

    async def ingest_pdf(
        self,
        data: bytes,
        source: str,
        metadata: Optional[dict[str, Any]] = None,
        config: Optional[ChunkingConfig] = None,
        session_id: Optional[str] = None,
    ) -> AsyncIterator[IngestionEvent]:
        """Ingest a PDF document.

        Extracted page count and PDF metadata are merged into the document
        metadata; caller-supplied metadata wins on conflicts.
        """
        start = time.monotonic()
        yield Reading(source=source)

        if self.pdf_extractor is None:
            yield IngestionError(reason="No PDF extractor configured", source=source)
            return

        try:
            result = await self.pdf_extractor.extract(data)
        except Exception as e:
            logger.error(f"Failed to extract {source}: {e}")
            yield IngestionError(reason=str(e), source=source)
            return

        merged = {
            **result.metadata,
            "page_count": result.page_count,
            "content_type": "application/pdf",
            **(metadata or {}),
        }
        async for event in self._process(result.text, source, merged, config, session_id, start):
            yield event

    async def ingest_folder(
        self,
        paths: list[Union[str, Path]],
        folder_name: str,
        metadata: Optional[dict[str, Any]] = None,
        config: Optional[ChunkingConfig] = None,
        session_id: Optional[str] = None,
    ) -> AsyncIterator[IngestionEvent]:
        """Ingest a batch of files as one folder.

        Text and Markdown files are read as UTF-8 and PDFs go through the
        extractor. Every document is tagged ``folder:<folder_name>``. A file
        that fails does not stop the rest of the batch.

        Args:
            paths: Files to ingest
            folder_name: Name used for the folder tag
            metadata: Metadata added to every document
            config: Chunking configuration overriding the default
            session_id: Session to add every document to

        Yields:
            The events of every file in order
        """
        tag = f"folder:{folder_name}"
        loop = asyncio.get_event_loop()

        for path in map(Path, paths):
            suffix = path.suffix.lower()
            file_metadata = dict(metadata or {})
            tags = list(file_metadata.get("tags", []))
            if tag not in tags:
                tags.append(tag)
            file_metadata.update({"tags": tags, "folder": folder_name, "filename": path.name})

            if suffix in TEXT_SUFFIXES:
                try:
                    text = await loop.run_in_executor(None, lambda: path.read_text(encoding="utf-8"))
                except (OSError, UnicodeDecodeError) as e:
                    logger.error(f"Failed to read {path}: {e}")
                    yield Reading(source=path.name)
                    yield IngestionError(reason=str(e), source=path.name)
                    continue
                events = self.ingest_text(text, path.name, file_metadata, config, session_id)
            elif suffix == PDF_SUFFIX:
                try:
                    data = await loop.run_in_executor(None, path.read_bytes)
                except OSError as e:
                    logger.error(f"Failed to read {path}: {e}")
                    yield Reading(source=path.name)
                    yield IngestionError(reason=str(e), source=path.name)
                    continue
                events = self.ingest_pdf(data, path.name, file_metadata, config, session_id)
            else:
                yield Reading(source=path.name)
                yield IngestionError(reason=f"Unsupported file type: {suffix or path.name}", source=path.name)
                continue

            async for event in events:
                yield event

    async def _process(
        self,
        content: str,
        source: str,
        metadata: dict[str, Any],
        config: Optional[ChunkingConfig],
        session_id: Optional[str],
        start: float,
    ) -> AsyncIterator[IngestionEvent]:
        """Redact, chunk, embed and store one document."""
        try:
            if session_id is not None and await self.store.get_session(session_id) is None:
                yield IngestionError(reason=f"Session '{session_id}' not found", source=source)
                return

            redacted = self.redactor.redact(content)

            yield Chunking()
            chunker = TextChunker(config) if config is not None else self.chunker
            segments = chunker.chunk(redacted)
            if not segments:
                yield IngestionError(reason="Document produced no chunks", source=source)
                return

            document = Document(content=redacted, source=source, metadata=metadata)
            chunks = []
            for i, segment in enumerate(segments):
                yield Embedding(index=i, total=len(segments))
                vectors = await self.embedding.embed_documents([segment])
                if len(vectors) != 1:
                    raise ValueError(f"Embedding model returned {len(vectors)} vectors for one chunk")
                chunks.append(
                    Chunk(
                        document_id=document.id,
                        content=segment,
                        chunk_index=i,
                        token_count=estimate_token_count(segment),
                        embedding=vectors[0],
                    )
                )

            yield Storing()
            stored = await self.store.add_document(document, chunks)
            if session_id is not None:
                await self.store.add_document_to_session(session_id, stored.id)
        except Exception as e:
            logger.error(f"Ingestion of {source} failed: {e}")
            yield IngestionError(reason=str(e), source=source)
            return

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Ingested {source} as {stored.id} ({len(chunks)} chunks, {duration_ms}ms)")
        yield IngestionComplete(
            document_id=stored.id,
            chunk_count=len(chunks),
            duration_ms=duration_ms,
        )

    # Query

    async def query(
        self,
        question: str,
        retrieval_config: Optional[RetrievalConfig] = None,
        params: Optional[GenerationParams] = None,
    ) -> AsyncIterator[QueryEvent]:
        """Answer a question from the vault.

        Closing this iterator, or cancelling the task consuming it, stops
        token emission and closes the generator's stream. Queries never
        write to the store.

        Args:
            question: User question
            retrieval_config: Retrieval configuration
            params: Generation parameters

        Yields:
            Retrieving, ContextRetrieved or NoContext, Generating, Token per
            generated token, then QueryComplete or QueryError
        """
        start = time.monotonic()

        if self.generator is None:
            yield QueryError(reason="No generator configured")
            return

        yield Retrieving()
        context = await self.retriever.retrieve_context(question, retrieval_config)

        if context.is_empty:
            yield NoContext()
            prompt = self.retriever.format_plain_prompt(question)
        else:
            sources = list(dict.fromkeys(chunk.source_document for chunk in context.chunks))
            yield ContextRetrieved(chunk_count=len(context.chunks), sources=sources)
            prompt = self.retriever.format_context_for_prompt(context)

        yield Generating()

        token_count = 0
        stream = self.generator.generate(prompt, params)
        try:
            async for text in stream:
                token_count += 1
                yield Token(text=text)
        except Exception as e:
            logger.error(f"Generation failed: {e}")
            yield QueryError(reason=str(e))
            return
        finally:
            await stream.aclose()

        yield QueryComplete(
            token_count=token_count,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def upload_and_chat(
        self,
        content: str,
        source: str,
        question: str,
        metadata: Optional[dict[str, Any]] = None,
        retrieval_config: Optional[RetrievalConfig] = None,
        params: Optional[GenerationParams] = None,
        session_id: Optional[str] = None,
    ) -> AsyncIterator[Union[IngestionEvent, QueryEvent]]:
        """Ingest a document and immediately ask a question about it.

        The query runs only if ingestion completed.
        """
        async for event in self.ingest_text(content, source, metadata, session_id=session_id):
            yield event
            if isinstance(event, IngestionError):
                return

        async for event in self.query(question, retrieval_config, params):
            yield event
