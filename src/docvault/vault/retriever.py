"""Contextual retrieval: ranked, deduplicated, budget-limited context."""

import logging
import time
from datetime import datetime
from typing import AsyncIterator, Iterator, Optional

from pydantic import BaseModel, Field

from .base import BaseDocumentStore, BaseEmbedding
from .chunking import estimate_token_count
from .document import ContextChunk, ContextWindowStats, RetrievedContext, SearchResult

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "=== RELEVANT CONTEXT ==="
CONTEXT_FOOTER = "=== END CONTEXT ==="
CONTEXT_INSTRUCTIONS = (
    "Use the above context to answer the user's question. "
    "Cite specific sources when possible."
)


class RetrievalConfig(BaseModel):
    """Configuration for context retrieval."""

    top_k: int = Field(default=5, ge=1)
    min_relevance_score: float = Field(default=0.7, ge=0.0, le=1.0)
    include_metadata: bool = True
    deduplicate: bool = True
    max_context_length: int = Field(default=2048, ge=0)
    session_id: Optional[str] = None


class ContextualRetriever:
    """Turns a question into a bounded bundle of relevant excerpts.

    Over-fetches ``top_k * 2`` candidates, deduplicates them by
    (source, chunk index), keeps the best ``top_k`` and then fills the token
    budget greedily in rank order.

    Example:
        ```python
        retriever = ContextualRetriever(store, embedding)
        context = await retriever.retrieve_context("When do trucks arrive?")
        prompt = retriever.format_context_for_prompt(context)
        ```
    """

    def __init__(self, store: BaseDocumentStore, embedding: BaseEmbedding):
        """Initialize the retriever.

        Args:
            store: Document store to search
            embedding: Embedding model for queries
        """
        self.store = store
        self.embedding = embedding

    async def retrieve_context(
        self,
        query: str,
        config: Optional[RetrievalConfig] = None,
    ) -> RetrievedContext:
        """Retrieve context for a query.

        Failures in embedding or search are logged and produce an empty
        context; this method does not raise for them.

        Args:
            query: User question
            config: Retrieval configuration

        Returns:
            The selected context chunks in rank order
        """
        config = config or RetrievalConfig()
        start = time.monotonic()

        try:
            results = await self._search(query, config)
        except Exception as e:
            logger.error(f"Context retrieval failed: {e}")
            return RetrievedContext(
                query=query,
                retrieval_time_ms=self._elapsed_ms(start),
            )

        chunks = list(self._select(results, config))
        elapsed = self._elapsed_ms(start)
        logger.info(f"Retrieved {len(chunks)} chunks for query in {elapsed}ms")

        return RetrievedContext(
            chunks=chunks,
            total_retrieved=len(results),
            query=query,
            retrieval_time_ms=elapsed,
        )

    async def retrieve_context_stream(
        self,
        query: str,
        config: Optional[RetrievalConfig] = None,
    ) -> AsyncIterator[ContextChunk]:
        """Yield the selected context chunks one at a time.

        Yields exactly the chunks ``retrieve_context`` would return, in the
        same order.
        """
        config = config or RetrievalConfig()

        try:
            results = await self._search(query, config)
        except Exception as e:
            logger.error(f"Context retrieval failed: {e}")
            return

        for chunk in self._select(results, config):
            yield chunk

    async def _search(self, query: str, config: RetrievalConfig) -> list[SearchResult]:
        document_ids = None
        if config.session_id is not None:
            documents = await self.store.get_session_documents(config.session_id)
            document_ids = {document.id for document in documents}

        query_embedding = await self.embedding.embed_query(query)
        return await self.store.search_similar(
            query_embedding,
            limit=config.top_k * 2,
            min_score=config.min_relevance_score,
            document_ids=document_ids,
        )

    def _select(
        self,
        results: list[SearchResult],
        config: RetrievalConfig,
    ) -> Iterator[ContextChunk]:
        """Deduplicate, truncate to top_k and apply the token budget."""
        seen: set[tuple[str, int]] = set()
        selected = 0
        used_tokens = 0

        for result in results:
            if selected >= config.top_k:
                break

            chunk = self._to_context_chunk(result, config)
            key = (chunk.source_document, chunk.chunk_index)
            if config.deduplicate:
                if key in seen:
                    continue
                seen.add(key)

            selected += 1
            # The budget stops at the first chunk that overflows it
            if used_tokens + chunk.token_count > config.max_context_length:
                break
            used_tokens += chunk.token_count
            yield chunk

    @staticmethod
    def _to_context_chunk(result: SearchResult, config: RetrievalConfig) -> ContextChunk:
        document = result.document
        return ContextChunk(
            content=result.chunk.content,
            source_document=document.source or document.id,
            document_id=document.id,
            chunk_index=result.chunk.chunk_index,
            relevance_score=result.similarity,
            token_count=estimate_token_count(result.chunk.content),
            metadata=dict(document.metadata) if config.include_metadata else {},
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def format_context_for_prompt(self, context: RetrievedContext) -> str:
        """Format retrieved context and the question into a grounded prompt.

        Returns:
            The prompt, or an empty string when the context is empty
        """
        if context.is_empty:
            return ""

        lines = [
            CONTEXT_HEADER,
            "",
            f"Retrieved {len(context.chunks)} relevant document excerpts:",
            "",
        ]

        for i, chunk in enumerate(context.chunks, start=1):
            lines.append(f"--- Context {i} ---")
            lines.append(f"Source: {chunk.source_document}")
            lines.append(f"Relevance: {int(chunk.relevance_score * 100)}%")
            tags = chunk.metadata.get("tags")
            if tags:
                if isinstance(tags, (list, tuple, set)):
                    tags = ", ".join(str(tag) for tag in tags)
                lines.append(f"Tags: {tags}")
            lines.append("")
            lines.append(chunk.content)
            lines.append("")

        lines.append(CONTEXT_FOOTER)
        lines.append("")
        lines.append(CONTEXT_INSTRUCTIONS)
        lines.append("")
        lines.append(f"User Question: {context.query}")

        return "\n".join(lines) + "\n"

    def format_plain_prompt(self, query: str) -> str:
        """Prompt used when no stored context is relevant."""
        return (
            "No relevant documents were found in the vault. "
            "Answer from general knowledge and say that no source was available.\n\n"
            f"User Question: {query}\n"
        )

    async def get_context_window_stats(self, available_tokens: int = 8192) -> ContextWindowStats:
        """Report how much of a model's context window the stored chunks would fill.

        Args:
            available_tokens: Size of the model's context window

        Returns:
            Token usage, document count and document ages
        """
        stats = await self.store.get_stats()
        now = datetime.now()

        def age(moment: Optional[datetime]) -> float:
            return max(0.0, (now - moment).total_seconds()) if moment else 0.0

        return ContextWindowStats(
            available_tokens=available_tokens,
            used_tokens=stats.total_chunk_tokens,
            document_count=stats.document_count,
            oldest_document_age_seconds=age(stats.oldest_document_at),
            newest_document_age_seconds=age(stats.newest_document_at),
        )
