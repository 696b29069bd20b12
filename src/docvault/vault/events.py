"""Progress events emitted by ingestion and query pipelines.

Events are pydantic models tagged with a ``kind`` field, so a stream can be
serialized with ``model_dump()`` and parsed back through the
``IngestionEvent`` / ``QueryEvent`` unions.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class PipelineEvent(BaseModel):
    """Base class for pipeline events."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return self.model_dump(mode="json")


# Ingestion


class Reading(PipelineEvent):
    kind: Literal["reading"] = "reading"
    source: str = ""


class Chunking(PipelineEvent):
    kind: Literal["chunking"] = "chunking"


class Embedding(PipelineEvent):
    """Emitted before each chunk is embedded.

    Attributes:
        index: Zero-based position of the chunk
        total: Number of chunks in the document
    """

    kind: Literal["embedding"] = "embedding"
    index: int
    total: int


class Storing(PipelineEvent):
    kind: Literal["storing"] = "storing"


class IngestionComplete(PipelineEvent):
    kind: Literal["ingestion_complete"] = "ingestion_complete"
    document_id: str
    chunk_count: int
    duration_ms: int


class IngestionError(PipelineEvent):
    kind: Literal["ingestion_error"] = "ingestion_error"
    reason: str
    source: str = ""


IngestionEvent = Annotated[
    Union[Reading, Chunking, Embedding, Storing, IngestionComplete, IngestionError],
    Field(discriminator="kind"),
]


# Query


class Retrieving(PipelineEvent):
    kind: Literal["retrieving"] = "retrieving"


class ContextRetrieved(PipelineEvent):
    kind: Literal["context_retrieved"] = "context_retrieved"
    chunk_count: int
    sources: list[str] = Field(default_factory=list)


class NoContext(PipelineEvent):
    kind: Literal["no_context"] = "no_context"


class Generating(PipelineEvent):
    kind: Literal["generating"] = "generating"


class Token(PipelineEvent):
    kind: Literal["token"] = "token"
    text: str


class QueryComplete(PipelineEvent):
    kind: Literal["query_complete"] = "query_complete"
    token_count: int = 0
    duration_ms: int = 0


class QueryError(PipelineEvent):
    kind: Literal["query_error"] = "query_error"
    reason: str


QueryEvent = Annotated[
    Union[Retrieving, ContextRetrieved, NoContext, Generating, Token, QueryComplete, QueryError],
    Field(discriminator="kind"),
]
