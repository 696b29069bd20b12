"""Tests for the ingestion and query orchestrator."""

import asyncio

import pytest
from pydantic import TypeAdapter

from conftest import TEST_KDF_ITERATIONS
from docvault.vault import (
    BaseGenerator,
    BasePdfExtractor,
    ChunkingConfig,
    FakeEmbedding,
    FakeGenerator,
    GenerationParams,
    IngestionEvent,
    PdfExtractionResult,
    QueryEvent,
    RetrievalConfig,
    Session,
    VaultOrchestrator,
    create_document_store,
)

DOCK_RULES = "Dock rules: trucks over 40 feet must use Dock 7 or 8 between 6AM-10AM."
SMALL_CHUNKS = ChunkingConfig(max_chunk_size=30, overlap_size=3, min_chunk_size=5)


def long_text(count: int = 12) -> str:
    return " ".join(f"Sentence number {i} talks about topic {i}." for i in range(10, 10 + count))


class RecordingEmbedding(FakeEmbedding):
    """FakeEmbedding that remembers every text it embedded."""

    def __init__(self, dimension: int = 16, fail_on_call: int | None = None):
        super().__init__(dimension=dimension)
        self.texts: list[str] = []
        self.fail_on_call = fail_on_call

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.texts.extend(texts)
        if self.fail_on_call is not None and len(self.texts) >= self.fail_on_call:
            raise RuntimeError("embedding model crashed")
        return await super().embed_documents(texts)


class StaticExtractor(BasePdfExtractor):
    async def extract(self, data: bytes) -> PdfExtractionResult:
        return PdfExtractionResult(
            text=DOCK_RULES,
            page_count=2,
            metadata={"title": "Dock handbook", "author": "Ops"},
        )


class BrokenGenerator(BaseGenerator):
    async def generate(self, prompt, params=None):
        yield "partial "
        raise RuntimeError("server went away")


async def collect(events) -> list:
    return [event async for event in events]


def kinds(events) -> list[str]:
    return [event.kind for event in events]


@pytest.fixture
def orchestrator(store, concept_embedding):
    return VaultOrchestrator(
        store=store,
        embedding=concept_embedding,
        generator=FakeGenerator(),
        pdf_extractor=StaticExtractor(),
        chunking_config=ChunkingConfig(max_chunk_size=128, overlap_size=10, min_chunk_size=5),
    )


class TestIngestText:
    """Tests for VaultOrchestrator.ingest_text."""

    @pytest.mark.asyncio
    async def test_event_sequence(self, store):
        await store.initialize()
        orchestrator = VaultOrchestrator(store, RecordingEmbedding())

        events = await collect(orchestrator.ingest_text(long_text(), "notes.txt", config=SMALL_CHUNKS))

        embedding_events = [e for e in events if e.kind == "embedding"]
        total = len(embedding_events)
        assert total > 1
        assert kinds(events) == ["reading", "chunking"] + ["embedding"] * total + [
            "storing",
            "ingestion_complete",
        ]
        assert [(e.index, e.total) for e in embedding_events] == [(i, total) for i in range(total)]

        complete = events[-1]
        assert complete.chunk_count == total
        assert complete.duration_ms >= 0
        assert await store.count_chunks() == total
        document = await store.get_document(complete.document_id)
        assert document.source == "notes.txt"

    @pytest.mark.asyncio
    async def test_redacted_before_embedding(self, store):
        await store.initialize()
        embedding = RecordingEmbedding()
        orchestrator = VaultOrchestrator(store, embedding, chunking_config=SMALL_CHUNKS)
        text = "Please email alice@example.com or call 555-123-4567 about the delivery schedule."

        events = await collect(orchestrator.ingest_text(text, "contacts.txt"))

        assert events[-1].kind == "ingestion_complete"
        assert all("alice@example.com" not in t for t in embedding.texts)
        assert all("555-123-4567" not in t for t in embedding.texts)
        document = await store.get_document(events[-1].document_id)
        assert "[EMAIL_REDACTED]" in document.content
        assert "[PHONE_REDACTED]" in document.content

    @pytest.mark.asyncio
    async def test_short_document_with_default_chunking(self, store, concept_embedding):
        await store.initialize()
        orchestrator = VaultOrchestrator(store, concept_embedding, generator=FakeGenerator())

        events = await collect(orchestrator.ingest_text(DOCK_RULES, "dock-rules.txt"))

        assert events[-1].kind == "ingestion_complete"
        assert events[-1].chunk_count == 1

        answer = await collect(
            orchestrator.query(
                "Which dock for a 45-foot truck at 8AM?",
                RetrievalConfig(min_relevance_score=0.5),
            )
        )
        assert answer[1].kind == "context_retrieved"
        assert answer[1].sources == ["dock-rules.txt"]

    @pytest.mark.asyncio
    async def test_concurrent_pipelines_share_store(self, store):
        await store.initialize()
        orchestrator = VaultOrchestrator(store, RecordingEmbedding(), chunking_config=SMALL_CHUNKS)

        first, second = await asyncio.gather(
            collect(orchestrator.ingest_text(long_text(), "first.txt")),
            collect(orchestrator.ingest_text(long_text(8), "second.txt")),
        )

        assert first[-1].kind == "ingestion_complete"
        assert second[-1].kind == "ingestion_complete"
        sources = {d.source for d in await store.list_documents()}
        assert sources == {"first.txt", "second.txt"}
        assert await store.count_chunks() == first[-1].chunk_count + second[-1].chunk_count

    @pytest.mark.asyncio
    async def test_no_chunks_is_an_error(self, store):
        await store.initialize()
        orchestrator = VaultOrchestrator(store, RecordingEmbedding())

        events = await collect(orchestrator.ingest_text("Hi.", "tiny.txt"))

        assert kinds(events) == ["reading", "chunking", "ingestion_error"]
        assert await store.count_documents() == 0

    @pytest.mark.asyncio
    async def test_embedding_failure_aborts_document(self, store):
        await store.initialize()
        orchestrator = VaultOrchestrator(store, RecordingEmbedding(fail_on_call=2))

        events = await collect(orchestrator.ingest_text(long_text(), "notes.txt", config=SMALL_CHUNKS))

        assert events[-1].kind == "ingestion_error"
        assert "embedding model crashed" in events[-1].reason
        assert "storing" not in kinds(events)
        assert await store.count_documents() == 0

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_earlier_documents(self, vault_path):
        store = create_document_store(
            vault_path, "A", embedding_dimension=16, kdf_iterations=TEST_KDF_ITERATIONS
        )
        await store.initialize()
        good = VaultOrchestrator(store, RecordingEmbedding(dimension=16), chunking_config=SMALL_CHUNKS)
        wrong = VaultOrchestrator(store, RecordingEmbedding(dimension=8), chunking_config=SMALL_CHUNKS)

        first = await collect(good.ingest_text(long_text(), "first.txt"))
        second = await collect(wrong.ingest_text(long_text(), "second.txt"))

        assert first[-1].kind == "ingestion_complete"
        assert second[-1].kind == "ingestion_error"
        assert "dimension" in second[-1].reason.lower()
        assert await store.count_documents() == 1
        store.close()

    @pytest.mark.asyncio
    async def test_session_membership(self, store, orchestrator):
        await store.initialize()
        session = await store.create_session(Session(name="Dock"))

        events = await collect(orchestrator.ingest_text(DOCK_RULES, "dock.txt", session_id=session.id))

        members = await store.get_session_documents(session.id)
        assert [d.id for d in members] == [events[-1].document_id]

    @pytest.mark.asyncio
    async def test_unknown_session_stores_nothing(self, store, orchestrator):
        await store.initialize()

        events = await collect(orchestrator.ingest_text(DOCK_RULES, "dock.txt", session_id="missing"))

        assert events[-1].kind == "ingestion_error"
        assert await store.count_documents() == 0

    @pytest.mark.asyncio
    async def test_events_serialize_through_union(self, store, orchestrator):
        await store.initialize()
        events = await collect(orchestrator.ingest_text(DOCK_RULES, "dock.txt"))
        adapter = TypeAdapter(IngestionEvent)

        parsed = [adapter.validate_python(event.to_dict()) for event in events]

        assert parsed == events


class TestIngestPdf:
    """Tests for VaultOrchestrator.ingest_pdf."""

    @pytest.mark.asyncio
    async def test_metadata_merged(self, store, orchestrator):
        await store.initialize()

        events = await collect(orchestrator.ingest_pdf(b"%PDF", "handbook.pdf", metadata={"author": "Me"}))

        assert events[-1].kind == "ingestion_complete"
        document = await store.get_document(events[-1].document_id)
        assert document.metadata["page_count"] == 2
        assert document.metadata["title"] == "Dock handbook"
        assert document.metadata["author"] == "Me"

    @pytest.mark.asyncio
    async def test_no_extractor(self, store, concept_embedding):
        await store.initialize()
        orchestrator = VaultOrchestrator(store, concept_embedding)

        events = await collect(orchestrator.ingest_pdf(b"%PDF", "handbook.pdf"))

        assert kinds(events) == ["reading", "ingestion_error"]


class TestIngestFolder:
    """Tests for VaultOrchestrator.ingest_folder."""

    @pytest.mark.asyncio
    async def test_mixed_files(self, store, orchestrator, tmp_path):
        await store.initialize()
        (tmp_path / "dock.txt").write_text(DOCK_RULES, encoding="utf-8")
        (tmp_path / "lunch.md").write_text("# Lunch\n\nThe cafeteria menu changes every Monday.", encoding="utf-8")
        (tmp_path / "data.csv").write_text("a,b\n1,2\n", encoding="utf-8")
        paths = [tmp_path / "dock.txt", tmp_path / "lunch.md", tmp_path / "data.csv"]

        events = await collect(orchestrator.ingest_folder(paths, "ops"))

        completes = [e for e in events if e.kind == "ingestion_complete"]
        errors = [e for e in events if e.kind == "ingestion_error"]
        assert len(completes) == 2
        assert len(errors) == 1
        assert errors[0].source == "data.csv"

        documents = await store.list_documents()
        assert [d.source for d in documents] == ["dock.txt", "lunch.md"]
        for document in documents:
            assert "folder:ops" in document.metadata["tags"]
            assert document.metadata["folder"] == "ops"

    @pytest.mark.asyncio
    async def test_missing_file_does_not_stop_batch(self, store, orchestrator, tmp_path):
        await store.initialize()
        (tmp_path / "dock.txt").write_text(DOCK_RULES, encoding="utf-8")

        events = await collect(orchestrator.ingest_folder([tmp_path / "gone.txt", tmp_path / "dock.txt"], "ops"))

        assert [e.kind for e in events if e.kind.startswith("ingestion")] == [
            "ingestion_error",
            "ingestion_complete",
        ]


class TestQuery:
    """Tests for VaultOrchestrator.query."""

    @pytest.mark.asyncio
    async def test_grounded_answer(self, store, orchestrator):
        await store.initialize()
        await collect(orchestrator.ingest_text(DOCK_RULES, "dock-rules.txt"))

        events = await collect(
            orchestrator.query(
                "Which dock for a 45-foot truck at 8AM?",
                RetrievalConfig(top_k=3, min_relevance_score=0.5),
            )
        )

        assert kinds(events) == ["retrieving", "context_retrieved", "generating"] + ["token"] * 5 + [
            "query_complete"
        ]
        assert events[1].chunk_count == 1
        assert events[1].sources == ["dock-rules.txt"]
        assert "".join(e.text for e in events if e.kind == "token") == "This is a test answer."
        assert events[-1].token_count == 5

        prompt = orchestrator.generator.prompts[0]
        assert prompt.startswith("=== RELEVANT CONTEXT ===")
        assert DOCK_RULES in prompt

    @pytest.mark.asyncio
    async def test_no_context_still_answers(self, store, orchestrator):
        await store.initialize()

        events = await collect(orchestrator.query("What is the meaning of life?"))

        assert kinds(events)[:3] == ["retrieving", "no_context", "generating"]
        assert events[-1].kind == "query_complete"
        assert orchestrator.generator.prompts[0] == orchestrator.retriever.format_plain_prompt(
            "What is the meaning of life?"
        )

    @pytest.mark.asyncio
    async def test_generation_params_forwarded(self, store, orchestrator):
        await store.initialize()

        events = await collect(orchestrator.query("q", params=GenerationParams(max_tokens=2)))

        assert [e.text for e in events if e.kind == "token"] == ["This ", "is "]

    @pytest.mark.asyncio
    async def test_no_generator(self, store, concept_embedding):
        await store.initialize()
        orchestrator = VaultOrchestrator(store, concept_embedding)

        events = await collect(orchestrator.query("q"))

        assert kinds(events) == ["query_error"]

    @pytest.mark.asyncio
    async def test_generation_failure(self, store, concept_embedding):
        await store.initialize()
        orchestrator = VaultOrchestrator(store, concept_embedding, generator=BrokenGenerator())

        events = await collect(orchestrator.query("q"))

        assert kinds(events)[-2:] == ["token", "query_error"]
        assert "server went away" in events[-1].reason

    @pytest.mark.asyncio
    async def test_query_never_writes(self, store, orchestrator):
        await store.initialize()
        await collect(orchestrator.ingest_text(DOCK_RULES, "dock-rules.txt"))
        before = await store.get_stats()

        await collect(orchestrator.query("Which dock?"))

        after = await store.get_stats()
        assert (after.document_count, after.chunk_count) == (before.document_count, before.chunk_count)

    @pytest.mark.asyncio
    async def test_closing_stream_stops_generation(self, store, concept_embedding):
        await store.initialize()
        generator = FakeGenerator(tokens=[f"t{i} " for i in range(100)])
        orchestrator = VaultOrchestrator(store, concept_embedding, generator=generator)

        events = orchestrator.query("q")
        async for event in events:
            if event.kind == "token":
                break
        await events.aclose()

        assert generator.closed == 1
        assert generator.emitted == 1

    @pytest.mark.asyncio
    async def test_cancelling_task_stops_generation(self, store, concept_embedding):
        await store.initialize()
        generator = FakeGenerator(tokens=[f"t{i} " for i in range(100)], delay=0.01)
        orchestrator = VaultOrchestrator(store, concept_embedding, generator=generator)
        first_token = asyncio.Event()

        async def consume():
            async for event in orchestrator.query("q"):
                if event.kind == "token":
                    first_token.set()

        task = asyncio.create_task(consume())
        await asyncio.wait_for(first_token.wait(), timeout=5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert generator.closed == 1
        assert generator.emitted < 100

    @pytest.mark.asyncio
    async def test_events_serialize_through_union(self, store, orchestrator):
        await store.initialize()
        events = await collect(orchestrator.query("q"))
        adapter = TypeAdapter(QueryEvent)

        assert [adapter.validate_python(e.to_dict()) for e in events] == events


class TestUploadAndChat:
    """Tests for VaultOrchestrator.upload_and_chat."""

    @pytest.mark.asyncio
    async def test_ingest_then_answer(self, store, orchestrator):
        await store.initialize()

        events = await collect(
            orchestrator.upload_and_chat(
                DOCK_RULES,
                "dock-rules.txt",
                "Which dock for a 45-foot truck at 8AM?",
                retrieval_config=RetrievalConfig(top_k=3, min_relevance_score=0.5),
            )
        )

        event_kinds = kinds(events)
        assert event_kinds.index("ingestion_complete") < event_kinds.index("retrieving")
        assert "context_retrieved" in event_kinds
        assert event_kinds[-1] == "query_complete"

    @pytest.mark.asyncio
    async def test_failed_ingestion_skips_query(self, store, orchestrator):
        await store.initialize()

        events = await collect(orchestrator.upload_and_chat("Hi.", "tiny.txt", "anything?"))

        assert events[-1].kind == "ingestion_error"
        assert "retrieving" not in kinds(events)
        assert orchestrator.generator.prompts == []
