"""Tests for text chunking."""

import pytest

from docvault.vault import ChunkingConfig, TextChunker, chunk_text, estimate_token_count


def sentences(start: int, stop: int) -> list[str]:
    """Sentences of exactly 40 characters each."""
    return [f"Sentence number {i} talks about topic {i}." for i in range(start, stop)]


class TestTokenEstimate:
    """Tests for the token estimate heuristic."""

    def test_four_chars_per_token(self):
        assert estimate_token_count("abcd" * 10) == 10
        assert estimate_token_count("abc") == 0
        assert estimate_token_count("") == 0


class TestChunkingConfig:
    """Tests for ChunkingConfig validation."""

    def test_defaults(self):
        config = ChunkingConfig()
        assert config.max_chunk_size == 512
        assert config.overlap_size == 50
        assert config.min_chunk_size == 25
        assert config.preserve_paragraphs is True

    def test_min_must_be_below_max(self):
        with pytest.raises(ValueError):
            ChunkingConfig(max_chunk_size=10, min_chunk_size=10)

    def test_negative_overlap_rejected(self):
        with pytest.raises(ValueError):
            ChunkingConfig(overlap_size=-1)


class TestTextChunker:
    """Tests for TextChunker."""

    def test_empty_input(self):
        chunker = TextChunker()
        assert chunker.chunk("") == []
        assert chunker.chunk("   \n\n  \t ") == []

    def test_short_document_kept_whole(self):
        text = "Dock rules: trucks over 40 feet must use Dock 7 or 8 between 6AM-10AM."

        assert estimate_token_count(text) < ChunkingConfig().min_chunk_size
        assert TextChunker().chunk(text) == [text]

    def test_tokenless_document_dropped(self):
        assert TextChunker().chunk("Hi.") == []

    def test_trailing_fragment_below_minimum_dropped(self):
        config = ChunkingConfig(max_chunk_size=30, overlap_size=0, min_chunk_size=5)
        full = " ".join(sentences(10, 13))

        chunks = TextChunker(config).chunk(full + " Ok.")

        assert chunks == [full]

    def test_short_text_single_chunk(self):
        text = " ".join(sentences(10, 15))
        chunks = TextChunker().chunk(text)

        assert chunks == [text]

    def test_whitespace_normalized(self):
        config = ChunkingConfig(max_chunk_size=100, overlap_size=0, min_chunk_size=1)
        chunks = TextChunker(config).chunk("Some   words\twith \n odd   spacing.")

        assert chunks == ["Some words with odd spacing."]

    def test_chunks_within_maximum(self):
        config = ChunkingConfig(max_chunk_size=30, overlap_size=3, min_chunk_size=5)
        text = " ".join(sentences(10, 40))
        chunks = TextChunker(config).chunk(text)

        assert len(chunks) > 1
        for chunk in chunks:
            assert estimate_token_count(chunk) <= 30

    def test_adjacent_chunks_overlap(self):
        config = ChunkingConfig(max_chunk_size=30, overlap_size=3, min_chunk_size=5)
        text = " ".join(sentences(10, 30))
        chunks = TextChunker(config).chunk(text)

        assert len(chunks) > 2
        for previous, current in zip(chunks, chunks[1:]):
            assert previous.split()[-3:] == current.split()[:3]

    def test_first_chunk_fills_to_maximum(self):
        config = ChunkingConfig(max_chunk_size=30, overlap_size=3, min_chunk_size=5)
        text = " ".join(sentences(10, 20))
        chunks = TextChunker(config).chunk(text)

        # Three 40-char sentences fit in 30 tokens, a fourth does not
        assert chunks[0] == " ".join(sentences(10, 13))

    def test_paragraphs_kept_together(self):
        config = ChunkingConfig(max_chunk_size=30, overlap_size=0, min_chunk_size=5)
        first = " ".join(sentences(10, 12))
        second = " ".join(sentences(20, 22))

        chunks = TextChunker(config).chunk(f"{first}\n\n{second}")

        assert chunks == [first, second]

    def test_paragraphs_ignored_when_disabled(self):
        config = ChunkingConfig(
            max_chunk_size=30, overlap_size=0, min_chunk_size=5, preserve_paragraphs=False
        )
        first = " ".join(sentences(10, 12))
        second = " ".join(sentences(20, 22))

        chunks = TextChunker(config).chunk(f"{first}\n\n{second}")

        assert chunks[0] == f"{first} {sentences(20, 21)[0]}"

    def test_oversized_sentence_split_on_words(self):
        config = ChunkingConfig(max_chunk_size=20, overlap_size=2, min_chunk_size=2)
        text = " ".join(f"word{i}" for i in range(200))
        chunks = TextChunker(config).chunk(text)

        assert len(chunks) > 1
        for chunk in chunks:
            assert estimate_token_count(chunk) <= 20
        assert chunks[0].startswith("word0 word1")

    def test_chunk_text_helper(self):
        text = " ".join(sentences(10, 15))
        assert chunk_text(text) == TextChunker().chunk(text)

    def test_deterministic(self):
        config = ChunkingConfig(max_chunk_size=30, overlap_size=3, min_chunk_size=5)
        text = " ".join(sentences(10, 40))
        assert TextChunker(config).chunk(text) == TextChunker(config).chunk(text)
