"""Text chunking with sentence/paragraph boundaries and word overlap."""

import re
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, model_validator

from .base import BaseChunker

# Rough approximation: 1 token ≈ 4 characters
CHARS_PER_TOKEN = 4

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE = re.compile(r"\s+")


def estimate_token_count(text: str) -> int:
    """Estimate the token count of text.

    This is a deterministic character-length heuristic, not a tokenizer.
    It does not match any particular model's token count.
    """
    return len(text) // CHARS_PER_TOKEN


class ChunkingConfig(BaseModel):
    """Configuration for text chunking.

    Attributes:
        max_chunk_size: Maximum estimated tokens per chunk
        overlap_size: Trailing words of a chunk carried into the next one
        min_chunk_size: Minimum estimated tokens for a chunk to be kept
        preserve_paragraphs: Try to keep paragraphs together
    """

    max_chunk_size: int = 512
    overlap_size: int = 50
    min_chunk_size: int = 25
    preserve_paragraphs: bool = True

    @model_validator(mode="after")
    def _check_sizes(self) -> "ChunkingConfig":
        if self.max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if self.overlap_size < 0 or self.min_chunk_size < 0:
            raise ValueError("overlap_size and min_chunk_size must not be negative")
        if self.min_chunk_size >= self.max_chunk_size:
            raise ValueError("min_chunk_size must be less than max_chunk_size")
        return self


@dataclass
class _Unit:
    """A boundary-respecting piece of text."""

    text: str
    # Character length of the enclosing paragraph, set on its first unit only
    paragraph_chars: Optional[int] = None


class TextChunker(BaseChunker):
    """Split text into overlapping, size-bounded segments.

    Algorithm:
    1. Split on paragraph boundaries, normalize whitespace
    2. Split paragraphs on sentence boundaries; split oversized sentences on words
    3. Accumulate units into a buffer until the next one would overflow
    4. Close the buffer and seed the next one with its trailing words
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        """Initialize the chunker.

        Args:
            config: Chunking configuration (defaults to ChunkingConfig())
        """
        self.config = config or ChunkingConfig()

    def chunk(self, text: str) -> list[str]:
        """Split text into segments. Empty input yields an empty list."""
        if not text or not text.strip():
            return []

        chunks: list[str] = []
        buffer: list[str] = []
        # True once the buffer holds words beyond the overlap seed
        fresh = False

        for unit in self._split_units(text):
            words = unit.text.split(" ")

            if fresh and self._breaks_paragraph(buffer, unit):
                chunks.append(" ".join(buffer))
                buffer = self._seed(buffer, words)
                fresh = False

            if buffer and not self._fits(buffer + words):
                if not fresh:
                    buffer = self._seed(buffer, words)
                elif estimate_token_count(" ".join(buffer)) >= self.config.min_chunk_size:
                    chunks.append(" ".join(buffer))
                    buffer = self._seed(buffer, words)
                    fresh = False
                else:
                    # Too small to stand alone: top it up with leading words of the unit
                    head = self._fill(buffer, words)
                    closed = buffer + head
                    chunks.append(" ".join(closed))
                    words = words[len(head):]
                    buffer = self._seed(closed, words)
                    fresh = False

            if words:
                buffer.extend(words)
                fresh = True

        if fresh and self._keeps_tail(buffer, chunks):
            chunks.append(" ".join(buffer))

        return chunks

    def _split_units(self, text: str) -> list[_Unit]:
        """Split text into normalized sentence units."""
        if self.config.preserve_paragraphs:
            paragraphs = _PARAGRAPH_SPLIT.split(text)
        else:
            paragraphs = [text]

        units: list[_Unit] = []
        for paragraph in paragraphs:
            paragraph = _WHITESPACE.sub(" ", paragraph).strip()
            if not paragraph:
                continue

            pieces: list[str] = []
            for sentence in _SENTENCE_SPLIT.split(paragraph):
                if sentence:
                    pieces.extend(self._split_oversized(sentence))

            for i, piece in enumerate(pieces):
                units.append(_Unit(piece, len(paragraph) if i == 0 else None))

        return units

    def _split_oversized(self, sentence: str) -> list[str]:
        """Split a sentence exceeding the maximum on word boundaries."""
        if estimate_token_count(sentence) <= self.config.max_chunk_size:
            return [sentence]

        max_chars = self.config.max_chunk_size * CHARS_PER_TOKEN
        pieces: list[str] = []
        current: list[str] = []

        for word in sentence.split(" "):
            if len(word) > max_chars:
                if current:
                    pieces.append(" ".join(current))
                    current = []
                pieces.extend(word[i:i + max_chars] for i in range(0, len(word), max_chars))
                continue

            if current and not self._fits(current + [word]):
                pieces.append(" ".join(current))
                current = []
            current.append(word)

        if current:
            pieces.append(" ".join(current))

        return pieces

    def _breaks_paragraph(self, buffer: list[str], unit: _Unit) -> bool:
        """Whether to close the buffer before a paragraph that fits alone."""
        if not self.config.preserve_paragraphs or unit.paragraph_chars is None:
            return False

        buffer_chars = len(" ".join(buffer))
        max_size = self.config.max_chunk_size
        combined = (buffer_chars + 1 + unit.paragraph_chars) // CHARS_PER_TOKEN

        return (
            combined > max_size
            and unit.paragraph_chars // CHARS_PER_TOKEN <= max_size
            and buffer_chars // CHARS_PER_TOKEN >= self.config.min_chunk_size
        )

    def _keeps_tail(self, buffer: list[str], chunks: list[str]) -> bool:
        """Whether the final buffer is emitted.

        A trailing fragment below the minimum is dropped, but a short
        document that fits in one buffer is kept whole if it has any tokens.
        """
        tokens = estimate_token_count(" ".join(buffer))
        if chunks:
            return tokens >= self.config.min_chunk_size
        return tokens > 0

    def _fits(self, words: list[str]) -> bool:
        return estimate_token_count(" ".join(words)) <= self.config.max_chunk_size

    def _fill(self, buffer: list[str], words: list[str]) -> list[str]:
        """Return the longest prefix of words that still fits after buffer."""
        head: list[str] = []
        for word in words:
            if not self._fits(buffer + head + [word]):
                break
            head.append(word)
        return head

    def _seed(self, closed: list[str], next_words: list[str]) -> list[str]:
        """Overlap words for the next buffer, shrunk until next_words fit."""
        overlap = self.config.overlap_size
        seed = closed[-overlap:] if overlap > 0 else []
        while seed and not self._fits(seed + next_words):
            seed = seed[1:]
        return list(seed)


def chunk_text(text: str, config: Optional[ChunkingConfig] = None) -> list[str]:
    """Split text into overlapping, size-bounded segments."""
    return TextChunker(config).chunk(text)
