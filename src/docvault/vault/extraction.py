"""PDF text extraction."""

import asyncio
import io
import logging
from typing import Any

from pydantic import BaseModel, Field

from docvault.exceptions import PdfExtractionError

from .base import BasePdfExtractor

logger = logging.getLogger(__name__)


class PdfExtractionResult(BaseModel):
    """Result of PDF text extraction."""

    text: str
    page_count: int
    metadata: dict[str, str] = Field(default_factory=dict)


class PypdfExtractor(BasePdfExtractor):
    """Extract text from PDF bytes with pypdf."""

    def __init__(self, page_separator: str = "\n\n"):
        """Initialize the extractor.

        Args:
            page_separator: Text inserted between pages
        """
        self.page_separator = page_separator

    async def extract(self, data: bytes) -> PdfExtractionResult:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._extract_sync, data)

    def _extract_sync(self, data: bytes) -> PdfExtractionResult:
        """Synchronous extraction implementation."""
        import pypdf

        try:
            reader = pypdf.PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
            raw_metadata: dict[str, Any] = dict(reader.metadata or {})
        except Exception as e:
            raise PdfExtractionError(str(e)) from e

        metadata = {
            key.lstrip("/").lower(): str(value)
            for key, value in raw_metadata.items()
            if value is not None
        }

        logger.debug(f"Extracted {len(pages)} pages from PDF")
        return PdfExtractionResult(
            text=self.page_separator.join(pages),
            page_count=len(pages),
            metadata=metadata,
        )
