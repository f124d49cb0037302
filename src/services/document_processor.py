"""
PDF and document processing services.
"""

import io
import logging
from typing import Any

from pypdf import PdfReader

from services.errors import ExtractionError
from services.models import PdfChunk

LOGGER = logging.getLogger("preppal.pdf")


class PDFProcessor:
    """Splits PDF files into page-indexed text chunks."""

    def _read_bytes(self, uploaded_file: Any) -> bytes:
        """Read raw bytes from a file-like object."""
        try:
            data = uploaded_file.read()
        except Exception as e:
            raise ExtractionError(f"Unable to read file: {e!s}") from e

        if not data:
            raise ExtractionError("File is empty and cannot be processed.")
        return data

    def extract_chunks_from_bytes(self, data: bytes) -> list[PdfChunk]:
        """
        Extract per-page text from PDF bytes.

        Every page yields a chunk, in page order, numbered from 1. Pages without
        extractable text yield an empty string.

        Raises:
            ExtractionError: If the data is empty, not a PDF, corrupted, encrypted
                or has no pages.
        """
        if not data:
            raise ExtractionError("File is empty and cannot be processed.")

        try:
            reader = PdfReader(io.BytesIO(data))
        except Exception as e:
            raise ExtractionError(f"Unable to parse PDF (possibly corrupted): {e!s}") from e

        if reader.is_encrypted:
            raise ExtractionError("PDF is encrypted and cannot be processed.")

        chunks: list[PdfChunk] = []
        try:
            for idx, page in enumerate(reader.pages):
                text = (page.extract_text() or "").strip()
                chunks.append(PdfChunk(page_number=idx + 1, content=text))
        except Exception as e:
            raise ExtractionError(f"Error extracting page text: {e!s}") from e

        if not chunks:
            raise ExtractionError("PDF contains no pages.")
        empty = sum(1 for c in chunks if not c.content)
        LOGGER.info("extracted %d pages (%d without text)", len(chunks), empty)
        return chunks

    def extract_chunks(self, uploaded_file: Any) -> list[PdfChunk]:
        """
        Read an uploaded file and return its page chunks.

        Args:
            uploaded_file: A file-like object (e.g. Streamlit UploadedFile)
                with .read() returning bytes.
        """
        data = self._read_bytes(uploaded_file)
        return self.extract_chunks_from_bytes(data)
