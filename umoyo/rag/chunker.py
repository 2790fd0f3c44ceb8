"""
Umoyo Document Chunker Module

PDF text extraction and deterministic sliding-window chunking for the
ingestion pipeline. Extraction uses PyPDF2 with a pdfplumber fallback for
complex layouts, and an optional OCR hook for image-only PDFs.
"""

import asyncio
import hashlib
import io
import logging
import os
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import pdfplumber
from PyPDF2 import PdfReader

from umoyo.exceptions import ValidationError
from umoyo.rag.models import Chunk, Document

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = int(os.environ.get("CHUNK_SIZE", "512"))
DEFAULT_CHUNK_OVERLAP = int(os.environ.get("CHUNK_OVERLAP", "50"))

# Documents with less extracted text than this are skipped, not failed
MIN_TEXT_LENGTH = 100

OcrFunc = Callable[[str], Awaitable[str]]

# ============================================
# Exceptions
# ============================================


class PDFParseError(Exception):
    """Raised when a PDF cannot be read at all."""

    pass


# ============================================
# Helpers
# ============================================


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    """Content-addressed chunk id: identical inputs always give the same id."""
    digest = hashlib.sha256(f"{document_id}:{chunk_index}".encode("utf-8"))
    return digest.hexdigest()[:32]


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace (including newlines) to single spaces."""
    return re.sub(r"\s+", " ", text).strip()


def is_text_sufficient(text: str, min_length: int = MIN_TEXT_LENGTH) -> bool:
    return len(text.strip()) >= min_length


# ============================================
# PDF Text Extractor
# ============================================


class PDFTextExtractor:
    """Extracts text from PDF files.

    Uses PyPDF2 as the primary parser with pdfplumber as fallback. When
    neither yields enough text and an OCR function is configured, OCR is
    attempted before the document is given up on.

    Attributes:
        ocr: Optional async callable taking a file path and returning text.
        min_length: Minimum characters for extracted text to be usable.
    """

    def __init__(
        self,
        ocr: OcrFunc | None = None,
        min_length: int = MIN_TEXT_LENGTH,
    ) -> None:
        self.ocr = ocr
        self.min_length = min_length

    async def extract(self, pdf_path: str | Path) -> str:
        """Extract normalised text from a PDF, falling back to OCR.

        Args:
            pdf_path: Path to the PDF on local disk.

        Returns:
            Extracted text, or "" when nothing usable could be extracted.

        Raises:
            PDFParseError: If the file does not exist.
        """
        path = Path(pdf_path)
        if not path.exists():
            raise PDFParseError(f"PDF file not found: {pdf_path}")

        try:
            raw = await asyncio.to_thread(self.parse_file, path)
        except PDFParseError as e:
            logger.warning("PDF structure invalid for %s: %s", path.name, e)
            raw = ""

        text = normalize_whitespace(raw)
        if is_text_sufficient(text, self.min_length):
            logger.info("Extracted %d characters from %s", len(text), path.name)
            return text

        logger.warning("No usable text in %s (might be image-based)", path.name)
        return await self._try_ocr(path, text)

    async def _try_ocr(self, path: Path, fallback: str) -> str:
        if self.ocr is None:
            logger.warning("OCR not configured, giving up on %s", path.name)
            return fallback

        try:
            ocr_text = normalize_whitespace(await self.ocr(str(path)))
        except Exception as e:
            logger.error("OCR extraction failed for %s: %s", path.name, str(e)[:200])
            return fallback

        if ocr_text:
            logger.info("OCR extracted %d characters from %s", len(ocr_text), path.name)
            return ocr_text
        logger.warning("OCR returned no text for %s", path.name)
        return fallback

    def parse_file(self, file_path: str | Path) -> str:
        """Parse a PDF from disk and return raw text."""
        path = Path(file_path)
        try:
            pdf_bytes = path.read_bytes()
        except OSError as e:
            raise PDFParseError(f"Failed to read PDF file: {e}") from e
        return self.parse(pdf_bytes)

    def parse(self, pdf_bytes: bytes) -> str:
        """Parse PDF bytes with PyPDF2, then pdfplumber.

        Raises:
            PDFParseError: If the data is empty or no parser can read it.
        """
        if not pdf_bytes:
            raise PDFParseError("Empty PDF data provided")

        try:
            text = self._extract_with_pypdf2(pdf_bytes)
            if text.strip():
                return text
        except Exception as e:
            logger.debug("PyPDF2 extraction failed: %s", e)

        try:
            text = self._extract_with_pdfplumber(pdf_bytes)
            if text.strip():
                return text
        except Exception as e:
            logger.debug("pdfplumber extraction failed: %s", e)

        # A well-formed but text-less PDF is a candidate for OCR
        if pdf_bytes.startswith(b"%PDF"):
            return ""

        raise PDFParseError("Failed to parse PDF with any available method")

    def _extract_with_pypdf2(self, pdf_bytes: bytes) -> str:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        text_parts = []

        for page in reader.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)

        return "\n\n".join(text_parts)

    def _extract_with_pdfplumber(self, pdf_bytes: bytes) -> str:
        text_parts = []

        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            for page in pdf.pages:
                page_text = page.extract_text()
                if page_text:
                    text_parts.append(page_text)

        return "\n\n".join(text_parts)


# ============================================
# Fixed Window Chunker
# ============================================


@dataclass(frozen=True)
class TextSpan:
    """A window of text with its character offsets."""

    content: str
    index: int
    start_char: int
    end_char: int


class FixedWindowChunker:
    """Deterministic sliding-window chunker over characters.

    Each window is ``chunk_size`` characters long and starts ``chunk_overlap``
    characters before the previous one ended. The last window ends exactly
    at the end of the text, so a text of length L yields
    ``ceil((L - overlap) / (size - overlap))`` windows when L > size.

    Attributes:
        chunk_size: Window length in characters (default: 512).
        chunk_overlap: Characters shared by consecutive windows (default: 50).
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_size <= 0:
            raise ValidationError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValidationError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk_text(self, text: str) -> list[TextSpan]:
        """Split text into overlapping windows."""
        spans: list[TextSpan] = []
        start = 0
        length = len(text)

        while start < length:
            end = min(length, start + self.chunk_size)
            spans.append(
                TextSpan(
                    content=text[start:end],
                    index=len(spans),
                    start_char=start,
                    end_char=end,
                )
            )
            if end >= length:
                break
            start = max(end - self.chunk_overlap, 0)

        return spans

    def prepare_chunks(
        self,
        document: Document,
        text: str,
        page_number: int | None = None,
    ) -> list[Chunk]:
        """Chunk a document's text into records ready for embedding.

        Args:
            document: The owning document; its metadata is copied onto chunks.
            text: Extracted document text.
            page_number: Optional page the text came from.

        Returns:
            Chunks ordered by chunk_index.
        """
        metadata = {
            "document_title": document.title,
            "language": document.metadata.language,
            "audience": document.metadata.audience,
            "region": document.metadata.region,
        }

        return [
            Chunk(
                chunk_id=make_chunk_id(document.id, span.index),
                document_id=document.id,
                source=document.title,
                category=document.category,
                content=span.content,
                chunk_index=span.index,
                start_char=span.start_char,
                end_char=span.end_char,
                page_number=page_number,
                metadata=dict(metadata),
            )
            for span in self.chunk_text(text)
        ]
