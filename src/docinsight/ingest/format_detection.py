"""Signature based detection of uploaded document formats."""
from __future__ import annotations

from enum import Enum

from ..errors import EmptyInput, UnsupportedFormat

# Bytes inspected at each end of the buffer; detection never looks further.
SNIFF_WINDOW = 64 * 1024

_PDF_SIGNATURE = b"%PDF-"
_ZIP_SIGNATURE = b"PK\x03\x04"
_DOCX_PART_MARKER = b"word/"
_PDF_HEADER_SLACK = 1024


class DocumentFormat(str, Enum):
    """Supported document formats."""

    PDF = "pdf"
    DOCX = "docx"


class DocumentFormatDetector:
    """Classify a byte buffer by its magic bytes.

    PDF readers accept a few bytes of junk before ``%PDF-``, so the signature is
    searched for within the first kilobyte. DOCX files are ZIP containers; the
    ``word/`` part name is looked for in the head and tail windows (the tail
    holds the ZIP central directory), which keeps the cost independent of the
    document size.
    """

    @classmethod
    def detect(cls, data: bytes, file_name: str | None = None) -> DocumentFormat:
        if not data:
            raise EmptyInput(f"Uploaded file {file_name or '<unnamed>'} is empty")

        head = bytes(data[:SNIFF_WINDOW])
        if _PDF_SIGNATURE in head[:_PDF_HEADER_SLACK]:
            return DocumentFormat.PDF

        if head.startswith(_ZIP_SIGNATURE):
            tail = bytes(data[-SNIFF_WINDOW:]) if len(data) > SNIFF_WINDOW else b""
            if _DOCX_PART_MARKER in head or _DOCX_PART_MARKER in tail:
                return DocumentFormat.DOCX
            raise UnsupportedFormat(
                f"{file_name or 'Upload'} is a ZIP archive but not a Word document"
            )

        raise UnsupportedFormat(f"Unsupported file format: {file_name or '<unnamed>'}")
