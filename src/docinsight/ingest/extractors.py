"""Extractors recovering ordered per-page text from supported containers."""
from __future__ import annotations

import bisect
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from docx import Document as load_docx
from pypdf import PdfReader

from ..errors import CorruptDocument, PageExtractionWarning

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ExtractedPage:
    index: int
    text: str
    byte_start: Optional[int] = None
    byte_end: Optional[int] = None


@dataclass(slots=True)
class ExtractionResult:
    pages: List[ExtractedPage]
    warnings: List[PageExtractionWarning] = field(default_factory=list)


class PDFExtractor:
    """Extract page text from PDF documents in declared page order.

    The cross-reference table must parse (``strict`` mode rejects broken
    tables instead of rebuilding them); individual pages whose content
    streams are malformed come back empty with a recorded warning.
    """

    def __init__(self, strict: bool = True) -> None:
        self.strict = strict

    def extract(self, data: bytes, *, document_id: str | None = None) -> ExtractionResult:
        reader, page_objects = self._open(data, document_id)
        offsets = self._object_offsets(reader)
        sorted_offsets = sorted(set(offsets.values()))

        pages: List[ExtractedPage] = []
        warnings: List[PageExtractionWarning] = []
        for index, page in enumerate(page_objects):
            try:
                text = page.extract_text() or ""
            except Exception as error:
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                warnings.append(PageExtractionWarning(page_index=index, message=str(error) or type(error).__name__))
                text = ""

            byte_start = self._page_offset(page, offsets)
            byte_end = None
            if byte_start is not None:
                position = bisect.bisect_right(sorted_offsets, byte_start)
                byte_end = sorted_offsets[position] if position < len(sorted_offsets) else len(data)
            pages.append(ExtractedPage(index=index, text=text, byte_start=byte_start, byte_end=byte_end))
        return ExtractionResult(pages=pages, warnings=warnings)

    def _open(self, data: bytes, document_id: str | None):
        try:
            reader = PdfReader(io.BytesIO(data), strict=self.strict)
            if reader.is_encrypted and not reader.decrypt(""):
                raise CorruptDocument("PDF is encrypted", document_id=document_id)
            page_objects = list(reader.pages)
        except CorruptDocument:
            raise
        except Exception as error:
            raise CorruptDocument(
                f"PDF structure could not be parsed: {error}",
                document_id=document_id,
                cause=error,
            ) from error

        if not page_objects:
            raise CorruptDocument("PDF declares no pages", document_id=document_id)
        return reader, page_objects

    @staticmethod
    def _object_offsets(reader: PdfReader) -> Dict[tuple[int, int], int]:
        offsets: Dict[tuple[int, int], int] = {}
        for generation, entries in getattr(reader, "xref", {}).items():
            for idnum, offset in entries.items():
                if isinstance(offset, int):
                    offsets[(idnum, generation)] = offset
        return offsets

    @staticmethod
    def _page_offset(page, offsets: Dict[tuple[int, int], int]) -> Optional[int]:
        reference = getattr(page, "indirect_reference", None)
        if reference is None:
            return None
        # Pages stored in object streams have no direct byte offset.
        return offsets.get((reference.idnum, reference.generation))


class DocxExtractor:
    """Extract text from Microsoft Word documents as a single page."""

    def extract(self, data: bytes, *, document_id: str | None = None) -> ExtractionResult:
        try:
            document = load_docx(io.BytesIO(data))
        except Exception as error:
            raise CorruptDocument(
                f"DOCX container could not be parsed: {error}",
                document_id=document_id,
                cause=error,
            ) from error

        text_parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text]
        text = "\n\n".join(text_parts)
        return ExtractionResult(pages=[ExtractedPage(index=0, text=text, byte_start=0, byte_end=len(data))])
