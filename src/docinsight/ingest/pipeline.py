"""High level ingestion pipeline entry point."""
from __future__ import annotations

import logging
import time
from typing import List, Optional

from ..errors import IngestionError
from ..models import Document, DocumentStatus, Page, new_id
from ..store.base import Repository
from ..telemetry import emit_ingest_event, emit_page_warning
from .extractors import DocxExtractor, ExtractionResult, PDFExtractor
from .format_detection import DocumentFormat, DocumentFormatDetector
from .language import LanguageDetector
from .segmentation import Segmenter

LOGGER = logging.getLogger(__name__)


class IngestPipeline:
    """Detect, extract and segment uploaded documents into the repository."""

    def __init__(
        self,
        repository: Repository,
        segmenter: Optional[Segmenter] = None,
        language_detector: Optional[LanguageDetector] = None,
        pdf_strict: bool = True,
    ) -> None:
        self.repository = repository
        self.segmenter = segmenter or Segmenter()
        self.language_detector = language_detector or LanguageDetector()
        self.pdf_extractor = PDFExtractor(strict=pdf_strict)
        self.docx_extractor = DocxExtractor()

    def ingest(self, data: bytes, title: str, document_id: Optional[str] = None) -> Document:
        """Register ``data`` as a new pending document and extract it.

        Failures leave the document ``FAILED`` and re-raise with its id attached.
        """

        document = self.repository.create_document(
            Document(id=document_id or new_id(), title=title, byte_length=len(data))
        )
        return self.extract(document.id, data)

    def extract(self, document_id: str, data: bytes) -> Document:
        document = self.repository.get_document(document_id)
        if document.status is not DocumentStatus.PENDING:
            LOGGER.info("Document %s already %s; skipping extraction", document_id, document.status.value)
            return document

        start = time.perf_counter()
        document_format: Optional[DocumentFormat] = None
        try:
            document_format = DocumentFormatDetector.detect(data, document.title)
            result = self._extract(document_format, data, document_id)
        except IngestionError as error:
            error.document_id = document_id
            self.repository.mark_failed(document_id, error.message, document_format=document_format)
            emit_ingest_event(
                "ingest.document.failed",
                document_id=document_id,
                title=document.title,
                size_bytes=len(data),
                document_format=document_format.value if document_format else None,
                duration_ms=(time.perf_counter() - start) * 1000.0,
                error=error,
            )
            raise

        pages = self._pages(document_id, result)
        chunks = self.segmenter.segment_pages(document_id, pages)
        language = self.language_detector.detect("\n".join(page.text for page in pages))
        for warning in result.warnings:
            emit_page_warning(document_id=document_id, page_index=warning.page_index, message=warning.message)

        extracted = self.repository.mark_extracted(
            document_id,
            document_format=document_format,
            language=language,
            pages=pages,
            chunks=chunks,
            warnings=result.warnings,
        )
        emit_ingest_event(
            "ingest.document.extracted",
            document_id=document_id,
            title=document.title,
            size_bytes=len(data),
            document_format=document_format.value,
            pages=len(pages),
            chunks=len(chunks),
            warnings=len(result.warnings),
            language=language,
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return extracted

    def _extract(self, document_format: DocumentFormat, data: bytes, document_id: str) -> ExtractionResult:
        if document_format is DocumentFormat.PDF:
            return self.pdf_extractor.extract(data, document_id=document_id)
        return self.docx_extractor.extract(data, document_id=document_id)

    @staticmethod
    def _pages(document_id: str, result: ExtractionResult) -> List[Page]:
        pages: List[Page] = []
        char_offset = 0
        for extracted in result.pages:
            pages.append(
                Page(
                    document_id=document_id,
                    index=extracted.index,
                    text=extracted.text,
                    char_offset=char_offset,
                    byte_start=extracted.byte_start,
                    byte_end=extracted.byte_end,
                )
            )
            char_offset += len(extracted.text)
        return pages
