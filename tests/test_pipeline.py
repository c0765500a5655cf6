from __future__ import annotations

import pytest

from docinsight.errors import CorruptDocument, EmptyInput, UnsupportedFormat
from docinsight.ingest.format_detection import DocumentFormat
from docinsight.ingest.pipeline import IngestPipeline
from docinsight.ingest.segmentation import Segmenter, SegmenterConfig
from docinsight.models import Document, DocumentStatus

from conftest import build_docx, corrupt_xref


def _pipeline(repository) -> IngestPipeline:
    return IngestPipeline(repository, segmenter=Segmenter(SegmenterConfig(max_units=5)))


def test_three_page_pdf_is_extracted_in_order(repository, three_page_pdf: bytes) -> None:
    document = _pipeline(repository).ingest(three_page_pdf, "contract.pdf")

    assert document.status is DocumentStatus.EXTRACTED
    assert document.format is DocumentFormat.PDF
    assert document.page_count == 3
    pages = repository.list_pages(document.id)
    assert [page.index for page in pages] == [0, 1, 2]
    assert "Page one" in pages[0].text and "Page three" in pages[2].text
    assert pages[1].char_offset == len(pages[0].text)
    assert pages[2].char_offset == len(pages[0].text) + len(pages[1].text)

    chunks = repository.list_chunks(document.id)
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    for page in pages:
        assert "".join(c.text for c in chunks if c.page_index == page.index) == page.text


def test_corrupt_pdf_marks_document_failed(repository, three_page_pdf: bytes) -> None:
    with pytest.raises(CorruptDocument) as excinfo:
        _pipeline(repository).ingest(corrupt_xref(three_page_pdf), "broken.pdf")

    document_id = excinfo.value.document_id
    assert document_id is not None
    document = repository.get_document(document_id)
    assert document.status is DocumentStatus.FAILED
    assert document.error
    assert repository.list_pages(document_id) == []
    assert repository.list_chunks(document_id) == []


@pytest.mark.parametrize(
    ("data", "error"),
    [(b"", EmptyInput), (b"hello world", UnsupportedFormat)],
)
def test_detection_failures_are_recorded(repository, data: bytes, error) -> None:
    with pytest.raises(error) as excinfo:
        _pipeline(repository).ingest(data, "upload.bin")

    document = repository.get_document(excinfo.value.document_id)
    assert document.status is DocumentStatus.FAILED
    assert document.format is None


def test_repeat_extraction_is_a_no_op(repository, three_page_pdf: bytes) -> None:
    pipeline = _pipeline(repository)
    document = pipeline.ingest(three_page_pdf, "contract.pdf")
    chunks_before = repository.list_chunks(document.id)

    again = pipeline.extract(document.id, three_page_pdf)

    assert again == document
    assert repository.list_chunks(document.id) == chunks_before


def test_failed_document_is_not_re_extracted(repository, three_page_pdf: bytes) -> None:
    pipeline = _pipeline(repository)
    with pytest.raises(CorruptDocument) as excinfo:
        pipeline.ingest(corrupt_xref(three_page_pdf), "broken.pdf")

    document = pipeline.extract(excinfo.value.document_id, three_page_pdf)

    assert document.status is DocumentStatus.FAILED


def test_extraction_is_deterministic(repository, three_page_pdf: bytes) -> None:
    pipeline = _pipeline(repository)
    first = pipeline.ingest(three_page_pdf, "a.pdf")
    second = pipeline.ingest(three_page_pdf, "b.pdf")

    def _shape(document: Document):
        return (
            [(p.index, p.text, p.byte_start, p.byte_end) for p in repository.list_pages(document.id)],
            [(c.index, c.page_index, c.start, c.end, c.text) for c in repository.list_chunks(document.id)],
        )

    assert _shape(first) == _shape(second)


def test_docx_upload_has_single_page_and_language(repository) -> None:
    data = build_docx(
        [
            "The tenant shall pay the rent on the first day of every month.",
            "The landlord is responsible for structural repairs of the building.",
        ]
    )

    document = _pipeline(repository).ingest(data, "lease.docx")

    assert document.format is DocumentFormat.DOCX
    assert document.page_count == 1
    assert document.language == "en"
    pages = repository.list_pages(document.id)
    assert pages[0].byte_start == 0 and pages[0].byte_end == len(data)
