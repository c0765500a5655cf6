from __future__ import annotations

import pytest

from docinsight.errors import EmptyInput, UnsupportedFormat
from docinsight.ingest.format_detection import SNIFF_WINDOW, DocumentFormat, DocumentFormatDetector

from conftest import build_docx, build_pdf


def test_detects_pdf_signature(three_page_pdf: bytes) -> None:
    assert DocumentFormatDetector.detect(three_page_pdf, "a.pdf") is DocumentFormat.PDF


def test_detects_pdf_with_leading_junk() -> None:
    data = b"\x00\x00garbage" + build_pdf(["Hello"])
    assert DocumentFormatDetector.detect(data) is DocumentFormat.PDF


def test_detects_docx_container() -> None:
    assert DocumentFormatDetector.detect(build_docx(["Hello world"]), "a.docx") is DocumentFormat.DOCX


def test_empty_buffer_is_rejected() -> None:
    with pytest.raises(EmptyInput):
        DocumentFormatDetector.detect(b"", "empty.pdf")


def test_unknown_signature_is_rejected() -> None:
    with pytest.raises(UnsupportedFormat):
        DocumentFormatDetector.detect(b"just some plain text", "notes.txt")


def test_plain_zip_is_not_a_word_document() -> None:
    data = b"PK\x03\x04" + b"\x00" * 100 + b"images/cat.png"
    with pytest.raises(UnsupportedFormat):
        DocumentFormatDetector.detect(data, "archive.zip")


def test_signature_outside_prefix_is_ignored() -> None:
    data = b"x" * (SNIFF_WINDOW + 10) + b"%PDF-1.4"
    with pytest.raises(UnsupportedFormat):
        DocumentFormatDetector.detect(data)


def test_file_name_does_not_override_content() -> None:
    with pytest.raises(UnsupportedFormat):
        DocumentFormatDetector.detect(b"not a pdf at all", "report.pdf")
