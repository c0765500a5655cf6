"""Shared fixtures: in-memory PDF/DOCX builders and repository backends."""
from __future__ import annotations

import io
from typing import Dict, List, Sequence

import docx
import pytest

from docinsight.models import Document, DocumentStatus, Page
from docinsight.store.memory import InMemoryRepository
from docinsight.store.sql import SQLRepository


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(page_texts: Sequence[str]) -> bytes:
    """Return a minimal, well-formed PDF with one text line per page.

    Page objects are numbered in reverse of their declared order so the
    cross-reference table order differs from the page tree order.
    """

    count = len(page_texts)
    objects: Dict[int, bytes] = {3: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>"}
    kids: List[int] = []
    for declared, text in enumerate(page_texts):
        page_number = 4 + 2 * (count - 1 - declared)
        content_number = page_number + 1
        kids.append(page_number)
        content = f"BT /F1 12 Tf 72 720 Td ({_escape(text)}) Tj ET".encode("latin-1")
        objects[page_number] = (
            b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            b"/Resources << /Font << /F1 3 0 R >> >> "
            + f"/Contents {content_number} 0 R >>".encode("ascii")
        )
        objects[content_number] = (
            f"<< /Length {len(content)} >>\nstream\n".encode("ascii") + content + b"\nendstream"
        )
    kid_refs = " ".join(f"{number} 0 R" for number in kids)
    objects[1] = b"<< /Type /Catalog /Pages 2 0 R >>"
    objects[2] = f"<< /Type /Pages /Kids [{kid_refs}] /Count {count} >>".encode("ascii")

    out = bytearray(b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n")
    offsets: Dict[int, int] = {}
    for number in sorted(objects):
        offsets[number] = len(out)
        out += f"{number} 0 obj\n".encode("ascii") + objects[number] + b"\nendobj\n"

    size = max(objects) + 1
    xref_offset = len(out)
    out += f"xref\n0 {size}\n".encode("ascii")
    out += b"0000000000 65535 f \n"
    for number in range(1, size):
        out += f"{offsets[number]:010d} 00000 n \n".encode("ascii")
    out += f"trailer\n<< /Size {size} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n".encode("ascii")
    return bytes(out)


def corrupt_xref(data: bytes) -> bytes:
    """Overwrite the cross-reference table keyword without shifting offsets."""

    return data.replace(b"xref\n0 ", b"broken!", 1)


def build_docx(paragraphs: Sequence[str]) -> bytes:
    document = docx.Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def three_page_pdf() -> bytes:
    return build_pdf(
        [
            "Page one. The contract starts in January.",
            "Page two. Payment is due within thirty days.",
            "Page three. Either party may terminate with notice.",
        ]
    )


@pytest.fixture(params=["memory", "sql"])
def repository(request):
    if request.param == "memory":
        yield InMemoryRepository()
        return
    repo = SQLRepository.from_url("sqlite://")
    yield repo
    repo.engine.dispose()


@pytest.fixture
def make_document():
    """Store an extracted document whose pages and chunks are given as text."""

    from docinsight.ingest.format_detection import DocumentFormat
    from docinsight.ingest.segmentation import Segmenter, SegmenterConfig

    def _make(repo, page_texts: Sequence[str], *, title: str = "Sample", max_units: int = 50) -> Document:
        document = repo.create_document(Document(id=f"doc-{len(repo.list_documents())}", title=title, byte_length=100))
        pages = []
        offset = 0
        for index, text in enumerate(page_texts):
            pages.append(Page(document_id=document.id, index=index, text=text, char_offset=offset))
            offset += len(text)
        chunks = Segmenter(SegmenterConfig(max_units=max_units)).segment_pages(document.id, pages)
        extracted = repo.mark_extracted(
            document.id,
            document_format=DocumentFormat.PDF,
            language="en",
            pages=pages,
            chunks=chunks,
        )
        assert extracted.status is DocumentStatus.EXTRACTED
        return extracted

    return _make
