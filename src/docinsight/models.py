"""Records produced and consumed by the document insight pipeline."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from .errors import PageExtractionWarning
from .ingest.format_detection import DocumentFormat


class DocumentStatus(str, Enum):
    """Ingestion lifecycle of a document."""

    PENDING = "pending"
    EXTRACTED = "extracted"
    FAILED = "failed"


class Role(str, Enum):
    """Author of a chat message."""

    USER = "user"
    AI = "ai"


class SourceKind(str, Enum):
    """Kind of record an insight item points to."""

    MESSAGE = "message"
    CHUNK = "chunk"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    """Return the stable identifier of a chunk within a document."""

    return uuid.uuid5(uuid.NAMESPACE_URL, f"{document_id}:{chunk_index}").hex


@dataclass(frozen=True, slots=True)
class Document:
    """An uploaded source document.

    Pages and chunks are stored separately and looked up by ``id``; a document
    is immutable once it leaves the ``PENDING`` state.
    """

    id: str
    title: str
    byte_length: int
    status: DocumentStatus = DocumentStatus.PENDING
    format: Optional[DocumentFormat] = None
    language: Optional[str] = None
    page_count: int = 0
    error: Optional[str] = None
    warnings: Tuple[PageExtractionWarning, ...] = ()
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class Page:
    """Text recovered from one page, in declared page order."""

    document_id: str
    index: int
    text: str
    char_offset: int
    byte_start: Optional[int] = None
    byte_end: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ChunkRef:
    """Non-owning citation pointer to a chunk."""

    chunk_id: str
    document_id: str
    page_index: int
    chunk_index: int


@dataclass(frozen=True, slots=True)
class Chunk:
    """Contiguous slice ``page.text[start:end]`` used as context and citation anchor."""

    id: str
    document_id: str
    page_index: int
    index: int
    start: int
    end: int
    text: str
    size: int
    oversized: bool = False

    @property
    def ref(self) -> ChunkRef:
        return ChunkRef(
            chunk_id=self.id,
            document_id=self.document_id,
            page_index=self.page_index,
            chunk_index=self.index,
        )


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """Append-only conversation entry; ``sequence`` orders the conversation."""

    id: str
    document_id: str
    sequence: int
    role: Role
    content: str
    created_at: datetime
    citations: Tuple[ChunkRef, ...] = ()


@dataclass(frozen=True, slots=True)
class MessageDraft:
    """A message not yet stored; the repository assigns id and sequence."""

    role: Role
    content: str
    citations: Tuple[ChunkRef, ...] = ()


@dataclass(frozen=True, slots=True)
class SourceReference:
    kind: SourceKind
    id: str

    @classmethod
    def message(cls, message_id: str) -> "SourceReference":
        return cls(kind=SourceKind.MESSAGE, id=message_id)

    @classmethod
    def chunk(cls, chunk_id: str) -> "SourceReference":
        return cls(kind=SourceKind.CHUNK, id=chunk_id)


@dataclass(frozen=True, slots=True)
class InsightItem:
    position: int
    source: SourceReference
    document_id: str


@dataclass(frozen=True, slots=True)
class Report:
    id: str
    title: str
    items: Tuple[InsightItem, ...] = ()
    created_at: datetime = field(default_factory=utcnow)


__all__ = [
    "ChatMessage",
    "Chunk",
    "ChunkRef",
    "Document",
    "DocumentStatus",
    "InsightItem",
    "MessageDraft",
    "Page",
    "Report",
    "Role",
    "SourceKind",
    "SourceReference",
    "make_chunk_id",
    "new_id",
    "utcnow",
]
