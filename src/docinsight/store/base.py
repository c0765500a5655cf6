"""Repository contract shared by the storage backends."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from ..errors import PageExtractionWarning
from ..ingest.format_detection import DocumentFormat
from ..models import (
    ChatMessage,
    Chunk,
    ChunkRef,
    Document,
    MessageDraft,
    Page,
    Report,
    Role,
    SourceReference,
)


class Repository(ABC):
    """Create/read/append access to pipeline records.

    Implementations guarantee atomic per-record writes. ``append_messages``
    assigns consecutive per-document sequence numbers to all of its drafts in
    one write, and ``append_report_item`` the next report position. Nothing is
    ever updated in place except a document's transition out of ``PENDING``.
    """

    # Documents -----------------------------------------------------------

    @abstractmethod
    def create_document(self, document: Document) -> Document:
        ...

    @abstractmethod
    def get_document(self, document_id: str) -> Document:
        """Return the document or raise :class:`RecordNotFound`."""

    @abstractmethod
    def list_documents(self) -> List[Document]:
        ...

    @abstractmethod
    def mark_extracted(
        self,
        document_id: str,
        *,
        document_format: DocumentFormat,
        language: Optional[str],
        pages: Sequence[Page],
        chunks: Sequence[Chunk],
        warnings: Sequence[PageExtractionWarning] = (),
    ) -> Document:
        """Store pages and chunks and move a pending document to ``EXTRACTED``.

        A document that already left ``PENDING`` is returned unchanged.
        """

    @abstractmethod
    def mark_failed(
        self,
        document_id: str,
        error: str,
        *,
        document_format: Optional[DocumentFormat] = None,
    ) -> Document:
        """Move a pending document to ``FAILED``; other states are left unchanged."""

    @abstractmethod
    def list_pages(self, document_id: str) -> List[Page]:
        ...

    @abstractmethod
    def list_chunks(self, document_id: str) -> List[Chunk]:
        ...

    @abstractmethod
    def get_chunk(self, chunk_id: str) -> Chunk:
        ...

    # Chat ----------------------------------------------------------------

    @abstractmethod
    def append_messages(
        self,
        document_id: str,
        drafts: Sequence[MessageDraft],
        created_at: datetime,
    ) -> List[ChatMessage]:
        """Store ``drafts`` as consecutive messages, all or none.

        Every cited chunk must exist, else :class:`RecordNotFound` is raised and
        nothing is written.
        """

    def append_message(
        self,
        document_id: str,
        role: Role,
        content: str,
        citations: Sequence[ChunkRef],
        created_at: datetime,
    ) -> ChatMessage:
        draft = MessageDraft(role=role, content=content, citations=tuple(citations))
        return self.append_messages(document_id, [draft], created_at)[0]

    @abstractmethod
    def list_messages(self, document_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        """Return the last ``limit`` messages (all when ``None``) in ascending sequence order."""

    @abstractmethod
    def get_message(self, message_id: str) -> ChatMessage:
        ...

    # Reports -------------------------------------------------------------

    @abstractmethod
    def create_report(self, report: Report) -> Report:
        ...

    @abstractmethod
    def get_report(self, report_id: str) -> Report:
        ...

    @abstractmethod
    def append_report_item(self, report_id: str, source: SourceReference, document_id: str) -> Report:
        ...
