"""Process-local repository used in development and tests."""
from __future__ import annotations

import dataclasses
import threading
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ..errors import PageExtractionWarning, RecordNotFound
from ..ingest.format_detection import DocumentFormat
from ..models import (
    ChatMessage,
    Chunk,
    Document,
    DocumentStatus,
    InsightItem,
    MessageDraft,
    Page,
    Report,
    SourceReference,
    new_id,
)
from .base import Repository


class InMemoryRepository(Repository):
    """Dictionary backed repository guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: Dict[str, Document] = {}
        self._pages: Dict[str, List[Page]] = {}
        self._chunks: Dict[str, List[Chunk]] = {}
        self._chunks_by_id: Dict[str, Chunk] = {}
        self._messages: Dict[str, List[ChatMessage]] = {}
        self._messages_by_id: Dict[str, ChatMessage] = {}
        self._reports: Dict[str, Report] = {}

    def create_document(self, document: Document) -> Document:
        with self._lock:
            self._documents[document.id] = document
        return document

    def get_document(self, document_id: str) -> Document:
        try:
            return self._documents[document_id]
        except KeyError:
            raise RecordNotFound(f"Unknown document {document_id}", document_id=document_id) from None

    def list_documents(self) -> List[Document]:
        with self._lock:
            return sorted(self._documents.values(), key=lambda item: item.created_at)

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
        with self._lock:
            document = self.get_document(document_id)
            if document.status is not DocumentStatus.PENDING:
                return document
            updated = dataclasses.replace(
                document,
                status=DocumentStatus.EXTRACTED,
                format=document_format,
                language=language,
                page_count=len(pages),
                warnings=tuple(warnings),
            )
            self._pages[document_id] = list(pages)
            self._chunks[document_id] = list(chunks)
            self._chunks_by_id.update((chunk.id, chunk) for chunk in chunks)
            self._documents[document_id] = updated
            return updated

    def mark_failed(
        self,
        document_id: str,
        error: str,
        *,
        document_format: Optional[DocumentFormat] = None,
    ) -> Document:
        with self._lock:
            document = self.get_document(document_id)
            if document.status is not DocumentStatus.PENDING:
                return document
            updated = dataclasses.replace(
                document, status=DocumentStatus.FAILED, error=error, format=document_format
            )
            self._documents[document_id] = updated
            return updated

    def list_pages(self, document_id: str) -> List[Page]:
        self.get_document(document_id)
        return list(self._pages.get(document_id, ()))

    def list_chunks(self, document_id: str) -> List[Chunk]:
        self.get_document(document_id)
        return list(self._chunks.get(document_id, ()))

    def get_chunk(self, chunk_id: str) -> Chunk:
        try:
            return self._chunks_by_id[chunk_id]
        except KeyError:
            raise RecordNotFound(f"Unknown chunk {chunk_id}", chunk_id=chunk_id) from None

    def append_messages(
        self,
        document_id: str,
        drafts: Sequence[MessageDraft],
        created_at: datetime,
    ) -> List[ChatMessage]:
        with self._lock:
            self.get_document(document_id)
            for draft in drafts:
                for citation in draft.citations:
                    self.get_chunk(citation.chunk_id)
            conversation = self._messages.setdefault(document_id, [])
            messages = [
                ChatMessage(
                    id=new_id(),
                    document_id=document_id,
                    sequence=len(conversation) + offset,
                    role=draft.role,
                    content=draft.content,
                    created_at=created_at,
                    citations=tuple(draft.citations),
                )
                for offset, draft in enumerate(drafts, start=1)
            ]
            conversation.extend(messages)
            self._messages_by_id.update((message.id, message) for message in messages)
            return messages

    def list_messages(self, document_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        self.get_document(document_id)
        with self._lock:
            conversation = list(self._messages.get(document_id, ()))
        if limit is not None:
            conversation = conversation[-limit:] if limit > 0 else []
        return conversation

    def get_message(self, message_id: str) -> ChatMessage:
        try:
            return self._messages_by_id[message_id]
        except KeyError:
            raise RecordNotFound(f"Unknown chat message {message_id}") from None

    def create_report(self, report: Report) -> Report:
        with self._lock:
            self._reports[report.id] = report
        return report

    def get_report(self, report_id: str) -> Report:
        try:
            return self._reports[report_id]
        except KeyError:
            raise RecordNotFound(f"Unknown report {report_id}") from None

    def append_report_item(self, report_id: str, source: SourceReference, document_id: str) -> Report:
        with self._lock:
            report = self.get_report(report_id)
            item = InsightItem(position=len(report.items), source=source, document_id=document_id)
            updated = dataclasses.replace(report, items=report.items + (item,))
            self._reports[report_id] = updated
            return updated
