"""SQLAlchemy backed repository."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import PageExtractionWarning, RecordNotFound
from ..ingest.format_detection import DocumentFormat
from ..models import (
    ChatMessage,
    Chunk,
    ChunkRef,
    Document,
    DocumentStatus,
    InsightItem,
    MessageDraft,
    Page,
    Report,
    Role,
    SourceKind,
    SourceReference,
    new_id,
    utcnow,
)
from .base import Repository

LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    __tablename__ = "documents"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    byte_length: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    format: Mapped[str | None] = mapped_column(String(16), nullable=True)
    language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    page_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    warnings: Mapped[list["PageWarningRow"]] = relationship(order_by="PageWarningRow.id")


class PageRow(Base):
    __tablename__ = "pages"
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), primary_key=True)
    index: Mapped[int] = mapped_column(Integer, primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    char_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    byte_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    byte_end: Mapped[int | None] = mapped_column(Integer, nullable=True)


class PageWarningRow(Base):
    __tablename__ = "page_warnings"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), index=True)
    page_index: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)


class ChunkRow(Base):
    __tablename__ = "chunks"
    __table_args__ = (UniqueConstraint("document_id", "chunk_index"),)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), index=True)
    page_index: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start: Mapped[int] = mapped_column(Integer, nullable=False)
    end: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    oversized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class ChatMessageRow(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (UniqueConstraint("document_id", "sequence"),)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(8), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    citations: Mapped[list["MessageCitationRow"]] = relationship(order_by="MessageCitationRow.position")


class MessageCitationRow(Base):
    """Many-to-many link between chat messages and the chunks they cite."""

    __tablename__ = "message_citations"
    message_id: Mapped[str] = mapped_column(ForeignKey("chat_messages.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    chunk_id: Mapped[str] = mapped_column(ForeignKey("chunks.id"), nullable=False)

    chunk: Mapped[ChunkRow] = relationship()


class ReportRow(Base):
    __tablename__ = "reports"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    items: Mapped[list["ReportItemRow"]] = relationship(order_by="ReportItemRow.position")


class ReportItemRow(Base):
    __tablename__ = "report_items"
    __table_args__ = (UniqueConstraint("report_id", "position"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[str] = mapped_column(ForeignKey("reports.id"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    source_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    source_id: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), nullable=False)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _to_document(row: DocumentRow) -> Document:
    return Document(
        id=row.id,
        title=row.title,
        byte_length=row.byte_length,
        status=DocumentStatus(row.status),
        format=DocumentFormat(row.format) if row.format else None,
        language=row.language,
        page_count=row.page_count,
        error=row.error,
        warnings=tuple(
            PageExtractionWarning(page_index=warning.page_index, message=warning.message)
            for warning in row.warnings
        ),
        created_at=_aware(row.created_at),
    )


def _to_chunk(row: ChunkRow) -> Chunk:
    return Chunk(
        id=row.id,
        document_id=row.document_id,
        page_index=row.page_index,
        index=row.chunk_index,
        start=row.start,
        end=row.end,
        text=row.text,
        size=row.size,
        oversized=row.oversized,
    )


def _to_message(row: ChatMessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        document_id=row.document_id,
        sequence=row.sequence,
        role=Role(row.role),
        content=row.content,
        created_at=_aware(row.created_at),
        citations=tuple(
            ChunkRef(
                chunk_id=citation.chunk.id,
                document_id=citation.chunk.document_id,
                page_index=citation.chunk.page_index,
                chunk_index=citation.chunk.chunk_index,
            )
            for citation in row.citations
        ),
    )


def _to_report(row: ReportRow) -> Report:
    return Report(
        id=row.id,
        title=row.title,
        items=tuple(
            InsightItem(
                position=item.position,
                source=SourceReference(kind=SourceKind(item.source_kind), id=item.source_id),
                document_id=item.document_id,
            )
            for item in row.items
        ),
        created_at=_aware(row.created_at),
    )


class SQLRepository(Repository):
    """Repository persisting records through the SQLAlchemy ORM."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        # Serialises sequence/position assignment for writers sharing this process.
        self._write_lock = threading.Lock()
        # Under StaticPool every session shares one DBAPI connection.
        self._connection_lock = threading.RLock() if isinstance(engine.pool, StaticPool) else None
        Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "SQLRepository":
        kwargs: dict = {}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        LOGGER.info("Opening SQL repository at %s", database_url.split("@")[-1])
        return cls(create_engine(database_url, **kwargs))

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._connection_lock or nullcontext(), self._session_factory() as session:
            yield session

    def _document_row(self, session: Session, document_id: str) -> DocumentRow:
        row = session.get(DocumentRow, document_id)
        if row is None:
            raise RecordNotFound(f"Unknown document {document_id}", document_id=document_id)
        return row

    # Documents -----------------------------------------------------------

    def create_document(self, document: Document) -> Document:
        with self._session() as session, session.begin():
            session.add(
                DocumentRow(
                    id=document.id,
                    title=document.title,
                    byte_length=document.byte_length,
                    status=document.status.value,
                    format=document.format.value if document.format else None,
                    language=document.language,
                    page_count=document.page_count,
                    error=document.error,
                    created_at=document.created_at,
                )
            )
        return document

    def get_document(self, document_id: str) -> Document:
        with self._session() as session:
            return _to_document(self._document_row(session, document_id))

    def list_documents(self) -> List[Document]:
        with self._session() as session:
            rows = session.scalars(select(DocumentRow).order_by(DocumentRow.created_at)).all()
            return [_to_document(row) for row in rows]

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
        with self._write_lock, self._session() as session:
            with session.begin():
                row = self._document_row(session, document_id)
                if row.status == DocumentStatus.PENDING.value:
                    row.status = DocumentStatus.EXTRACTED.value
                    row.format = document_format.value
                    row.language = language
                    row.page_count = len(pages)
                    session.add_all(
                        PageRow(
                            document_id=document_id,
                            index=page.index,
                            text=page.text,
                            char_offset=page.char_offset,
                            byte_start=page.byte_start,
                            byte_end=page.byte_end,
                        )
                        for page in pages
                    )
                    session.add_all(
                        ChunkRow(
                            id=chunk.id,
                            document_id=document_id,
                            page_index=chunk.page_index,
                            chunk_index=chunk.index,
                            start=chunk.start,
                            end=chunk.end,
                            text=chunk.text,
                            size=chunk.size,
                            oversized=chunk.oversized,
                        )
                        for chunk in chunks
                    )
                    session.add_all(
                        PageWarningRow(document_id=document_id, page_index=warning.page_index, message=warning.message)
                        for warning in warnings
                    )
            return self.get_document(document_id)

    def mark_failed(
        self,
        document_id: str,
        error: str,
        *,
        document_format: Optional[DocumentFormat] = None,
    ) -> Document:
        with self._write_lock, self._session() as session:
            with session.begin():
                row = self._document_row(session, document_id)
                if row.status == DocumentStatus.PENDING.value:
                    row.status = DocumentStatus.FAILED.value
                    row.error = error
                    row.format = document_format.value if document_format else None
            return self.get_document(document_id)

    def list_pages(self, document_id: str) -> List[Page]:
        with self._session() as session:
            self._document_row(session, document_id)
            rows = session.scalars(
                select(PageRow).where(PageRow.document_id == document_id).order_by(PageRow.index)
            ).all()
            return [
                Page(
                    document_id=row.document_id,
                    index=row.index,
                    text=row.text,
                    char_offset=row.char_offset,
                    byte_start=row.byte_start,
                    byte_end=row.byte_end,
                )
                for row in rows
            ]

    def list_chunks(self, document_id: str) -> List[Chunk]:
        with self._session() as session:
            self._document_row(session, document_id)
            rows = session.scalars(
                select(ChunkRow).where(ChunkRow.document_id == document_id).order_by(ChunkRow.chunk_index)
            ).all()
            return [_to_chunk(row) for row in rows]

    def get_chunk(self, chunk_id: str) -> Chunk:
        with self._session() as session:
            row = session.get(ChunkRow, chunk_id)
            if row is None:
                raise RecordNotFound(f"Unknown chunk {chunk_id}", chunk_id=chunk_id)
            return _to_chunk(row)

    # Chat ----------------------------------------------------------------

    def append_messages(
        self,
        document_id: str,
        drafts: Sequence[MessageDraft],
        created_at: datetime,
    ) -> List[ChatMessage]:
        message_ids: List[str] = []
        with self._write_lock, self._session() as session:
            with session.begin():
                self._document_row(session, document_id)
                for draft in drafts:
                    for citation in draft.citations:
                        if session.get(ChunkRow, citation.chunk_id) is None:
                            raise RecordNotFound(
                                f"Unknown chunk {citation.chunk_id}", chunk_id=citation.chunk_id
                            )
                last = session.scalar(
                    select(func.max(ChatMessageRow.sequence)).where(ChatMessageRow.document_id == document_id)
                )
                for offset, draft in enumerate(drafts, start=1):
                    row = ChatMessageRow(
                        id=new_id(),
                        document_id=document_id,
                        sequence=(last or 0) + offset,
                        role=draft.role.value,
                        content=draft.content,
                        created_at=created_at,
                    )
                    session.add(row)
                    session.add_all(
                        MessageCitationRow(message_id=row.id, position=position, chunk_id=citation.chunk_id)
                        for position, citation in enumerate(draft.citations)
                    )
                    message_ids.append(row.id)
        return [self.get_message(message_id) for message_id in message_ids]

    def list_messages(self, document_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        with self._session() as session:
            self._document_row(session, document_id)
            statement = (
                select(ChatMessageRow)
                .where(ChatMessageRow.document_id == document_id)
                .order_by(ChatMessageRow.sequence.desc())
            )
            if limit is not None:
                statement = statement.limit(max(limit, 0))
            rows = session.scalars(statement).all()
            return [_to_message(row) for row in reversed(rows)]

    def get_message(self, message_id: str) -> ChatMessage:
        with self._session() as session:
            row = session.get(ChatMessageRow, message_id)
            if row is None:
                raise RecordNotFound(f"Unknown chat message {message_id}")
            return _to_message(row)

    # Reports -------------------------------------------------------------

    def create_report(self, report: Report) -> Report:
        with self._session() as session, session.begin():
            session.add(ReportRow(id=report.id, title=report.title, created_at=report.created_at))
        return report

    def get_report(self, report_id: str) -> Report:
        with self._session() as session:
            row = session.get(ReportRow, report_id)
            if row is None:
                raise RecordNotFound(f"Unknown report {report_id}")
            return _to_report(row)

    def append_report_item(self, report_id: str, source: SourceReference, document_id: str) -> Report:
        with self._write_lock, self._session() as session:
            with session.begin():
                if session.get(ReportRow, report_id) is None:
                    raise RecordNotFound(f"Unknown report {report_id}")
                count = session.scalar(
                    select(func.count()).select_from(ReportItemRow).where(ReportItemRow.report_id == report_id)
                )
                session.add(
                    ReportItemRow(
                        report_id=report_id,
                        position=count or 0,
                        source_kind=source.kind.value,
                        source_id=source.id,
                        document_id=document_id,
                    )
                )
        return self.get_report(report_id)
