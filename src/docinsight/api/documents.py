"""API router for document upload, pages, chunks and questions."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from ..errors import DocumentInsightError
from ..models import ChatMessage, ChunkRef, Document
from ..services.insight import InsightService, get_insight_service
from .errors import http_error

router = APIRouter(prefix="/documents", tags=["documents"])


class PageWarningOut(BaseModel):
    page_index: int
    message: str


class DocumentOut(BaseModel):
    """Document metadata returned by every document endpoint."""

    id: str
    title: str
    byte_length: int
    status: str
    format: Optional[str]
    language: Optional[str]
    page_count: int
    error: Optional[str]
    warnings: list[PageWarningOut]
    created_at: datetime


class PageOut(BaseModel):
    index: int
    text: str
    char_offset: int
    byte_start: Optional[int]
    byte_end: Optional[int]


class ChunkOut(BaseModel):
    id: str
    page_index: int
    index: int
    start: int
    end: int
    text: str
    size: int
    oversized: bool


class CitationOut(BaseModel):
    chunk_id: str
    document_id: str
    page_index: int
    chunk_index: int


class MessageOut(BaseModel):
    id: str
    document_id: str
    sequence: int
    role: str
    content: str
    created_at: datetime
    citations: list[CitationOut]


class AskRequest(BaseModel):
    """Request body accepted by the ask endpoint."""

    question: str = Field(..., min_length=1, description="Question about the document.")
    deadline_seconds: float | None = Field(
        None,
        gt=0,
        le=600,
        description="Upper bound for the whole call, retries included.",
    )


class AskResponse(BaseModel):
    question: MessageOut
    answer: MessageOut
    attempts: int


def serialise_document(document: Document) -> DocumentOut:
    return DocumentOut(
        id=document.id,
        title=document.title,
        byte_length=document.byte_length,
        status=document.status.value,
        format=document.format.value if document.format else None,
        language=document.language,
        page_count=document.page_count,
        error=document.error,
        warnings=[PageWarningOut(page_index=w.page_index, message=w.message) for w in document.warnings],
        created_at=document.created_at,
    )


def _serialise_citation(citation: ChunkRef) -> CitationOut:
    return CitationOut(
        chunk_id=citation.chunk_id,
        document_id=citation.document_id,
        page_index=citation.page_index,
        chunk_index=citation.chunk_index,
    )


def serialise_message(message: ChatMessage) -> MessageOut:
    return MessageOut(
        id=message.id,
        document_id=message.document_id,
        sequence=message.sequence,
        role=message.role.value,
        content=message.content,
        created_at=message.created_at,
        citations=[_serialise_citation(citation) for citation in message.citations],
    )


@router.post("", response_model=DocumentOut, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    title: str | None = Form(None),
    service: InsightService = Depends(get_insight_service),
) -> DocumentOut:
    """Upload a PDF or DOCX file and extract it."""

    data = await file.read()
    document_title = (title or file.filename or "untitled").strip() or "untitled"
    try:
        document = await service.upload(data, document_title)
    except DocumentInsightError as exc:
        raise http_error(exc) from exc
    return serialise_document(document)


@router.get("", response_model=list[DocumentOut])
def list_documents(service: InsightService = Depends(get_insight_service)) -> list[DocumentOut]:
    return [serialise_document(document) for document in service.list_documents()]


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(document_id: str, service: InsightService = Depends(get_insight_service)) -> DocumentOut:
    try:
        return serialise_document(service.get_document(document_id))
    except DocumentInsightError as exc:
        raise http_error(exc) from exc


@router.get("/{document_id}/pages", response_model=list[PageOut])
def list_pages(document_id: str, service: InsightService = Depends(get_insight_service)) -> list[PageOut]:
    try:
        pages = service.list_pages(document_id)
    except DocumentInsightError as exc:
        raise http_error(exc) from exc
    return [
        PageOut(
            index=page.index,
            text=page.text,
            char_offset=page.char_offset,
            byte_start=page.byte_start,
            byte_end=page.byte_end,
        )
        for page in pages
    ]


@router.get("/{document_id}/chunks", response_model=list[ChunkOut])
def list_chunks(document_id: str, service: InsightService = Depends(get_insight_service)) -> list[ChunkOut]:
    try:
        chunks = service.list_chunks(document_id)
    except DocumentInsightError as exc:
        raise http_error(exc) from exc
    return [
        ChunkOut(
            id=chunk.id,
            page_index=chunk.page_index,
            index=chunk.index,
            start=chunk.start,
            end=chunk.end,
            text=chunk.text,
            size=chunk.size,
            oversized=chunk.oversized,
        )
        for chunk in chunks
    ]


@router.post("/{document_id}/ask", response_model=AskResponse)
async def ask_question(
    document_id: str,
    request: AskRequest,
    service: InsightService = Depends(get_insight_service),
) -> AskResponse:
    """Ask a question about an extracted document."""

    if not request.question.strip():
        raise HTTPException(status_code=422, detail="Question must not be empty")

    try:
        result = await service.ask(document_id, request.question, deadline=request.deadline_seconds)
    except DocumentInsightError as exc:
        raise http_error(exc) from exc
    return AskResponse(
        question=serialise_message(result.question),
        answer=serialise_message(result.answer),
        attempts=result.attempts,
    )


@router.get("/{document_id}/messages", response_model=list[MessageOut])
async def list_messages(
    document_id: str,
    limit: int | None = Query(None, ge=1, le=1000),
    service: InsightService = Depends(get_insight_service),
) -> list[MessageOut]:
    try:
        messages = await service.history(document_id, limit)
    except DocumentInsightError as exc:
        raise http_error(exc) from exc
    return [serialise_message(message) for message in messages]
