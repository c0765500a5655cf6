"""API router for composing and compiling reports."""
from __future__ import annotations

import hashlib
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field

from ..errors import DocumentInsightError
from ..models import Report, SourceKind, SourceReference
from ..services.insight import InsightService, get_insight_service
from .errors import http_error

router = APIRouter(prefix="/reports", tags=["reports"])

ARTIFACT_MEDIA_TYPE = "text/markdown; charset=utf-8"


class CreateReportRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=512)


class AddItemRequest(BaseModel):
    """Reference to a chat message or chunk to append to the report."""

    kind: SourceKind
    id: str = Field(..., min_length=1)


class ReportItemOut(BaseModel):
    position: int
    kind: str
    id: str
    document_id: str


class ReportOut(BaseModel):
    id: str
    title: str
    created_at: datetime
    items: list[ReportItemOut]


def serialise_report(report: Report) -> ReportOut:
    return ReportOut(
        id=report.id,
        title=report.title,
        created_at=report.created_at,
        items=[
            ReportItemOut(
                position=item.position,
                kind=item.source.kind.value,
                id=item.source.id,
                document_id=item.document_id,
            )
            for item in report.items
        ],
    )


@router.post("", response_model=ReportOut, status_code=201)
def create_report(
    request: CreateReportRequest,
    service: InsightService = Depends(get_insight_service),
) -> ReportOut:
    try:
        report = service.create_report(request.title)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return serialise_report(report)


@router.get("/{report_id}", response_model=ReportOut)
def get_report(report_id: str, service: InsightService = Depends(get_insight_service)) -> ReportOut:
    try:
        return serialise_report(service.get_report(report_id))
    except DocumentInsightError as exc:
        raise http_error(exc) from exc


@router.post("/{report_id}/items", response_model=ReportOut)
def add_item(
    report_id: str,
    request: AddItemRequest,
    service: InsightService = Depends(get_insight_service),
) -> ReportOut:
    """Append a chat message or chunk to the end of the report."""

    try:
        report = service.add_item(report_id, SourceReference(kind=request.kind, id=request.id))
    except DocumentInsightError as exc:
        raise http_error(exc) from exc
    return serialise_report(report)


@router.get("/{report_id}/artifact")
def get_artifact(
    report_id: str,
    request: Request,
    service: InsightService = Depends(get_insight_service),
) -> Response:
    """Return the compiled Markdown report; the ETag is the SHA-256 of its bytes."""

    try:
        artifact = service.compile_report(report_id)
    except DocumentInsightError as exc:
        raise http_error(exc) from exc

    etag = f'"{hashlib.sha256(artifact).hexdigest()}"'
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers={"ETag": etag})
    return Response(content=artifact, media_type=ARTIFACT_MEDIA_TYPE, headers={"ETag": etag})
