"""Report assembly from selected chat messages and chunks."""
from __future__ import annotations

import logging
from typing import List

from .errors import InvalidReference, RecordNotFound
from .logging_config import get_audit_logger
from .models import InsightItem, Report, Role, SourceKind, SourceReference, new_id
from .store.base import Repository
from .telemetry import emit_report_event

LOGGER = logging.getLogger(__name__)


class ReportCompiler:
    """Add insight items to reports and render them as Markdown.

    The artifact is a pure function of the report's ordered items: a title
    header followed by one self-contained block per item. It carries no
    timestamps or totals, so appending an item only appends a block.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    def create(self, title: str) -> Report:
        title = title.strip()
        if not title:
            raise ValueError("Report title must not be empty")
        report = self.repository.create_report(Report(id=new_id(), title=title))
        emit_report_event("report.created", report_id=report.id, items=0)
        return report

    def add_item(self, report_id: str, source: SourceReference) -> Report:
        self.repository.get_report(report_id)
        document_id = self._resolve_document(source)
        report = self.repository.append_report_item(report_id, source, document_id)
        emit_report_event("report.item.added", report_id=report_id, items=len(report.items))
        return report

    def compile(self, report_id: str) -> bytes:
        report = self.repository.get_report(report_id)
        artifact = self.render(report)
        emit_report_event("report.compile", report_id=report_id, items=len(report.items), size_bytes=len(artifact))
        get_audit_logger().info(
            {"event": "report.compiled", "report_id": report_id, "items": len(report.items), "bytes": len(artifact)}
        )
        return artifact

    def render(self, report: Report) -> bytes:
        blocks: List[str] = [f"# {report.title}\n\n"]
        blocks.extend(self._render_item(item) for item in report.items)
        return "".join(blocks).encode("utf-8")

    def _resolve_document(self, source: SourceReference) -> str:
        try:
            if source.kind is SourceKind.MESSAGE:
                return self.repository.get_message(source.id).document_id
            return self.repository.get_chunk(source.id).document_id
        except RecordNotFound as error:
            raise InvalidReference(
                f"No {source.kind.value} with id {source.id}",
                chunk_id=source.id if source.kind is SourceKind.CHUNK else None,
                cause=error,
            ) from error

    def _render_item(self, item: InsightItem) -> str:
        document = self.repository.get_document(item.document_id)
        number = item.position + 1
        if item.source.kind is SourceKind.MESSAGE:
            message = self.repository.get_message(item.source.id)
            heading = "Answer" if message.role is Role.AI else "Question"
            lines = [
                f"## {number}. {heading}",
                "",
                message.content.strip(),
                "",
                f"> Source: {document.title} (document {document.id}), chat message #{message.sequence}",
            ]
            lines.extend(
                f"> Cited: page {citation.page_index + 1}, chunk {citation.chunk_index}"
                for citation in message.citations
            )
        else:
            chunk = self.repository.get_chunk(item.source.id)
            lines = [
                f"## {number}. Excerpt",
                "",
                chunk.text.strip(),
                "",
                f"> Source: {document.title} (document {document.id}), page {chunk.page_index + 1}, chunk {chunk.index}",
            ]
        return "\n".join(lines) + "\n\n"
