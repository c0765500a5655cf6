"""Structured lifecycle events for ingestion, queries and reports."""

from __future__ import annotations

import logging
import traceback
from typing import Any, Iterable, Optional

LOGGER = logging.getLogger("docinsight.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    document_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event as a dict record."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if req_id:
        event["req_id"] = req_id
    if document_id:
        event["document_id"] = document_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_ingest_event(
    step: str,
    *,
    document_id: str,
    title: str,
    size_bytes: int | None = None,
    document_format: str | None = None,
    pages: int | None = None,
    chunks: int | None = None,
    warnings: int | None = None,
    language: str | None = None,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "title": title,
        "size_bytes": size_bytes,
        "format": document_format,
        "pages": pages,
        "chunks": chunks,
        "warnings": warnings,
        "language": language,
    }
    level = "error" if error else "info"
    log_event(
        LOGGER,
        step,
        level=level,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_page_warning(*, document_id: str, page_index: int, message: str) -> None:
    log_event(
        LOGGER,
        "ingest.page.warning",
        level="warning",
        document_id=document_id,
        details={"page_index": page_index, "message": message},
    )


def emit_query_attempt(
    *,
    req_id: str,
    document_id: str,
    attempt: int,
    outcome: str,
    duration_ms: float,
    error: BaseException | None = None,
) -> None:
    details = {"attempt": attempt, "outcome": outcome}
    if error is not None:
        details["error"] = f"{type(error).__name__}: {error}"
    level = "info" if outcome == "success" else "warning"
    log_event(
        LOGGER,
        "query.attempt",
        level=level,
        req_id=req_id,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
    )


def emit_retry_event(*, req_id: str, document_id: str, attempt: int, delay: float) -> None:
    log_event(
        LOGGER,
        "query.retry",
        req_id=req_id,
        document_id=document_id,
        details={"next_attempt": attempt + 1, "delay_seconds": round(delay, 3)},
    )


def emit_query_result(
    *,
    req_id: str,
    document_id: str,
    attempts: int,
    duration_ms: float,
    answer_preview: str | None,
    sources: Iterable[str],
    error: BaseException | None = None,
) -> None:
    details = {
        "attempts": attempts,
        "answer_preview": (answer_preview or "")[:120],
        "sources": list(sources),
    }
    level = "error" if error else "info"
    log_event(
        LOGGER,
        "query.result",
        level=level,
        req_id=req_id,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_credential_refresh(*, reason: str, expires_at: float | None) -> None:
    log_event(LOGGER, "credential.refresh", details={"reason": reason, "expires_at": expires_at})


def emit_report_event(step: str, *, report_id: str, items: int, size_bytes: int | None = None) -> None:
    log_event(LOGGER, step, details={"report_id": report_id, "items": items, "size_bytes": size_bytes})


def emit_exception(
    *,
    module: str,
    error: BaseException,
    req_id: str | None = None,
    document_id: str | None = None,
) -> None:
    log_event(
        LOGGER,
        "exception",
        level="error",
        req_id=req_id,
        document_id=document_id,
        details={"module": module},
        exc=error,
    )


__all__ = [
    "emit_credential_refresh",
    "emit_exception",
    "emit_ingest_event",
    "emit_page_warning",
    "emit_query_attempt",
    "emit_query_result",
    "emit_report_event",
    "emit_retry_event",
    "log_event",
]
