"""Translation of pipeline errors into HTTP responses."""
from __future__ import annotations

from fastapi import HTTPException

from ..errors import (
    AuthFailure,
    Busy,
    CorruptDocument,
    DocumentInsightError,
    DocumentNotReady,
    EmptyInput,
    EmptyQuestion,
    InvalidReference,
    PermanentBackendError,
    QueryTimeout,
    RecordNotFound,
    UnsupportedFormat,
)

_STATUS_CODES: tuple[tuple[type[DocumentInsightError], int], ...] = (
    (EmptyInput, 415),
    (UnsupportedFormat, 415),
    (CorruptDocument, 422),
    (EmptyQuestion, 422),
    (RecordNotFound, 404),
    (Busy, 409),
    (DocumentNotReady, 409),
    (InvalidReference, 400),
    (QueryTimeout, 504),
    (AuthFailure, 502),
    (PermanentBackendError, 502),
)


def status_code_for(error: DocumentInsightError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def http_error(error: DocumentInsightError) -> HTTPException:
    """Build an ``HTTPException`` whose detail carries the error context."""

    return HTTPException(status_code=status_code_for(error), detail=error.context())
