"""Error taxonomy shared by the ingestion, query and report layers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class DocumentInsightError(RuntimeError):
    """Base class for failures surfaced to the presentation layer.

    Every error carries the identifiers needed to explain it (document, page,
    chunk, attempt count) so callers never have to re-derive them.
    """

    def __init__(
        self,
        message: str,
        *,
        document_id: str | None = None,
        page_index: int | None = None,
        chunk_id: str | None = None,
        attempts: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.document_id = document_id
        self.page_index = page_index
        self.chunk_id = chunk_id
        self.attempts = attempts
        if cause is not None:
            self.__cause__ = cause

    def context(self) -> dict[str, Any]:
        """Return the non-empty context fields as a plain dictionary."""

        fields = {
            "error": type(self).__name__,
            "message": self.message,
            "document_id": self.document_id,
            "page_index": self.page_index,
            "chunk_id": self.chunk_id,
            "attempts": self.attempts,
        }
        return {key: value for key, value in fields.items() if value is not None}


class ConfigurationError(DocumentInsightError):
    """Raised when settings are missing or malformed."""


class RecordNotFound(DocumentInsightError):
    """Raised when a document, report, message or chunk id is unknown."""


# Ingestion ---------------------------------------------------------------


class IngestionError(DocumentInsightError):
    """Base class for failures that abort a document's extraction."""


class EmptyInput(IngestionError):
    """The uploaded byte buffer is empty."""


class UnsupportedFormat(IngestionError):
    """No supported document signature matched the uploaded bytes."""


class CorruptDocument(IngestionError):
    """The container's structural index cannot be parsed."""


@dataclass(frozen=True, slots=True)
class PageExtractionWarning:
    """Non-fatal record of a page whose content could not be read."""

    page_index: int
    message: str


# Query -------------------------------------------------------------------


class QueryError(DocumentInsightError):
    """Base class for AI query failures."""


class EmptyQuestion(QueryError):
    """The question is empty or only whitespace."""


class DocumentNotReady(QueryError):
    """The document has not been successfully extracted."""


class Busy(QueryError):
    """Another question against the same document is still in flight."""


class AuthFailure(QueryError):
    """The backend rejected the credential even after a refresh."""


class TransientBackendError(QueryError):
    """Retryable backend failure (timeout, 5xx, rate limit)."""

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class PermanentBackendError(QueryError):
    """Non-retryable backend failure, or transient failures past the attempt ceiling."""


class QueryTimeout(QueryError):
    """An attempt or the caller's deadline ran out."""


# Reports -----------------------------------------------------------------


class InvalidReference(DocumentInsightError):
    """A report item points to a chat message or chunk that does not exist."""


__all__ = [
    "AuthFailure",
    "Busy",
    "ConfigurationError",
    "CorruptDocument",
    "DocumentInsightError",
    "DocumentNotReady",
    "EmptyInput",
    "EmptyQuestion",
    "IngestionError",
    "InvalidReference",
    "PageExtractionWarning",
    "PermanentBackendError",
    "QueryError",
    "QueryTimeout",
    "RecordNotFound",
    "TransientBackendError",
    "UnsupportedFormat",
]
