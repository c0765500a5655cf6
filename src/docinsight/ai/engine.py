"""AI query engine: one bounded, retried backend call per question."""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Optional, Sequence, Set, Tuple

from ..errors import (
    AuthFailure,
    Busy,
    DocumentNotReady,
    EmptyQuestion,
    PermanentBackendError,
    QueryError,
    QueryTimeout,
)
from ..logging_config import get_audit_logger
from ..models import ChatMessage, Chunk, ChunkRef, Document, DocumentStatus, new_id
from ..telemetry import emit_query_attempt, emit_query_result, emit_retry_event
from .backends import AIBackend
from .credentials import Credential, CredentialCache
from .prompt import BuiltPrompt, PromptBuilder
from .retry import AttemptOutcome, AttemptResult, RetryPolicy

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Answer:
    text: str
    citations: Tuple[ChunkRef, ...]
    attempts: int


class DocumentBusyRegistry:
    """Tracks documents with a question in flight.

    Claims are taken and released without awaiting, so within one event loop
    the check-and-set cannot interleave with another task.
    """

    def __init__(self) -> None:
        self._active: Set[str] = set()

    def is_busy(self, document_id: str) -> bool:
        return document_id in self._active

    @contextmanager
    def claim(self, document_id: str) -> Iterator[None]:
        if document_id in self._active:
            raise Busy(
                f"Document {document_id} is already answering a question",
                document_id=document_id,
            )
        self._active.add(document_id)
        try:
            yield
        finally:
            self._active.discard(document_id)


@dataclass(slots=True)
class _CallState:
    attempts: int = 0


class AIQueryEngine:
    """Answer questions about an extracted document.

    Concurrency: one in-flight question per document (a second one fails
    fast with :class:`Busy`) and at most ``max_concurrency`` backend attempts
    process wide. The global slot is held only while an attempt runs, never
    during backoff.
    """

    def __init__(
        self,
        backend: AIBackend,
        credentials: CredentialCache,
        *,
        prompt_builder: Optional[PromptBuilder] = None,
        retry_policy: Optional[RetryPolicy] = None,
        attempt_timeout: float = 30.0,
        max_concurrency: int = 4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.credentials = credentials
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.retry_policy = retry_policy or RetryPolicy()
        self.attempt_timeout = attempt_timeout
        self.busy = DocumentBusyRegistry()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._sleep = sleep

    async def ask(
        self,
        document: Document,
        question: str,
        chunks: Sequence[Chunk],
        history: Sequence[ChatMessage] = (),
        *,
        deadline: Optional[float] = None,
        req_id: Optional[str] = None,
    ) -> Answer:
        """Return the backend's answer and the chunks it was given.

        ``deadline`` bounds the whole call, backoff included. Nothing is
        persisted here.
        """

        if document.status is not DocumentStatus.EXTRACTED:
            raise DocumentNotReady(
                f"Document {document.id} is {document.status.value}, not extracted",
                document_id=document.id,
            )

        if not question.strip():
            raise EmptyQuestion("Question must not be empty", document_id=document.id)

        req_id = req_id or new_id()
        with self.busy.claim(document.id):
            prompt = self.prompt_builder.build(
                question,
                chunks,
                history,
                title=document.title,
                language=document.language,
            )
            state = _CallState()
            start = time.perf_counter()
            try:
                if deadline is None:
                    text = await self._run(prompt, document.id, req_id, state)
                else:
                    text = await asyncio.wait_for(
                        self._run(prompt, document.id, req_id, state), timeout=deadline
                    )
            except asyncio.TimeoutError as error:
                timeout = QueryTimeout(
                    f"Question exceeded its {deadline}s deadline",
                    document_id=document.id,
                    attempts=state.attempts,
                    cause=error,
                )
                self._report(req_id, document.id, state, start, prompt, error=timeout)
                raise timeout from error
            except QueryError as error:
                self._report(req_id, document.id, state, start, prompt, error=error)
                raise

            self._report(req_id, document.id, state, start, prompt, answer=text)
            get_audit_logger().info(
                {
                    "event": "question.answered",
                    "req_id": req_id,
                    "document_id": document.id,
                    "attempts": state.attempts,
                    "chunks": [chunk.id for chunk in prompt.chunks],
                }
            )
            return Answer(
                text=text,
                citations=tuple(chunk.ref for chunk in prompt.chunks),
                attempts=state.attempts,
            )

    async def _run(self, prompt: BuiltPrompt, document_id: str, req_id: str, state: _CallState) -> str:
        credential = await self.credentials.get()
        refreshed = False
        while True:
            state.attempts += 1
            attempt = state.attempts
            started = time.perf_counter()
            result = await self._attempt(prompt.text, credential)
            emit_query_attempt(
                req_id=req_id,
                document_id=document_id,
                attempt=attempt,
                outcome=result.outcome.value,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=result.error,
            )

            if result.outcome is AttemptOutcome.SUCCESS:
                return result.text or ""

            if result.outcome is AttemptOutcome.AUTH:
                if refreshed:
                    raise AuthFailure(
                        "Backend rejected the refreshed credential",
                        document_id=document_id,
                        attempts=attempt,
                        cause=result.error,
                    )
                refreshed = True
                credential = await self.credentials.refresh(credential)
                continue

            if result.outcome is AttemptOutcome.PERMANENT:
                raise PermanentBackendError(
                    f"Backend failed permanently: {result.error}",
                    document_id=document_id,
                    attempts=attempt,
                    cause=result.error,
                )

            if not self.retry_policy.should_retry(result, attempt):
                raise PermanentBackendError(
                    f"Backend still failing after {attempt} attempts: {result.error}",
                    document_id=document_id,
                    attempts=attempt,
                    cause=result.error,
                )
            delay = self.retry_policy.delay(attempt, result.retry_after)
            emit_retry_event(req_id=req_id, document_id=document_id, attempt=attempt, delay=delay)
            await self._sleep(delay)

    async def _attempt(self, prompt: str, credential: Credential) -> AttemptResult:
        async with self._semaphore:
            try:
                text = await asyncio.wait_for(
                    self.backend.complete(prompt, credential), timeout=self.attempt_timeout
                )
            except Exception as error:
                return AttemptResult.from_error(error)
        return AttemptResult.success(text)

    @staticmethod
    def _report(
        req_id: str,
        document_id: str,
        state: _CallState,
        start: float,
        prompt: BuiltPrompt,
        *,
        answer: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        emit_query_result(
            req_id=req_id,
            document_id=document_id,
            attempts=state.attempts,
            duration_ms=(time.perf_counter() - start) * 1000.0,
            answer_preview=answer,
            sources=[chunk.id for chunk in prompt.chunks],
            error=error,
        )
