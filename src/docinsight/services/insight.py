"""Service facade used by the HTTP layer."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..ai.backends import AIBackend, GeminiBackend, MockAIBackend
from ..ai.credentials import CredentialCache, CredentialProvider, GoogleAuthProvider, StaticTokenProvider
from ..ai.engine import AIQueryEngine
from ..ai.prompt import PromptBudget, PromptBuilder, policy_for
from ..ai.retry import RetryPolicy
from ..chat import ChatStore
from ..config import Settings
from ..errors import DocumentInsightError, EmptyQuestion
from ..ingest.pipeline import IngestPipeline
from ..ingest.segmentation import Boundary, Segmenter, SegmenterConfig, SizeUnit
from ..logging_config import get_audit_logger
from ..models import ChatMessage, Chunk, Document, Page, Report, SourceReference
from ..reports import ReportCompiler
from ..store import create_repository
from ..store.base import Repository
from ..telemetry import emit_exception

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AskResult:
    """Persisted question and answer of one successful ``ask``."""

    question: ChatMessage
    answer: ChatMessage
    attempts: int


class InsightService:
    """Wire ingestion, questions, chat history and reports over one repository."""

    def __init__(
        self,
        repository: Repository,
        engine: AIQueryEngine,
        pipeline: Optional[IngestPipeline] = None,
        history_limit: int = 10,
    ) -> None:
        self.repository = repository
        self.engine = engine
        self.pipeline = pipeline or IngestPipeline(repository)
        self.chat = ChatStore(repository)
        self.reports = ReportCompiler(repository)
        self.history_limit = history_limit

    @classmethod
    def from_settings(cls, settings: Settings) -> "InsightService":
        repository = create_repository(settings.database_url)
        segmenter = Segmenter(
            SegmenterConfig(
                max_units=settings.chunk_max_units,
                unit=SizeUnit(settings.chunk_unit),
                boundary=Boundary(settings.chunk_boundary),
            )
        )
        backend: AIBackend
        provider: CredentialProvider
        if settings.ai_backend == "gemini":
            backend = GeminiBackend(
                model=settings.gemini_model,
                base_url=settings.gemini_base_url,
                timeout=settings.ai_attempt_timeout,
            )
            if settings.ai_auth == "google":
                provider = GoogleAuthProvider()
            else:
                provider = StaticTokenProvider(settings.gemini_api_key or "")
        else:
            backend = MockAIBackend()
            provider = StaticTokenProvider("mock-key")

        engine = AIQueryEngine(
            backend,
            CredentialCache(provider),
            prompt_builder=PromptBuilder(
                PromptBudget(
                    max_chunks=settings.prompt_max_chunks,
                    max_context_words=settings.prompt_max_context_words,
                    max_history_turns=settings.prompt_max_history_turns,
                    max_history_words=settings.prompt_max_history_words,
                ),
                policy_for(settings.prompt_chunk_policy),
            ),
            retry_policy=RetryPolicy(
                max_attempts=settings.ai_max_attempts,
                backoff_base=settings.ai_backoff_base,
                backoff_max=settings.ai_backoff_max,
            ),
            attempt_timeout=settings.ai_attempt_timeout,
            max_concurrency=settings.ai_max_concurrency,
        )
        LOGGER.info(
            "Insight service ready (backend=%s, store=%s)",
            backend.name,
            "sql" if settings.database_url else "memory",
        )
        return cls(
            repository,
            engine,
            IngestPipeline(repository, segmenter=segmenter),
            history_limit=settings.prompt_max_history_turns,
        )

    # Documents -----------------------------------------------------------

    async def upload(self, data: bytes, title: str) -> Document:
        """Ingest an upload; extraction runs in a worker thread."""

        try:
            document = await asyncio.to_thread(self.pipeline.ingest, data, title)
        except DocumentInsightError as error:
            emit_exception(module=__name__, error=error, document_id=error.document_id)
            raise
        get_audit_logger().info(
            {
                "event": "document.uploaded",
                "document_id": document.id,
                "title": document.title,
                "pages": document.page_count,
                "format": document.format.value if document.format else None,
            }
        )
        return document

    def get_document(self, document_id: str) -> Document:
        return self.repository.get_document(document_id)

    def list_documents(self) -> List[Document]:
        return self.repository.list_documents()

    def list_pages(self, document_id: str) -> List[Page]:
        return self.repository.list_pages(document_id)

    def list_chunks(self, document_id: str) -> List[Chunk]:
        return self.repository.list_chunks(document_id)

    # Questions -----------------------------------------------------------

    async def ask(self, document_id: str, question: str, *, deadline: Optional[float] = None) -> AskResult:
        """Answer ``question`` and append both turns; nothing is stored on failure."""

        if not question.strip():
            raise EmptyQuestion("Question must not be empty", document_id=document_id)
        document = self.repository.get_document(document_id)
        chunks = await asyncio.to_thread(self.repository.list_chunks, document_id)
        history = await self.chat.history(document_id, self.history_limit)
        answer = await self.engine.ask(document, question, chunks, history, deadline=deadline)
        user, reply = await self.chat.append_exchange(document_id, question, answer.text, answer.citations)
        return AskResult(question=user, answer=reply, attempts=answer.attempts)

    async def history(self, document_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        return await self.chat.history(document_id, limit)

    # Reports -------------------------------------------------------------

    def create_report(self, title: str) -> Report:
        return self.reports.create(title)

    def get_report(self, report_id: str) -> Report:
        return self.repository.get_report(report_id)

    def add_item(self, report_id: str, source: SourceReference) -> Report:
        return self.reports.add_item(report_id, source)

    def compile_report(self, report_id: str) -> bytes:
        return self.reports.compile(report_id)

    async def aclose(self) -> None:
        await self.engine.backend.aclose()


_insight_service: Optional[InsightService] = None


def get_insight_service() -> InsightService:
    """FastAPI dependency returning the shared :class:`InsightService` instance."""

    global _insight_service
    if _insight_service is None:
        _insight_service = InsightService.from_settings(Settings.from_env())
    return _insight_service
