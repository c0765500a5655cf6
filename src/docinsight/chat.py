"""Append-only per-document conversation log."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

from .models import ChatMessage, ChunkRef, MessageDraft, Role, utcnow
from .store.base import Repository

LOGGER = logging.getLogger(__name__)


class ChatStore:
    """Conversation access on top of a repository.

    Sequence numbers are assigned by the repository inside the write that
    stores the message, under its own lock or transaction, so concurrent
    appends to one document stay gap-free without extra locking here.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    async def append(
        self,
        document_id: str,
        role: Role,
        content: str,
        citations: Sequence[ChunkRef] = (),
    ) -> ChatMessage:
        message = await asyncio.to_thread(
            self.repository.append_message,
            document_id,
            role,
            content,
            tuple(citations),
            utcnow(),
        )
        LOGGER.debug("Appended %s message %s to document %s", role.value, message.sequence, document_id)
        return message

    async def history(self, document_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        """Most recent ``limit`` messages (all when ``None``) in ascending order."""

        return await asyncio.to_thread(self.repository.list_messages, document_id, limit)

    async def append_exchange(
        self,
        document_id: str,
        question: str,
        answer: str,
        citations: Sequence[ChunkRef] = (),
    ) -> Tuple[ChatMessage, ChatMessage]:
        """Append a question and its answer in one write; either both are stored or neither."""

        drafts = [
            MessageDraft(role=Role.USER, content=question),
            MessageDraft(role=Role.AI, content=answer, citations=tuple(citations)),
        ]
        user, reply = await asyncio.to_thread(
            self.repository.append_messages, document_id, drafts, utcnow()
        )
        LOGGER.debug("Appended exchange %s-%s to document %s", user.sequence, reply.sequence, document_id)
        return user, reply
