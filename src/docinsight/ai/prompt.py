"""Bounded prompt construction for document questions."""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..ingest.segmentation import SizeUnit, measure
from ..models import ChatMessage, Chunk, Role

_PROMPT_DIR = Path(__file__).resolve().parents[1] / "prompts"
_TERM_RE = re.compile(r"\w+")


def _load_template(path: Path) -> str:
    """Read and trim the contents of a template file."""
    return path.read_text(encoding="utf-8").strip()


_SYSTEM_TEXT = _load_template(_PROMPT_DIR / "system.txt")
_USER_TEMPLATE = _load_template(_PROMPT_DIR / "user.md")


def _terms(text: str) -> set[str]:
    return {term.casefold() for term in _TERM_RE.findall(text) if len(term) > 1}


class ChunkSelectionPolicy(ABC):
    """Deterministic ordering of candidate chunks for a question."""

    @abstractmethod
    def rank(self, question: str, chunks: Sequence[Chunk]) -> List[Chunk]:
        ...


class LeadingChunksPolicy(ChunkSelectionPolicy):
    """Prefer chunks in document order."""

    def rank(self, question: str, chunks: Sequence[Chunk]) -> List[Chunk]:
        return sorted(chunks, key=lambda chunk: chunk.index)


class KeywordOverlapPolicy(ChunkSelectionPolicy):
    """Prefer chunks sharing the most distinct words with the question; ties keep document order."""

    def rank(self, question: str, chunks: Sequence[Chunk]) -> List[Chunk]:
        question_terms = _terms(question)
        return sorted(
            chunks,
            key=lambda chunk: (-len(question_terms & _terms(chunk.text)), chunk.index),
        )


def policy_for(name: str) -> ChunkSelectionPolicy:
    if name == "leading":
        return LeadingChunksPolicy()
    if name == "keyword":
        return KeywordOverlapPolicy()
    raise ValueError(f"Unknown chunk selection policy: {name}")


@dataclass(slots=True)
class PromptBudget:
    max_chunks: int = 6
    max_context_words: int = 1500
    max_history_turns: int = 10
    max_history_words: int = 800


@dataclass(frozen=True, slots=True)
class BuiltPrompt:
    text: str
    chunks: Tuple[Chunk, ...]
    history: Tuple[ChatMessage, ...]


class PromptBuilder:
    """Compose the system text, selected excerpts, recent turns and the question."""

    def __init__(
        self,
        budget: Optional[PromptBudget] = None,
        policy: Optional[ChunkSelectionPolicy] = None,
    ) -> None:
        self.budget = budget or PromptBudget()
        self.policy = policy or KeywordOverlapPolicy()

    def select_chunks(self, question: str, chunks: Sequence[Chunk]) -> List[Chunk]:
        selected: List[Chunk] = []
        words = 0
        for chunk in self.policy.rank(question, chunks):
            if len(selected) >= self.budget.max_chunks:
                break
            size = measure(chunk.text, SizeUnit.WORD)
            # The best ranked chunk is always sent, even when it alone is over budget.
            if selected and words + size > self.budget.max_context_words:
                continue
            selected.append(chunk)
            words += size
        return sorted(selected, key=lambda chunk: chunk.index)

    def select_history(self, history: Sequence[ChatMessage]) -> List[ChatMessage]:
        """Keep the most recent turns that fit; older turns are dropped first."""

        kept: List[ChatMessage] = []
        words = 0
        for message in sorted(history, key=lambda item: item.sequence, reverse=True):
            if len(kept) >= self.budget.max_history_turns:
                break
            size = measure(message.content, SizeUnit.WORD)
            if words + size > self.budget.max_history_words:
                break
            kept.append(message)
            words += size
        kept.reverse()
        return kept

    def build(
        self,
        question: str,
        chunks: Sequence[Chunk],
        history: Sequence[ChatMessage] = (),
        *,
        title: Optional[str] = None,
        language: Optional[str] = None,
    ) -> BuiltPrompt:
        if not question or not question.strip():
            raise ValueError("question must not be empty")

        selected = self.select_chunks(question, chunks)
        turns = self.select_history(history)

        sections = [_SYSTEM_TEXT]
        if title:
            sections.append(f"Document: {title}" + (f" (language: {language})" if language else ""))
        if selected:
            excerpts = "\n\n".join(
                f"[chunk {chunk.index}, page {chunk.page_index + 1}] {chunk.text.strip()}" for chunk in selected
            )
        else:
            excerpts = "No context excerpts are available."
        sections.append(f"Context:\n{excerpts}")
        if turns:
            lines = [
                f"{'User' if message.role is Role.USER else 'Assistant'}: {message.content.strip()}"
                for message in turns
            ]
            sections.append("Conversation so far:\n" + "\n".join(lines))
        sections.append(_USER_TEMPLATE.format(question=question.strip()))

        return BuiltPrompt(text="\n\n".join(sections), chunks=tuple(selected), history=tuple(turns))
