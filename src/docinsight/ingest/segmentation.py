"""Split page text into size-bounded, lossless chunks."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Tuple

import regex

from ..models import Chunk, Page, make_chunk_id

LOGGER = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\S+")
# Extended grapheme clusters (UAX #29).
_GRAPHEME_RE = regex.compile(r"\X")
_WORD_SEGMENT_RE = re.compile(r"\A\s+|\S+\s*")
_PARAGRAPH_BREAK_RE = re.compile(r"\n[^\S\n]*\n\s*")
_SENTENCE_BREAK_RE = re.compile(
    r"[.!?…]+[\"'”’»)\]]*(?:\s+|\Z)"
    r"|[。！？]+[\"'”’»)\]]*\s*"
    r"|\n[^\S\n]*\n\s*"
)


class SizeUnit(str, Enum):
    WORD = "word"
    GRAPHEME = "grapheme"


class Boundary(str, Enum):
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    WORD = "word"


# A segment over budget is split again at the next finer boundary.
_FALLBACK = {
    Boundary.PARAGRAPH: Boundary.SENTENCE,
    Boundary.SENTENCE: Boundary.WORD,
}


@dataclass(slots=True)
class SegmenterConfig:
    max_units: int = 200
    unit: SizeUnit = SizeUnit.WORD
    boundary: Boundary = Boundary.SENTENCE


@dataclass(frozen=True, slots=True)
class Span:
    """Page-relative ``[start, end)`` slice with its measured size."""

    start: int
    end: int
    size: int
    oversized: bool = False


def measure(text: str, unit: SizeUnit) -> int:
    """Return the size of ``text`` in words or user-perceived characters."""

    if unit is SizeUnit.WORD:
        return len(_WORD_RE.findall(text))
    return len(_GRAPHEME_RE.findall(text))


def _cut_points(text: str, pattern: re.Pattern[str]) -> Iterator[Tuple[int, int]]:
    start = 0
    for match in pattern.finditer(text):
        end = match.end()
        if start < end < len(text):
            yield start, end
            start = end
    if start < len(text):
        yield start, len(text)


def _boundary_segments(text: str, boundary: Boundary) -> Iterator[Tuple[int, int]]:
    if boundary is Boundary.WORD:
        for match in _WORD_SEGMENT_RE.finditer(text):
            yield match.start(), match.end()
        return
    pattern = _PARAGRAPH_BREAK_RE if boundary is Boundary.PARAGRAPH else _SENTENCE_BREAK_RE
    yield from _cut_points(text, pattern)


class Segmenter:
    """Greedy packer of unicode segments into chunks of at most ``max_units``.

    The chunks of a page are contiguous and ordered, so joining their text
    reproduces the page exactly. A segment that cannot be split further and is
    still larger than the budget becomes a single chunk flagged ``oversized``;
    text is never truncated.
    """

    def __init__(self, config: SegmenterConfig | None = None) -> None:
        self.config = config or SegmenterConfig()
        if self.config.max_units < 1:
            raise ValueError("max_units must be positive")

    def split(self, text: str) -> List[Span]:
        if not text:
            return []

        limit = self.config.max_units
        spans: List[Span] = []
        current_start = 0
        current_end = 0
        current_size = 0
        for start, end, size in self._atoms(text, 0, len(text), self.config.boundary):
            if current_end > current_start and current_size > 0 and size > 0 and current_size + size > limit:
                spans.append(Span(current_start, current_end, current_size, current_size > limit))
                current_start = start
                current_size = 0
            current_end = end
            current_size += size
        spans.append(Span(current_start, current_end, current_size, current_size > limit))
        return spans

    def _atoms(self, text: str, offset: int, stop: int, boundary: Boundary) -> Iterator[Tuple[int, int, int]]:
        unit = self.config.unit
        for start, end in _boundary_segments(text[offset:stop], boundary):
            start += offset
            end += offset
            size = measure(text[start:end], unit)
            finer = _FALLBACK.get(boundary)
            if size > self.config.max_units and finer is not None:
                yield from self._atoms(text, start, end, finer)
            else:
                yield start, end, size

    def segment_pages(self, document_id: str, pages: Iterable[Page]) -> List[Chunk]:
        """Chunk every page, numbering chunks across the whole document."""

        chunks: List[Chunk] = []
        for page in pages:
            for span in self.split(page.text):
                index = len(chunks)
                chunks.append(
                    Chunk(
                        id=make_chunk_id(document_id, index),
                        document_id=document_id,
                        page_index=page.index,
                        index=index,
                        start=span.start,
                        end=span.end,
                        text=page.text[span.start : span.end],
                        size=span.size,
                        oversized=span.oversized,
                    )
                )
                if span.oversized:
                    LOGGER.debug(
                        "Oversized chunk %s on page %s (%s > %s %ss)",
                        index,
                        page.index,
                        span.size,
                        self.config.max_units,
                        self.config.unit.value,
                    )
        return chunks
