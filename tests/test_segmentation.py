from __future__ import annotations

import pytest

from docinsight.ingest.segmentation import Boundary, Segmenter, SegmenterConfig, SizeUnit, measure
from docinsight.models import Page, make_chunk_id

TEXT = (
    "The lease begins on the first of March. Rent is paid monthly! "
    "Does the tenant pay for water? Yes, unless agreed otherwise.\n\n"
    "A second paragraph follows here. It has two sentences."
)


def _joined(text: str, segmenter: Segmenter) -> str:
    return "".join(text[span.start : span.end] for span in segmenter.split(text))


@pytest.mark.parametrize("boundary", list(Boundary))
@pytest.mark.parametrize("unit", list(SizeUnit))
@pytest.mark.parametrize("max_units", [1, 3, 8, 40, 1000])
def test_chunks_reproduce_page_text(boundary: Boundary, unit: SizeUnit, max_units: int) -> None:
    segmenter = Segmenter(SegmenterConfig(max_units=max_units, unit=unit, boundary=boundary))

    spans = segmenter.split(TEXT)

    assert _joined(TEXT, segmenter) == TEXT
    assert spans[0].start == 0 and spans[-1].end == len(TEXT)
    for previous, current in zip(spans, spans[1:]):
        assert previous.end == current.start
    for span in spans:
        assert span.size == measure(TEXT[span.start : span.end], unit)
        assert span.size <= max_units or span.oversized


def test_sentences_are_packed_greedily() -> None:
    segmenter = Segmenter(SegmenterConfig(max_units=12))

    texts = [TEXT[span.start : span.end] for span in segmenter.split(TEXT)]

    assert texts[0] == "The lease begins on the first of March. Rent is paid monthly! "
    assert texts[1] == "Does the tenant pay for water? Yes, unless agreed otherwise.\n\n"
    assert all(measure(text, SizeUnit.WORD) <= 12 for text in texts)


def test_long_sentence_falls_back_to_words() -> None:
    text = "one two three four five six seven eight nine ten."
    segmenter = Segmenter(SegmenterConfig(max_units=4))

    texts = [text[span.start : span.end] for span in segmenter.split(text)]

    assert texts == ["one two three four ", "five six seven eight ", "nine ten."]


def test_single_word_over_budget_becomes_oversized_chunk() -> None:
    text = "a supercalifragilistic b"
    segmenter = Segmenter(SegmenterConfig(max_units=5, unit=SizeUnit.GRAPHEME, boundary=Boundary.WORD))

    spans = segmenter.split(text)

    assert [text[s.start : s.end] for s in spans] == ["a ", "supercalifragilistic ", "b"]
    assert [s.oversized for s in spans] == [False, True, False]


FLAG = "\U0001F1FA\U0001F1F8"
FAMILY = "\U0001F468\u200d\U0001F469\u200d\U0001F467\u200d\U0001F466"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("e\u0301", 1),
        (FLAG, 1),
        (FAMILY, 1),
        ("\r\n", 1),
        ("\u1100\u1161\u11a8", 1),
        (f"{FLAG} {FAMILY}\r\n", 4),
    ],
)
def test_grapheme_unit_counts_extended_clusters(text: str, expected: int) -> None:
    assert measure(text, SizeUnit.GRAPHEME) == expected


def test_word_unit_counts_whitespace_delimited_tokens() -> None:
    assert measure("two words", SizeUnit.WORD) == 2


def test_single_cluster_fits_a_one_grapheme_budget() -> None:
    segmenter = Segmenter(SegmenterConfig(max_units=1, unit=SizeUnit.GRAPHEME, boundary=Boundary.WORD))

    for text in (FLAG, FAMILY):
        spans = segmenter.split(text)
        assert [(s.start, s.end, s.size, s.oversized) for s in spans] == [(0, len(text), 1, False)]


def test_combining_marks_are_never_split_from_their_base() -> None:
    text = "cafe\u0301 cafe\u0301 cafe\u0301"
    segmenter = Segmenter(SegmenterConfig(max_units=5, unit=SizeUnit.GRAPHEME, boundary=Boundary.WORD))

    for span in segmenter.split(text):
        assert not text[span.start : span.end].startswith("\u0301")


def test_empty_text_has_no_chunks() -> None:
    assert Segmenter().split("") == []


def test_leading_whitespace_is_kept() -> None:
    text = "   indented words here"
    segmenter = Segmenter(SegmenterConfig(max_units=2, boundary=Boundary.WORD))

    spans = segmenter.split(text)

    assert text[spans[0].start : spans[0].end] == "   indented words "


def test_segmentation_is_deterministic() -> None:
    segmenter = Segmenter(SegmenterConfig(max_units=7))
    assert segmenter.split(TEXT) == segmenter.split(TEXT)


def test_segment_pages_numbers_chunks_across_document() -> None:
    pages = [
        Page(document_id="doc", index=0, text="First page. Short.", char_offset=0),
        Page(document_id="doc", index=1, text="", char_offset=18),
        Page(document_id="doc", index=2, text="Third page text.", char_offset=18),
    ]
    segmenter = Segmenter(SegmenterConfig(max_units=2))

    chunks = segmenter.segment_pages("doc", pages)

    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert {chunk.page_index for chunk in chunks} == {0, 2}
    assert [chunk.id for chunk in chunks] == [make_chunk_id("doc", index) for index in range(len(chunks))]
    for page in pages:
        assert "".join(chunk.text for chunk in chunks if chunk.page_index == page.index) == page.text


def test_rejects_non_positive_budget() -> None:
    with pytest.raises(ValueError):
        Segmenter(SegmenterConfig(max_units=0))
