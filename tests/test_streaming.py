import typing as t

import pytest

from a2g.streaming import SegmentMode
from a2g.streaming import Segments
from a2g.streaming import StreamSegmenter
from a2g.streaming import partial_marker_suffix
from a2g.streaming import segment_stream
from a2g.streaming import split_thinking
from a2g.streaming import strip_thinking


def _feed_all(fragments: t.Iterable[str]) -> StreamSegmenter:
    segmenter = StreamSegmenter()
    for fragment in fragments:
        segmenter.feed(fragment)
    return segmenter


def test_plain_text_is_all_visible() -> None:
    segmenter = StreamSegmenter()
    accumulated = ""
    for fragment in ["Hello", ", ", "world", "! 1 < 2 and 3 > 2", ""]:
        accumulated += fragment
        assert segmenter.feed(fragment) == Segments(visible=accumulated, thinking="")
    assert segmenter.mode is SegmentMode.OUTSIDE


def test_single_fragment_closed_block() -> None:
    segmenter = StreamSegmenter()
    assert segmenter.feed("A<think>B</think>C") == Segments(visible="AC", thinking="")
    assert segmenter.thought == "B"
    assert segmenter.mode is SegmentMode.CLOSED


def test_incremental_close() -> None:
    segmenter = StreamSegmenter()
    assert segmenter.feed("A<think>B") == Segments(visible="A", thinking="B")
    assert segmenter.mode is SegmentMode.INSIDE
    assert segmenter.feed("</think>C") == Segments(visible="AC", thinking="")
    assert segmenter.thought == "B"


def test_thinking_grows_until_closed() -> None:
    segmenter = StreamSegmenter()
    segmenter.feed("<thinking>")
    assert segmenter.feed("step one") == Segments(visible="", thinking="step one")
    assert segmenter.feed(", step two") == Segments(visible="", thinking="step one, step two")
    assert segmenter.feed("</thinking>Answer") == Segments(visible="Answer", thinking="")


@pytest.mark.parametrize(
    "text",
    [
        "A<think>B</think>C",
        "<thinking>plan</thinking>Result text",
        "pre <think>unterminated reasoning",
        "no markers at all",
        "x<think>a</think>y<think>b</think>z",
    ],
)
def test_fragmentation_invariance(text: str) -> None:
    whole = _feed_all([text])
    for cut in range(len(text) + 1):
        split = _feed_all([text[:cut], text[cut:]])
        assert split.segments == whole.segments, f"cut at {cut}"
        assert split.thought == whole.thought


def test_marker_split_across_fragments() -> None:
    segmenter = StreamSegmenter()
    assert segmenter.feed("Hi <thin") == Segments(visible="Hi <thin", thinking="")
    assert segmenter.feed("king>pondering") == Segments(visible="Hi ", thinking="pondering")
    assert segmenter.feed("</thin") == Segments(visible="Hi ", thinking="pondering</thin")
    assert segmenter.feed("king> done") == Segments(visible="Hi  done", thinking="")


def test_character_by_character_matches_whole() -> None:
    text = "Sure.<think>Let me check the file.</think> The answer is 4."
    segmenter = _feed_all(text)
    assert segmenter.segments == Segments(visible="Sure. The answer is 4.", thinking="")
    assert segmenter.thought == "Let me check the file."


def test_only_first_block_is_honored() -> None:
    segmenter = _feed_all(["A<think>B</think>C", "<think>D</think>E"])
    assert segmenter.visible == "AC<think>D</think>E"
    assert segmenter.thinking == ""
    assert segmenter.thought == "B"


def test_mixed_marker_variants_close() -> None:
    assert _feed_all(["<think>x</thinking>y"]).segments == Segments(visible="y", thinking="")


def test_markers_are_case_sensitive() -> None:
    segmenter = _feed_all(["A<THINK>B</THINK>C"])
    assert segmenter.segments == Segments(visible="A<THINK>B</THINK>C", thinking="")


def test_unterminated_block_fails_open() -> None:
    segmenter = _feed_all(["Answer first. ", "<think>", "and then thinking forever"])
    assert segmenter.visible == "Answer first. "
    assert segmenter.thinking == "and then thinking forever"
    assert segmenter.thought == ""


def test_close_marker_without_open_is_literal() -> None:
    assert _feed_all(["a</think>b"]).segments == Segments(visible="a</think>b", thinking="")


def test_raw_keeps_everything() -> None:
    segmenter = _feed_all(["A<think>B", "</think>C"])
    assert segmenter.raw == "A<think>B</think>C"


def test_reset() -> None:
    segmenter = _feed_all(["<think>B"])
    segmenter.reset()
    assert segmenter.segments == Segments(visible="", thinking="")
    assert segmenter.mode is SegmentMode.OUTSIDE
    assert segmenter.feed("plain") == Segments(visible="plain", thinking="")


def test_split_thinking() -> None:
    split = split_thinking("a<think>b</think>c")
    assert split.mode is SegmentMode.CLOSED
    assert (split.visible, split.thinking, split.thought) == ("ac", "", "b")


def test_strip_thinking() -> None:
    assert strip_thinking("<think>reasoning</think>\nHello") == "\nHello"
    assert strip_thinking("Hello") == "Hello"
    assert strip_thinking("Hello<think>never closed") == "Hello"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Hello", 0),
        ("Hello <", 1),
        ("Hello <thi", 4),
        ("Hello <thinking", 9),
        ("Hello </", 2),
        ("Hello </think", 7),
        ("Hello <think>", 0),
        ("<b", 0),
        ("", 0),
    ],
)
def test_partial_marker_suffix(text: str, expected: int) -> None:
    assert partial_marker_suffix(text) == expected


@pytest.mark.asyncio
async def test_segment_stream() -> None:
    async def fragments() -> t.AsyncIterator[str]:
        for fragment in ["A<think>", "B", "</think>C"]:
            yield fragment

    snapshots = [segments async for segments in segment_stream(fragments())]
    assert snapshots == [
        Segments(visible="A", thinking=""),
        Segments(visible="A", thinking="B"),
        Segments(visible="AC", thinking=""),
    ]


@pytest.mark.asyncio
async def test_segment_stream_updates_given_segmenter() -> None:
    async def fragments() -> t.AsyncIterator[str]:
        for fragment in ["<think>pl", "an</think>Hi"]:
            yield fragment

    segmenter = StreamSegmenter()
    modes = [segmenter.mode async for _ in segment_stream(fragments(), segmenter)]

    assert modes == [SegmentMode.INSIDE, SegmentMode.CLOSED]
    assert segmenter.thought == "plan"
    assert segmenter.visible == "Hi"
