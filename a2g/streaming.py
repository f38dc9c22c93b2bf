from __future__ import annotations

import enum
import logging
import re
import typing as t

logger = logging.getLogger("a2g.streaming")

OPEN_MARKER = re.compile(r"<(?:think|thinking)>")
"""Opening marker of a thinking block."""

CLOSE_MARKER = re.compile(r"</(?:think|thinking)>")
"""Closing marker of a thinking block."""

MARKERS = ("<think>", "<thinking>", "</think>", "</thinking>")


class SegmentMode(enum.Enum):
    """Position of the stream relative to the thinking block."""

    OUTSIDE = "outside"
    """No opening marker seen yet."""

    INSIDE = "inside"
    """Opening marker seen, closing marker still pending."""

    CLOSED = "closed"
    """The thinking block has been closed. Everything after it is visible."""


class Segments(t.NamedTuple):
    """Snapshot of the visible/thinking split after a fragment.

    Attributes:
        visible: Text meant for the user as the answer.
        thinking: Reasoning text of the currently open block. Empty when no
            block is open, including after the block was closed.
    """

    visible: str
    thinking: str


class _Split(t.NamedTuple):
    mode: SegmentMode
    visible: str
    thinking: str
    thought: str


def split_thinking(text: str) -> _Split:
    """Classify accumulated text into visible and thinking parts.

    Only the first opening marker and the first closing marker after it are
    honored. Markers appearing after the block was closed are kept as
    literal visible text.

    Args:
        text: The full accumulated text.

    Returns:
        Mode, visible text, open thinking text and the text of the closed
        block (empty until the block closes).
    """
    opening = OPEN_MARKER.search(text)
    if opening is None:
        return _Split(SegmentMode.OUTSIDE, text, "", "")

    before = text[: opening.start()]
    closing = CLOSE_MARKER.search(text, opening.end())
    if closing is None:
        return _Split(SegmentMode.INSIDE, before, text[opening.end() :], "")

    return _Split(
        SegmentMode.CLOSED,
        before + text[closing.end() :],
        "",
        text[opening.end() : closing.start()],
    )


class StreamSegmenter:
    """Incremental splitter of streamed text into answer and thinking.

    Models that reason inline wrap their reasoning in `<think>...</think>`
    (or `<thinking>...</thinking>`). Streaming fragments carry no guarantee
    of alignment with those markers, so every `feed` re-derives the split
    from the entire accumulated text. The result is therefore independent of
    how the text was fragmented.

    Malformed or unterminated markers never raise. An unclosed block keeps
    everything after its opening marker classified as thinking until the
    stream ends, and the text before it is the answer.

    Only `visible` is meant to be persisted once the stream ends.

    Example:
        ```python
        segmenter = StreamSegmenter()
        segmenter.feed("A<thi")       # Segments(visible="A<thi", thinking="")
        segmenter.feed("nk>B")        # Segments(visible="A", thinking="B")
        segmenter.feed("</think>C")   # Segments(visible="AC", thinking="")
        segmenter.thought             # "B"
        ```
    """

    def __init__(self) -> None:
        self._raw = ""
        self._split = _Split(SegmentMode.OUTSIDE, "", "", "")

    def feed(self, fragment: str) -> Segments:
        """Append a fragment and return the updated split.

        Args:
            fragment: Next chunk of streamed text, of any length.

        Returns:
            Current visible and thinking text.
        """
        if not fragment:
            return self.segments

        self._raw += fragment
        if self._split.mode is SegmentMode.CLOSED:
            # Nothing after the first closed block is ever reclassified.
            self._split = self._split._replace(visible=self._split.visible + fragment)
        else:
            previous = self._split.mode
            self._split = split_thinking(self._raw)
            if self._split.mode is not previous:
                logger.debug(
                    "Thinking block %s -> %s after %s chars",
                    previous.value,
                    self._split.mode.value,
                    len(self._raw),
                )
        return self.segments

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._raw = ""
        self._split = _Split(SegmentMode.OUTSIDE, "", "", "")

    @property
    def segments(self) -> Segments:
        return Segments(self._split.visible, self._split.thinking)

    @property
    def visible(self) -> str:
        return self._split.visible

    @property
    def thinking(self) -> str:
        return self._split.thinking

    @property
    def thought(self) -> str:
        """Text of the closed thinking block, empty until it closes."""
        return self._split.thought

    @property
    def mode(self) -> SegmentMode:
        return self._split.mode

    @property
    def raw(self) -> str:
        """Full accumulated text as received."""
        return self._raw


def strip_thinking(text: str) -> str:
    """Return only the visible part of a complete response."""
    return split_thinking(text).visible


def partial_marker_suffix(text: str) -> int:
    """Length of a trailing fragment of `text` that could start a marker.

    Display code uses this to hold back e.g. a trailing `"<thi"` until the
    next fragment shows whether it opens a thinking block.
    """
    longest = 0
    for marker in MARKERS:
        for size in range(min(len(marker) - 1, len(text)), longest, -1):
            if text.endswith(marker[:size]):
                longest = size
                break
    return longest


async def segment_stream(
    fragments: t.AsyncIterable[str], segmenter: StreamSegmenter | None = None
) -> t.AsyncIterator[Segments]:
    """Feed an async fragment source through a segmenter.

    Args:
        fragments: Streamed text fragments.
        segmenter: Segmenter to feed, so callers can inspect its mode and
            closed block while iterating. A fresh one by default.

    Yields:
        The split after each fragment.
    """
    if segmenter is None:
        segmenter = StreamSegmenter()
    async for fragment in fragments:
        yield segmenter.feed(fragment)
