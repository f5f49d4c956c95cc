"""Bounding-box helpers used to rebuild text blocks from OCR words."""

from __future__ import annotations

from functools import cmp_to_key
from typing import Any, Callable, Sequence

from .types import TextBox, WordDetection

WORD_GAP_THRESHOLD = 50.0
LINE_HEIGHT_THRESHOLD = 10.0


class EmptyInputError(ValueError):
    """Raised when a geometric operation needs at least one word."""


def union_boxes(words: Sequence[WordDetection]) -> TextBox:
    """Return the smallest rectangle containing every word box."""
    if not words:
        raise EmptyInputError("cannot compute the union of zero boxes")
    x0 = min(word["box"]["x0"] for word in words)
    y0 = min(word["box"]["y0"] for word in words)
    x1 = max(word["box"]["x1"] for word in words)
    y1 = max(word["box"]["y1"] for word in words)
    return {"x": x0, "y": y0, "width": x1 - x0, "height": y1 - y0}


def same_line(a: WordDetection, b: WordDetection, line_height_threshold: float = LINE_HEIGHT_THRESHOLD) -> bool:
    return abs(a["box"]["y0"] - b["box"]["y0"]) < line_height_threshold


def is_adjacent(
    prev: WordDetection,
    nxt: WordDetection,
    word_gap_threshold: float = WORD_GAP_THRESHOLD,
    line_height_threshold: float = LINE_HEIGHT_THRESHOLD,
) -> bool:
    """True when ``nxt`` continues ``prev`` on the same line.

    Overlapping boxes produce a negative gap and therefore count as adjacent.
    """
    if not same_line(prev, nxt, line_height_threshold):
        return False
    return nxt["box"]["x0"] - prev["box"]["x1"] < word_gap_threshold


def _sign(value: float) -> int:
    if value < 0:
        return -1
    if value > 0:
        return 1
    return 0


def reading_order_compare(
    a: WordDetection,
    b: WordDetection,
    line_height_threshold: float = LINE_HEIGHT_THRESHOLD,
) -> int:
    """Compare two words top-to-bottom, then left-to-right within a line."""
    dy = a["box"]["y0"] - b["box"]["y0"]
    if abs(dy) >= line_height_threshold:
        return _sign(dy)
    return _sign(a["box"]["x0"] - b["box"]["x0"])


def reading_order_key(line_height_threshold: float = LINE_HEIGHT_THRESHOLD) -> Callable[[WordDetection], Any]:
    return cmp_to_key(lambda a, b: reading_order_compare(a, b, line_height_threshold))


__all__ = [
    "WORD_GAP_THRESHOLD",
    "LINE_HEIGHT_THRESHOLD",
    "EmptyInputError",
    "union_boxes",
    "same_line",
    "is_adjacent",
    "reading_order_compare",
    "reading_order_key",
]
