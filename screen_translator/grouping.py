"""Group OCR words into translatable text blocks."""

from __future__ import annotations

from typing import List, Protocol, Sequence

from .geometry import (
    LINE_HEIGHT_THRESHOLD,
    WORD_GAP_THRESHOLD,
    is_adjacent,
    reading_order_key,
    union_boxes,
)
from .settings import Settings
from .types import TextBlock, WordDetection

READING_ORDER = "reading_order"
SINGLE_BLOCK = "single_block"
POLICY_NAMES = (READING_ORDER, SINGLE_BLOCK)


class ClusteringPolicy(Protocol):
    def cluster(self, words: Sequence[WordDetection]) -> List[TextBlock]:
        ...


def _join_words(words: Sequence[WordDetection], line_height_threshold: float) -> str:
    """Join words with spaces, breaking lines where ``y0`` jumps past the threshold."""
    parts: List[str] = []
    for idx, word in enumerate(words):
        if idx:
            dy = abs(word["box"]["y0"] - words[idx - 1]["box"]["y0"])
            parts.append("\n" if dy > line_height_threshold else " ")
        parts.append(word["text"])
    return "".join(parts)


def _make_block(words: Sequence[WordDetection], line_height_threshold: float) -> TextBlock:
    confidence = sum(word["confidence"] for word in words) / len(words)
    return {
        "box": union_boxes(words),
        "text": _join_words(words, line_height_threshold),
        "confidence": confidence,
    }


class ReadingOrderPolicy:
    """Split words into blocks of horizontally adjacent words on one line.

    Words far apart on the same line end up in separate blocks, the way
    subtitles and captions are laid out on a screen.
    """

    name = READING_ORDER

    def __init__(
        self,
        word_gap_threshold: float = WORD_GAP_THRESHOLD,
        line_height_threshold: float = LINE_HEIGHT_THRESHOLD,
    ) -> None:
        self.word_gap_threshold = word_gap_threshold
        self.line_height_threshold = line_height_threshold

    def cluster(self, words: Sequence[WordDetection]) -> List[TextBlock]:
        if not words:
            return []
        ordered = sorted(words, key=reading_order_key(self.line_height_threshold))

        blocks: List[TextBlock] = []
        current: List[WordDetection] = [ordered[0]]
        for word in ordered[1:]:
            if is_adjacent(current[-1], word, self.word_gap_threshold, self.line_height_threshold):
                current.append(word)
                continue
            blocks.append(_make_block(current, self.line_height_threshold))
            current = [word]
        blocks.append(_make_block(current, self.line_height_threshold))
        return blocks


class SingleBlockPolicy:
    """Merge every word into one block, for images already cropped to a region."""

    name = SINGLE_BLOCK

    def __init__(self, line_height_threshold: float = LINE_HEIGHT_THRESHOLD) -> None:
        self.line_height_threshold = line_height_threshold

    def cluster(self, words: Sequence[WordDetection]) -> List[TextBlock]:
        if not words:
            return []
        ordered = sorted(words, key=reading_order_key(self.line_height_threshold))
        return [_make_block(ordered, self.line_height_threshold)]


def policy_for(name: str, settings: Settings | None = None) -> ClusteringPolicy:
    settings = settings or Settings()
    key = name.lower().strip()
    if key == READING_ORDER:
        return ReadingOrderPolicy(settings.word_gap_threshold, settings.line_height_threshold)
    if key == SINGLE_BLOCK:
        return SingleBlockPolicy(settings.line_height_threshold)
    raise ValueError(f"Unknown clustering policy {name!r}; expected one of {', '.join(POLICY_NAMES)}")


def cluster_words(words: Sequence[WordDetection], policy: ClusteringPolicy) -> List[TextBlock]:
    """Group OCR words into text blocks using ``policy``."""
    return policy.cluster(words)


def block_to_detection(block: TextBlock) -> WordDetection:
    """Turn a block back into a single detection covering the same rectangle."""
    box = block["box"]
    return {
        "text": block["text"],
        "confidence": block["confidence"],
        "box": {
            "x0": box["x"],
            "y0": box["y"],
            "x1": box["x"] + box["width"],
            "y1": box["y"] + box["height"],
        },
    }


__all__ = [
    "ClusteringPolicy",
    "ReadingOrderPolicy",
    "SingleBlockPolicy",
    "READING_ORDER",
    "SINGLE_BLOCK",
    "POLICY_NAMES",
    "policy_for",
    "cluster_words",
    "block_to_detection",
]
