"""Typed structures shared by the backend modules."""

from __future__ import annotations

from typing import List, TypedDict


class WordBox(TypedDict):
    """Corner coordinates of an OCR word in image pixels."""

    x0: float
    y0: float
    x1: float
    y1: float


class WordDetection(TypedDict):
    """Single OCR word with its confidence (0-100) and bounding box."""

    text: str
    confidence: float
    box: WordBox


class TextBox(TypedDict):
    x: float
    y: float
    width: float
    height: float


class TextBlock(TypedDict):
    """Words merged into one translatable unit."""

    box: TextBox
    text: str
    confidence: float


class TranslatedBlock(TypedDict):
    """Block returned to overlay clients; keys follow the wire format."""

    box: TextBox
    originalText: str
    translatedText: str
    confidence: float


class Region(TypedDict):
    """Crop rectangle selected by the caller, in full-image pixels."""

    x: int
    y: int
    width: int
    height: int


class ImageTranslateResult(TypedDict):
    blocks: List[TranslatedBlock]
    totalDuration: float
    ocrDuration: float
    translateDuration: float
    translateModel: str


class TextTranslateResult(TypedDict):
    translatedText: str
    model: str
    duration: float


__all__ = [
    "WordBox",
    "WordDetection",
    "TextBox",
    "TextBlock",
    "TranslatedBlock",
    "Region",
    "ImageTranslateResult",
    "TextTranslateResult",
]
