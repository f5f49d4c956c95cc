"""OCR engines and the worker pool that feeds the translation pipeline."""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Any, Iterable, List, Protocol, Sequence, Tuple, cast

from PIL import Image

from .settings import Settings
from .types import Region, WordDetection

try:  # pragma: no cover - optional dependency
    import pytesseract as _pytesseract  # type: ignore[import]
except ImportError:  # pragma: no cover - optional dependency
    _pytesseract = None

try:  # pragma: no cover - optional dependency
    from google.cloud import vision as _vision  # type: ignore[import]
except ImportError:  # pragma: no cover - optional dependency
    _vision = None

pytesseract = cast(Any | None, _pytesseract)
vision = cast(Any | None, _vision)

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 30.0


class OcrUnavailableError(RuntimeError):
    """Raised when no OCR engine can serve a request."""


class WordDetector(Protocol):
    def detect_words(self, image_bytes: bytes) -> List[WordDetection]:
        ...


def filter_detections(words: Iterable[WordDetection], min_confidence: float = MIN_CONFIDENCE) -> List[WordDetection]:
    """Drop blank and low-confidence words, trimming the text of the rest."""
    kept: List[WordDetection] = []
    for word in words:
        text = (word.get("text") or "").strip()
        if not text or word["confidence"] <= min_confidence:
            continue
        kept.append({"text": text, "confidence": word["confidence"], "box": word["box"]})
    return kept


class TesseractWordDetector:
    """Word-level OCR through the local tesseract binary."""

    def __init__(self, languages: str = "eng") -> None:
        if pytesseract is None:
            raise OcrUnavailableError("pytesseract not installed")
        self.languages = languages

    def detect_words(self, image_bytes: bytes) -> List[WordDetection]:
        assert pytesseract is not None
        with Image.open(io.BytesIO(image_bytes)) as im:
            data: Any = pytesseract.image_to_data(
                im.convert("RGB"),
                lang=self.languages,
                output_type=pytesseract.Output.DICT,
            )
        words: List[WordDetection] = []
        for i, raw_text in enumerate(data.get("text", [])):
            confidence = float(data["conf"][i])
            # layout rows (page, block, line) carry conf -1
            if confidence < 0 or not str(raw_text).strip():
                continue
            left = float(data["left"][i])
            top = float(data["top"][i])
            words.append(
                {
                    "text": str(raw_text),
                    "confidence": confidence,
                    "box": {
                        "x0": left,
                        "y0": top,
                        "x1": left + float(data["width"][i]),
                        "y1": top + float(data["height"][i]),
                    },
                }
            )
        return words


class VisionWordDetector:
    """Google Cloud Vision document OCR."""

    def __init__(self, language_hint: str | None = None) -> None:
        if vision is None:
            raise OcrUnavailableError("google-cloud-vision not installed")
        self.language_hint = language_hint
        self._client: Any = vision.ImageAnnotatorClient()

    def detect_words(self, image_bytes: bytes) -> List[WordDetection]:
        assert vision is not None
        image = vision.Image(content=image_bytes)
        image_context: Any | None = None
        if self.language_hint:
            image_context = vision.ImageContext(language_hints=[self.language_hint])

        response: Any = self._client.document_text_detection(image=image, image_context=image_context)
        words: List[WordDetection] = []
        annotations: Any = getattr(response, "full_text_annotation", None)
        pages: Iterable[Any] = getattr(annotations, "pages", [])
        for page in pages:
            for block in getattr(page, "blocks", []):
                for paragraph in getattr(block, "paragraphs", []):
                    for word in getattr(paragraph, "words", []):
                        symbols: Iterable[Any] = getattr(word, "symbols", [])
                        text = "".join(str(getattr(symbol, "text", "")) for symbol in symbols)
                        bounding_box: Any = getattr(word, "bounding_box", None)
                        vertices: Sequence[Any] = list(getattr(bounding_box, "vertices", []))
                        if not vertices:
                            continue
                        xs = [float(getattr(vertex, "x", 0)) for vertex in vertices]
                        ys = [float(getattr(vertex, "y", 0)) for vertex in vertices]
                        words.append(
                            {
                                "text": text,
                                "confidence": float(getattr(word, "confidence", 0.0)) * 100.0,
                                "box": {"x0": min(xs), "y0": min(ys), "x1": max(xs), "y1": max(ys)},
                            }
                        )
        return words


def build_detector(settings: Settings) -> WordDetector:
    provider = settings.ocr_provider
    if provider == "vision":
        logger.info("OCR provider: Google Cloud Vision")
        return VisionWordDetector()
    if provider != "tesseract":
        logger.warning("Unknown OCR provider '%s'; defaulting to tesseract", provider)
    logger.info("OCR provider: tesseract (%s)", settings.ocr_languages)
    return TesseractWordDetector(settings.ocr_languages)


class OcrWorkerPool:
    """Bounded pool running a blocking detector off the event loop.

    Requests beyond ``worker_count`` wait for a free slot.
    """

    def __init__(self, detector: WordDetector, worker_count: int = 6) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._detector = detector
        self.worker_count = worker_count
        self._slots: asyncio.Semaphore | None = None

    @property
    def started(self) -> bool:
        return self._slots is not None

    async def start(self) -> None:
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.worker_count)
            logger.info("OCR worker pool started with %d workers", self.worker_count)

    async def close(self) -> None:
        if self._slots is not None:
            self._slots = None
            logger.info("OCR worker pool closed")

    async def __aenter__(self) -> "OcrWorkerPool":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def detect_words(self, image_bytes: bytes) -> List[WordDetection]:
        slots = self._slots
        if slots is None:
            raise OcrUnavailableError("OCR worker pool is not running")
        async with slots:
            return await asyncio.to_thread(self._detector.detect_words, image_bytes)


def crop_region(image_bytes: bytes, region: Region) -> Tuple[bytes, Tuple[int, int]]:
    """Crop ``region`` out of the image, clamped to its bounds.

    Returns the PNG bytes of the crop and the (left, top) offset actually used.
    """
    with Image.open(io.BytesIO(image_bytes)) as im:
        width, height = im.size
        left = max(0, int(region["x"]))
        top = max(0, int(region["y"]))
        right = min(width, left + int(region["width"]))
        bottom = min(height, top + int(region["height"]))
        if right <= left or bottom <= top:
            raise ValueError(f"Region {region} lies outside the {width}x{height} image")
        cropped = im.crop((left, top, right, bottom))
        buffer = io.BytesIO()
        cropped.save(buffer, format="PNG")
    return buffer.getvalue(), (left, top)


__all__ = [
    "MIN_CONFIDENCE",
    "OcrUnavailableError",
    "WordDetector",
    "filter_detections",
    "TesseractWordDetector",
    "VisionWordDetector",
    "build_detector",
    "OcrWorkerPool",
    "crop_region",
]
