"""Tests for OCR ingestion helpers and the worker pool."""

import asyncio
import io
import threading
import time
from types import SimpleNamespace

import pytest
from PIL import Image

from screen_translator.ocr import (
    OcrUnavailableError,
    OcrWorkerPool,
    TesseractWordDetector,
    VisionWordDetector,
    build_detector,
    crop_region,
    filter_detections,
)
from screen_translator.settings import Settings
from tests.conftest import word


def test_filter_drops_low_confidence_and_blank_words():
    words = [
        word(" keep ", 0, 0, 10, 10, confidence=31),
        word("edge", 0, 0, 10, 10, confidence=30),
        word("low", 0, 0, 10, 10, confidence=5),
        word("   ", 0, 0, 10, 10, confidence=99),
    ]
    kept = filter_detections(words)
    assert [w["text"] for w in kept] == ["keep"]
    assert kept[0]["box"] == words[0]["box"]


def test_filter_honours_custom_threshold():
    words = [word("a", 0, 0, 1, 1, confidence=50), word("b", 0, 0, 1, 1, confidence=70)]
    assert [w["text"] for w in filter_detections(words, min_confidence=60)] == ["b"]


class _SlowDetector:
    def __init__(self) -> None:
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def detect_words(self, image_bytes):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.05)
        with self._lock:
            self.active -= 1
        return [word(image_bytes.decode(), 0, 0, 10, 10)]


@pytest.mark.anyio
async def test_pool_limits_concurrent_ocr_calls():
    detector = _SlowDetector()
    async with OcrWorkerPool(detector, worker_count=2) as pool:
        results = await asyncio.gather(*(pool.detect_words(str(i).encode()) for i in range(5)))
    assert [r[0]["text"] for r in results] == ["0", "1", "2", "3", "4"]
    assert detector.peak <= 2


@pytest.mark.anyio
async def test_pool_requires_start():
    pool = OcrWorkerPool(_SlowDetector(), worker_count=1)
    with pytest.raises(OcrUnavailableError):
        await pool.detect_words(b"x")
    await pool.start()
    assert pool.started
    await pool.close()
    with pytest.raises(OcrUnavailableError):
        await pool.detect_words(b"x")


def test_pool_rejects_zero_workers():
    with pytest.raises(ValueError):
        OcrWorkerPool(_SlowDetector(), worker_count=0)


def test_crop_region_returns_png_and_offset(png_bytes):
    cropped, offset = crop_region(png_bytes, {"x": 50, "y": 20, "width": 100, "height": 50})
    assert offset == (50, 20)
    with Image.open(io.BytesIO(cropped)) as im:
        assert im.size == (100, 50)
        assert im.format == "PNG"


def test_crop_region_clamps_to_image(png_bytes):
    cropped, _ = crop_region(png_bytes, {"x": 150, "y": 80, "width": 500, "height": 500})
    with Image.open(io.BytesIO(cropped)) as im:
        assert im.size == (50, 20)


def test_crop_region_outside_image(png_bytes):
    with pytest.raises(ValueError):
        crop_region(png_bytes, {"x": 300, "y": 0, "width": 10, "height": 10})


class _FakeTesseract:
    """Stands in for the pytesseract module."""

    Output = SimpleNamespace(DICT="dict")

    def __init__(self) -> None:
        self.calls = []

    def image_to_data(self, image, lang, output_type):
        self.calls.append((image.mode, lang, output_type))
        return {
            "text": ["", "Hello", "   ", "world"],
            "conf": ["-1", "91.5", "88", "76"],
            "left": [0, 10, 60, 70],
            "top": [0, 5, 5, 6],
            "width": [200, 40, 5, 35],
            "height": [100, 12, 12, 11],
        }


def _vertices(*points):
    return SimpleNamespace(vertices=[SimpleNamespace(x=x, y=y) for x, y in points])


def _vision_word(text, confidence, *points):
    symbols = [SimpleNamespace(text=ch) for ch in text]
    return SimpleNamespace(symbols=symbols, confidence=confidence, bounding_box=_vertices(*points))


class _FakeVisionClient:
    def __init__(self) -> None:
        self.requests = []

    def document_text_detection(self, image, image_context=None):
        self.requests.append((image, image_context))
        words = [
            _vision_word("Xin", 0.87, (12, 4), (40, 2), (41, 20), (11, 22)),
            _vision_word("chào", 0.5),
        ]
        paragraph = SimpleNamespace(words=words)
        page = SimpleNamespace(blocks=[SimpleNamespace(paragraphs=[paragraph])])
        return SimpleNamespace(full_text_annotation=SimpleNamespace(pages=[page]))


def _fake_vision(client):
    return SimpleNamespace(
        ImageAnnotatorClient=lambda: client,
        Image=lambda content: ("image", content),
        ImageContext=lambda language_hints: ("context", language_hints),
    )


@pytest.fixture
def fake_tesseract(monkeypatch):
    engine = _FakeTesseract()
    monkeypatch.setattr("screen_translator.ocr.pytesseract", engine)
    return engine


@pytest.fixture
def vision_client(monkeypatch):
    client = _FakeVisionClient()
    monkeypatch.setattr("screen_translator.ocr.vision", _fake_vision(client))
    return client


def test_tesseract_skips_layout_and_blank_rows(fake_tesseract, png_bytes):
    words = TesseractWordDetector("eng+vie").detect_words(png_bytes)

    assert fake_tesseract.calls == [("RGB", "eng+vie", "dict")]
    assert words == [
        {"text": "Hello", "confidence": 91.5, "box": {"x0": 10, "y0": 5, "x1": 50, "y1": 17}},
        {"text": "world", "confidence": 76, "box": {"x0": 70, "y0": 6, "x1": 105, "y1": 17}},
    ]


def test_vision_scales_confidence_and_bounds_vertices(vision_client, png_bytes):
    words = VisionWordDetector(language_hint="vi").detect_words(png_bytes)

    assert words == [{"text": "Xin", "confidence": pytest.approx(87.0), "box": {"x0": 11, "y0": 2, "x1": 41, "y1": 22}}]
    assert vision_client.requests == [(("image", png_bytes), ("context", ["vi"]))]


def test_vision_without_hint_sends_no_context(vision_client, png_bytes):
    VisionWordDetector().detect_words(png_bytes)
    assert vision_client.requests[0][1] is None


def test_build_detector_by_provider(fake_tesseract, vision_client):
    assert isinstance(build_detector(Settings(ocr_provider="vision")), VisionWordDetector)
    detector = build_detector(Settings(ocr_provider="tesseract", ocr_languages="jpn"))
    assert isinstance(detector, TesseractWordDetector)
    assert detector.languages == "jpn"


def test_build_detector_unknown_provider_falls_back(fake_tesseract, caplog):
    with caplog.at_level("WARNING"):
        detector = build_detector(Settings(ocr_provider="abbyy"))
    assert isinstance(detector, TesseractWordDetector)
    assert "Unknown OCR provider" in caplog.text


def test_missing_engines_raise_unavailable(monkeypatch):
    monkeypatch.setattr("screen_translator.ocr.pytesseract", None)
    monkeypatch.setattr("screen_translator.ocr.vision", None)
    with pytest.raises(OcrUnavailableError):
        TesseractWordDetector()
    with pytest.raises(OcrUnavailableError):
        VisionWordDetector()
    with pytest.raises(OcrUnavailableError):
        build_detector(Settings(ocr_provider="vision"))
