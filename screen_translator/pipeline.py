"""End-to-end image and text translation."""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Protocol

from .batching import BatchOrchestrator
from .grouping import READING_ORDER, SINGLE_BLOCK, policy_for
from .ocr import crop_region, filter_detections
from .settings import DEFAULT_TARGET_LANGUAGE, Settings
from .translate import OllamaTranslationClient, build_system_prompt, strip_control_markers
from .types import (
    ImageTranslateResult,
    Region,
    TextBlock,
    TextTranslateResult,
    WordDetection,
)

logger = logging.getLogger(__name__)

REVERSE_SOURCE_LANGUAGE = "Vietnamese"


class AsyncWordDetector(Protocol):
    async def detect_words(self, image_bytes: bytes) -> List[WordDetection]:
        ...


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


def _shift_blocks(blocks: List[TextBlock], dx: float, dy: float) -> List[TextBlock]:
    if not dx and not dy:
        return blocks
    return [
        {
            "box": {
                "x": block["box"]["x"] + dx,
                "y": block["box"]["y"] + dy,
                "width": block["box"]["width"],
                "height": block["box"]["height"],
            },
            "text": block["text"],
            "confidence": block["confidence"],
        }
        for block in blocks
    ]


class ImageTranslationPipeline:
    """OCR, clustering and batched translation for one request at a time.

    The OCR engine and translation client are owned by the caller.
    """

    def __init__(
        self,
        ocr: AsyncWordDetector,
        client: OllamaTranslationClient,
        orchestrator: Optional[BatchOrchestrator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or Settings()
        self._ocr = ocr
        self._client = client
        self._orchestrator = orchestrator or BatchOrchestrator(
            client,
            batch_size=self.settings.batch_size,
            max_concurrent_batches=self.settings.max_concurrent_batches,
        )

    @property
    def model(self) -> str:
        return self._client.model

    async def translate_image(
        self,
        image_bytes: bytes,
        source_language: Optional[str] = None,
        target_language: str = DEFAULT_TARGET_LANGUAGE,
        policy: Optional[str] = None,
        region: Optional[Region] = None,
    ) -> ImageTranslateResult:
        start = time.perf_counter()
        offset = (0, 0)
        if region is not None:
            image_bytes, offset = crop_region(image_bytes, region)
        policy_name = policy or (SINGLE_BLOCK if region is not None else READING_ORDER)
        clustering = policy_for(policy_name, self.settings)

        logger.debug("translate_image: OcrInFlight")
        ocr_start = time.perf_counter()
        words = filter_detections(await self._ocr.detect_words(image_bytes), self.settings.ocr_min_confidence)
        ocr_duration = _elapsed_ms(ocr_start)
        logger.info("OCR: %d words in %.0fms", len(words), ocr_duration)

        if not words:
            logger.debug("translate_image: Done (no words)")
            return {
                "blocks": [],
                "totalDuration": _elapsed_ms(start),
                "ocrDuration": ocr_duration,
                "translateDuration": 0.0,
                "translateModel": self.model,
            }

        logger.debug("translate_image: Clustering with %s", policy_name)
        blocks = _shift_blocks(clustering.cluster(words), *offset)

        logger.debug("translate_image: TranslateInFlight (%d blocks)", len(blocks))
        translate_start = time.perf_counter()
        translated = await self._orchestrator.translate_blocks(blocks, source_language, target_language)
        translate_duration = _elapsed_ms(translate_start)

        total_duration = _elapsed_ms(start)
        logger.info("Translated %d blocks in %.0fms", len(translated), total_duration)
        return {
            "blocks": translated,
            "totalDuration": total_duration,
            "ocrDuration": ocr_duration,
            "translateDuration": translate_duration,
            "translateModel": self.model,
        }

    async def translate_text(
        self,
        prompt: str,
        source_language: Optional[str] = None,
        target_language: str = DEFAULT_TARGET_LANGUAGE,
    ) -> TextTranslateResult:
        """Translate a single text; backend failures propagate to the caller."""
        start = time.perf_counter()
        system_prompt = build_system_prompt(source_language, target_language)
        completion = await self._client.chat(system_prompt, prompt)
        return {
            "translatedText": strip_control_markers(completion["content"]),
            "model": completion["model"],
            "duration": _elapsed_ms(start),
        }

    async def reverse_translate(self, prompt: str, target_language: str) -> TextTranslateResult:
        return await self.translate_text(prompt, REVERSE_SOURCE_LANGUAGE, target_language)


__all__ = ["ImageTranslationPipeline", "AsyncWordDetector", "REVERSE_SOURCE_LANGUAGE"]
