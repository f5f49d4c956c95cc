"""Concurrent, failure-tolerant translation of text blocks in JSON batches."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Tuple, TypeVar

from .translate import TranslationError, build_batch_system_prompt
from .types import TextBlock, TranslatedBlock

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
MAX_CONCURRENT_BATCHES = 8

T = TypeVar("T")


class BatchTranslator(Protocol):
    async def translate_batch_json(self, system_prompt: str, index_to_text: Dict[str, str]) -> Dict[str, str]:
        ...


def chunk(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class BatchOrchestrator:
    def __init__(
        self,
        client: BatchTranslator,
        batch_size: int = BATCH_SIZE,
        max_concurrent_batches: int = MAX_CONCURRENT_BATCHES,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrent_batches < 1:
            raise ValueError("max_concurrent_batches must be at least 1")
        self._client = client
        self.batch_size = batch_size
        self.max_concurrent_batches = max_concurrent_batches

    async def _translate_batch(
        self,
        batch_index: int,
        texts: List[str],
        system_prompt: str,
        slots: asyncio.Semaphore,
    ) -> Dict[str, str]:
        payload = {str(idx): text for idx, text in enumerate(texts)}
        async with slots:
            try:
                return await self._client.translate_batch_json(system_prompt, payload)
            except TranslationError as exc:
                logger.error(
                    "Translation backend failed for batch %s (size %s): %s",
                    batch_index,
                    len(texts),
                    exc,
                )
                return {}

    async def translate_blocks(
        self,
        blocks: Sequence[TextBlock],
        source_language: Optional[str],
        target_language: str,
    ) -> List[TranslatedBlock]:
        """Translate ``blocks``, keeping the input order and every bounding box.

        Blank blocks are dropped. Any block whose translation is unavailable
        keeps its original text as the translation.
        """
        pending: List[Tuple[TextBlock, str]] = []
        for block in blocks:
            text = block["text"].strip()
            if text:
                pending.append((block, text))
        if not pending:
            return []

        system_prompt = build_batch_system_prompt(source_language, target_language)
        batches = list(chunk(pending, self.batch_size))
        slots = asyncio.Semaphore(self.max_concurrent_batches)
        logger.debug("Dispatching %d blocks in %d batches", len(pending), len(batches))

        results = await asyncio.gather(
            *(
                self._translate_batch(idx, [text for _, text in batch], system_prompt, slots)
                for idx, batch in enumerate(batches)
            ),
            return_exceptions=True,
        )

        translated: List[TranslatedBlock] = []
        for batch_index, (batch, result) in enumerate(zip(batches, results)):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error translating batch %s (size %s): %r",
                    batch_index,
                    len(batch),
                    result,
                )
                result = {}
            for idx, (block, text) in enumerate(batch):
                translation = result.get(str(idx), "").strip()
                translated.append(
                    {
                        "box": block["box"],
                        "originalText": text,
                        "translatedText": translation or text,
                        "confidence": block["confidence"],
                    }
                )
        return translated


__all__ = ["BATCH_SIZE", "MAX_CONCURRENT_BATCHES", "BatchTranslator", "chunk", "BatchOrchestrator"]
