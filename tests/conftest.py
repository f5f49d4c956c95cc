"""Shared fixtures for the screen translator tests."""

from __future__ import annotations

import io
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
from PIL import Image

from screen_translator.translate import OllamaTranslationClient
from screen_translator.types import WordDetection


def word(text: str, x0: float, y0: float, x1: float, y1: float, confidence: float = 90.0) -> WordDetection:
    return {"text": text, "confidence": confidence, "box": {"x0": x0, "y0": y0, "x1": x1, "y1": y1}}


def chat_reply(content: str, model: str = "qwen3:8b") -> httpx.Response:
    return httpx.Response(200, json={"model": model, "message": {"role": "assistant", "content": content}})


def user_payload(request: httpx.Request) -> Dict[str, str]:
    """Decode the JSON batch sent as the user message of a chat request."""
    body = json.loads(request.content)
    return json.loads(body["messages"][1]["content"])


class FakeOcr:
    """Async OCR stand-in returning canned words."""

    def __init__(self, words: List[WordDetection]) -> None:
        self.words = words
        self.calls: List[bytes] = []

    async def detect_words(self, image_bytes: bytes) -> List[WordDetection]:
        self.calls.append(image_bytes)
        return list(self.words)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_client() -> Callable[..., OllamaTranslationClient]:
    """Build a translation client whose HTTP traffic goes to ``handler``."""

    def _make(handler: Callable[[httpx.Request], Any], **kwargs: Any) -> OllamaTranslationClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return OllamaTranslationClient("http://ollama.test", "qwen3:8b", http_client=http_client, **kwargs)

    return _make


@pytest.fixture
def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (200, 100), "white").save(buffer, format="PNG")
    return buffer.getvalue()
