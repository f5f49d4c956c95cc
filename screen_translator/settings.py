"""Environment-driven configuration for the translator service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from .geometry import LINE_HEIGHT_THRESHOLD, WORD_GAP_THRESHOLD

DEFAULT_OLLAMA_API_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "qwen3:8b"
DEFAULT_TARGET_LANGUAGE = "Vietnamese"
DEFAULT_OCR_LANGUAGES = "eng+chi_sim+jpn+kor+vie"


@dataclass(frozen=True)
class Settings:
    ollama_api_url: str = DEFAULT_OLLAMA_API_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    ollama_api_key: Optional[str] = None
    translate_timeout_seconds: float = 30.0
    translate_temperature: float = 0.1
    ollama_num_ctx: int = 4096
    batch_size: int = 20
    max_concurrent_batches: int = 8
    word_gap_threshold: float = WORD_GAP_THRESHOLD
    line_height_threshold: float = LINE_HEIGHT_THRESHOLD
    ocr_min_confidence: float = 30.0
    ocr_provider: str = "tesseract"
    ocr_languages: str = DEFAULT_OCR_LANGUAGES
    ocr_worker_count: int = 6
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_cors_origins: List[str] = field(default_factory=lambda: ["*"])


def _as_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _as_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from ``env`` (defaults to ``os.environ`` after loading ``.env``)."""
    if env is None:
        load_dotenv()
        env = os.environ

    raw_origins = env.get("ALLOWED_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()] or ["*"]

    return Settings(
        ollama_api_url=env.get("OLLAMA_API_URL", DEFAULT_OLLAMA_API_URL).rstrip("/"),
        ollama_model=env.get("OLLAMA_MODEL", DEFAULT_OLLAMA_MODEL),
        ollama_api_key=env.get("OLLAMA_API_KEY") or None,
        translate_timeout_seconds=_as_float(env, "TRANSLATE_TIMEOUT_SECONDS", 30.0),
        translate_temperature=_as_float(env, "TRANSLATE_TEMPERATURE", 0.1),
        ollama_num_ctx=_as_int(env, "OLLAMA_NUM_CTX", 4096),
        batch_size=_as_int(env, "TRANSLATE_BATCH_SIZE", 20),
        max_concurrent_batches=_as_int(env, "TRANSLATE_MAX_CONCURRENT_BATCHES", 8),
        word_gap_threshold=_as_float(env, "WORD_GAP_THRESHOLD", WORD_GAP_THRESHOLD),
        line_height_threshold=_as_float(env, "LINE_HEIGHT_THRESHOLD", LINE_HEIGHT_THRESHOLD),
        ocr_min_confidence=_as_float(env, "OCR_MIN_CONFIDENCE", 30.0),
        ocr_provider=env.get("OCR_PROVIDER", "tesseract").lower().strip(),
        ocr_languages=env.get("OCR_LANGUAGES", DEFAULT_OCR_LANGUAGES),
        ocr_worker_count=_as_int(env, "OCR_WORKER_COUNT", 6),
        max_upload_bytes=_as_int(env, "MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        allowed_cors_origins=origins,
    )


__all__ = ["Settings", "load_settings", "DEFAULT_TARGET_LANGUAGE"]
