"""Tests for environment-driven settings."""

import pytest

from screen_translator.settings import Settings, load_settings


def test_defaults_from_empty_environment():
    settings = load_settings({})
    assert settings == Settings()
    assert settings.batch_size == 20
    assert settings.word_gap_threshold == 50
    assert settings.line_height_threshold == 10
    assert settings.translate_timeout_seconds == 30


def test_overrides_from_environment():
    settings = load_settings(
        {
            "OLLAMA_API_URL": "http://gpu-box:11434/",
            "OLLAMA_MODEL": "qwen3:4b",
            "TRANSLATE_BATCH_SIZE": "5",
            "TRANSLATE_TIMEOUT_SECONDS": "2.5",
            "WORD_GAP_THRESHOLD": "12",
            "OCR_PROVIDER": " Vision ",
            "ALLOWED_CORS_ORIGINS": "http://a.test, http://b.test",
        }
    )
    assert settings.ollama_api_url == "http://gpu-box:11434"
    assert settings.ollama_model == "qwen3:4b"
    assert settings.batch_size == 5
    assert settings.translate_timeout_seconds == 2.5
    assert settings.word_gap_threshold == 12
    assert settings.ocr_provider == "vision"
    assert settings.allowed_cors_origins == ["http://a.test", "http://b.test"]


def test_malformed_number_names_the_variable():
    with pytest.raises(ValueError, match="TRANSLATE_BATCH_SIZE"):
        load_settings({"TRANSLATE_BATCH_SIZE": "twenty"})
