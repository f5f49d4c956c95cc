"""Client for the Ollama-compatible chat backend that performs translations."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, Mapping, Optional, TypedDict

import httpx

from .settings import DEFAULT_OLLAMA_API_URL, DEFAULT_OLLAMA_MODEL, Settings

logger = logging.getLogger(__name__)

_THINK_BLOCK_RE = re.compile(r"\s*<think>.*?</think>\s*", re.IGNORECASE | re.DOTALL)
_THINK_TAG_RE = re.compile(r"\s*</?think>\s*", re.IGNORECASE)
_DIRECTIVE_RE = re.compile(r"\s*/(?:no_think|think)\b\s*", re.IGNORECASE)
_LEADING_DIRECTIVE_RE = re.compile(r"^\s*/(?:no_think|think)(?=\s|$)\s*", re.IGNORECASE)


class TranslationError(Exception):
    """Base class for failures talking to the translation backend."""


class BackendUnavailableError(TranslationError):
    """The backend could not be reached."""


class BackendError(TranslationError):
    """The backend answered with an error status or an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendTimeoutError(TranslationError, TimeoutError):
    """The backend did not answer before the configured deadline."""


class MalformedResponseError(TranslationError):
    """The completion did not contain a JSON object."""


class ChatCompletion(TypedDict):
    content: str
    model: str


def build_system_prompt(source_language: Optional[str], target_language: str) -> str:
    if source_language:
        task = f"Translate the text from {source_language} into {target_language}."
    else:
        task = f"Detect the language of the text automatically and translate it into {target_language}."
    return (
        f"You are a professional translator. {task}\n"
        "REQUIREMENTS:\n"
        "- Return ONLY the translation, without explanations.\n"
        "- Keep the original formatting: line breaks, paragraphs and lists.\n"
        "- Do not translate technical terms or domain-specific jargon.\n"
        f"- Translate naturally, in a way that fits {target_language} usage."
    )


def build_batch_system_prompt(source_language: Optional[str], target_language: str) -> str:
    return (
        build_system_prompt(source_language, target_language)
        + "\n"
        "- The input is a JSON object mapping ids to texts. Reply with a single JSON object "
        "that has exactly the same keys, each value replaced by its translation.\n"
        "- Return JSON only, with no surrounding prose or code fences."
    )


def strip_control_markers(text: str) -> str:
    """Remove reasoning sections and think directives from a completion."""
    text = _THINK_BLOCK_RE.sub(" ", text)
    text = _THINK_TAG_RE.sub(" ", text)
    text = _DIRECTIVE_RE.sub(" ", text)
    return text.strip()


def _strip_think_blocks(text: str) -> str:
    """Like ``strip_control_markers`` but leaves ``/think`` inside the text alone."""
    text = _THINK_BLOCK_RE.sub(" ", text)
    text = _THINK_TAG_RE.sub(" ", text)
    return _LEADING_DIRECTIVE_RE.sub("", text).strip()


def _balanced_end(text: str, start: int) -> int:
    """Index of the brace closing the one at ``start``, or -1."""
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return idx
    return -1


def extract_json_object(text: str) -> Dict[str, Any]:
    """Return the first balanced ``{...}`` substring that parses as a JSON object."""
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end != -1:
            try:
                data = json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                data = None
            if isinstance(data, dict):
                return data
        start = text.find("{", start + 1)
    raise MalformedResponseError("no JSON object found in completion")


class OllamaTranslationClient:
    """Stateless wrapper around ``POST /api/chat``.

    Every request carries ``timeout`` seconds as its deadline. Pass
    ``http_client`` to share a connection pool; the caller then owns it.
    """

    def __init__(
        self,
        host: str = DEFAULT_OLLAMA_API_URL,
        model: str = DEFAULT_OLLAMA_MODEL,
        *,
        timeout: float = 30.0,
        temperature: float = 0.1,
        num_ctx: int = 4096,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.num_ctx = num_ctx
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout, headers=headers)
        if http_client is not None and headers:
            self._http.headers.update(headers)

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "OllamaTranslationClient":
        return cls(
            settings.ollama_api_url,
            settings.ollama_model,
            timeout=settings.translate_timeout_seconds,
            temperature=settings.translate_temperature,
            num_ctx=settings.ollama_num_ctx,
            api_key=settings.ollama_api_key,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "OllamaTranslationClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def chat(self, system_prompt: str, user_prompt: str) -> ChatCompletion:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt.strip()},
            ],
            "stream": False,
            "think": False,
            "options": {"temperature": self.temperature, "num_ctx": self.num_ctx},
        }
        url = f"{self.host}/api/chat"
        try:
            response = await asyncio.wait_for(
                self._http.post(url, json=payload, timeout=self.timeout),
                timeout=self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise BackendTimeoutError(f"translation backend timed out after {self.timeout}s") from exc
        except httpx.RequestError as exc:
            raise BackendUnavailableError(f"cannot reach translation backend at {self.host}: {exc}") from exc

        if not response.is_success:
            raise BackendError(
                f"translation backend returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            body: Any = response.json()
        except ValueError as exc:
            raise BackendError("translation backend returned a non-JSON body", response.status_code) from exc

        message = body.get("message") if isinstance(body, dict) else None
        if isinstance(message, dict):
            content = message.get("content") or ""
        elif isinstance(message, str):
            content = message
        else:
            content = ""
        model = body.get("model") if isinstance(body, dict) else None
        return {"content": str(content), "model": str(model or self.model)}

    async def translate_one(self, system_prompt: str, text: str) -> str:
        completion = await self.chat(system_prompt, text)
        return strip_control_markers(completion["content"])

    async def translate_batch_json(self, system_prompt: str, index_to_text: Mapping[str, str]) -> Dict[str, str]:
        """Translate many texts in one call, multiplexed as a JSON object.

        Keys missing from the reply are simply absent from the result. A reply
        without any JSON object yields an empty mapping; transport errors still
        propagate.
        """
        if not index_to_text:
            return {}
        user_prompt = json.dumps(dict(index_to_text), ensure_ascii=False)
        completion = await self.chat(system_prompt, user_prompt)
        raw = _strip_think_blocks(completion["content"])
        try:
            data = extract_json_object(raw)
        except MalformedResponseError:
            logger.warning(
                "Could not parse JSON from batch completion (%d items): %.200s",
                len(index_to_text),
                raw,
            )
            return {}

        translations: Dict[str, str] = {}
        for key, value in data.items():
            if key in index_to_text and isinstance(value, str):
                translations[key] = _strip_think_blocks(value)
        return translations


__all__ = [
    "TranslationError",
    "BackendUnavailableError",
    "BackendError",
    "BackendTimeoutError",
    "MalformedResponseError",
    "ChatCompletion",
    "build_system_prompt",
    "build_batch_system_prompt",
    "strip_control_markers",
    "extract_json_object",
    "OllamaTranslationClient",
]
