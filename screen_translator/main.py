"""FastAPI server exposing text and image translation."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import requests
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from PIL import UnidentifiedImageError
from pydantic import BaseModel, Field, field_validator

from .grouping import POLICY_NAMES
from .ocr import OcrUnavailableError, OcrWorkerPool, build_detector
from .pipeline import REVERSE_SOURCE_LANGUAGE, ImageTranslationPipeline
from .settings import DEFAULT_TARGET_LANGUAGE, Settings, load_settings
from .translate import (
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    OllamaTranslationClient,
    TranslationError,
)
from .types import Region

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = (
    "Vietnamese",
    "English",
    "Chinese",
    "Japanese",
    "Korean",
    "French",
    "German",
    "Spanish",
    "Italian",
    "Portuguese",
    "Russian",
    "Arabic",
    "Thai",
)
REVERSE_TARGET_LANGUAGES = tuple(lang for lang in SUPPORTED_LANGUAGES if lang != REVERSE_SOURCE_LANGUAGE)

_IMAGE_CONTENT_TYPE_RE = re.compile(r"^image/(jpeg|png|gif|webp|bmp)$")


def _check_language(value: Optional[str], allowed: tuple[str, ...] = SUPPORTED_LANGUAGES) -> Optional[str]:
    if value is not None and value not in allowed:
        raise ValueError(f"language must be one of: {', '.join(allowed)}")
    return value


def _check_policy(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in POLICY_NAMES:
        raise ValueError(f"policy must be one of: {', '.join(POLICY_NAMES)}")
    return value


class TranslateRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    sourceLanguage: Optional[str] = None
    targetLanguage: str = DEFAULT_TARGET_LANGUAGE

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be blank")
        return value

    @field_validator("sourceLanguage", "targetLanguage")
    @classmethod
    def _language(cls, value: Optional[str]) -> Optional[str]:
        return _check_language(value)


class TranslateReverseRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    targetLanguage: str

    @field_validator("targetLanguage")
    @classmethod
    def _language(cls, value: str) -> str:
        _check_language(value, REVERSE_TARGET_LANGUAGES)
        return value


class RegionModel(BaseModel):
    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)
    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)


class ImageTranslateRequest(BaseModel):
    image_url: Optional[str] = None
    image_b64: Optional[str] = None
    sourceLanguage: Optional[str] = None
    targetLanguage: str = DEFAULT_TARGET_LANGUAGE
    policy: Optional[str] = None
    region: Optional[RegionModel] = None

    @field_validator("sourceLanguage", "targetLanguage")
    @classmethod
    def _language(cls, value: Optional[str]) -> Optional[str]:
        return _check_language(value)

    @field_validator("policy")
    @classmethod
    def _policy(cls, value: Optional[str]) -> Optional[str]:
        return _check_policy(value)

    def load_bytes(self) -> bytes:
        if self.image_b64:
            try:
                _, data = self.image_b64.split(",", 1)
            except ValueError:
                data = self.image_b64
            try:
                return base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise HTTPException(status_code=400, detail="image_b64 is not valid base64") from exc
        if self.image_url:
            logger.info("Fetching image from %s", self.image_url)
            try:
                response = requests.get(self.image_url, timeout=20)
            except requests.RequestException as exc:
                raise HTTPException(status_code=502, detail="Failed to fetch image URL") from exc
            if not response.ok:
                raise HTTPException(status_code=502, detail="Failed to fetch image URL")
            return response.content
        raise HTTPException(status_code=400, detail="Provide image_url or image_b64")


def _region_from_form(
    x: Optional[int], y: Optional[int], width: Optional[int], height: Optional[int]
) -> Optional[Region]:
    values = (x, y, width, height)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise HTTPException(status_code=400, detail="Region needs x, y, width and height")
    try:
        region = RegionModel(x=x, y=y, width=width, height=height)  # type: ignore[arg-type]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid region: {exc}") from exc
    return {"x": region.x, "y": region.y, "width": region.width, "height": region.height}


def _error_body(message: str, error: str, status_code: int) -> Dict[str, Any]:
    return {"message": message, "error": error, "statusCode": status_code}


def get_pipeline(request: Request) -> ImageTranslationPipeline:
    pipeline: Optional[ImageTranslationPipeline] = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Translation pipeline is not ready")
    return pipeline


async def _run_image(
    pipeline: ImageTranslationPipeline,
    image_bytes: bytes,
    source_language: Optional[str],
    target_language: str,
    policy: Optional[str],
    region: Optional[Region],
) -> Dict[str, Any]:
    try:
        result = await pipeline.translate_image(
            image_bytes,
            source_language=source_language,
            target_language=target_language,
            policy=policy,
            region=region,
        )
    except (UnidentifiedImageError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid image: {exc}") from exc
    return dict(result)


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[ImageTranslationPipeline] = None,
) -> FastAPI:
    """Build the API app; pass ``pipeline`` to skip OCR/backend construction."""
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if pipeline is not None:
            app.state.pipeline = pipeline
            yield
            return
        pool = OcrWorkerPool(build_detector(settings), settings.ocr_worker_count)
        client = OllamaTranslationClient.from_settings(settings)
        async with pool, client:
            app.state.pipeline = ImageTranslationPipeline(pool, client, settings=settings)
            logger.info("Translation backend %s (model %s)", settings.ollama_api_url, settings.ollama_model)
            yield
            app.state.pipeline = None

    app = FastAPI(title="Screen Translator API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TranslationError)
    async def _translation_error(request: Request, exc: TranslationError) -> JSONResponse:
        if isinstance(exc, BackendUnavailableError):
            status, message = 503, "Cannot connect to the translation backend"
        elif isinstance(exc, BackendTimeoutError):
            status, message = 504, "Translation backend timed out"
        elif isinstance(exc, BackendError):
            status, message = 502, "Translation backend returned an error"
        else:
            status, message = 500, "Translation failed"
        logger.error("%s: %s", message, exc)
        return JSONResponse(status_code=status, content=_error_body(message, str(exc), status))

    @app.exception_handler(OcrUnavailableError)
    async def _ocr_error(request: Request, exc: OcrUnavailableError) -> JSONResponse:
        logger.error("OCR unavailable: %s", exc)
        return JSONResponse(status_code=503, content=_error_body("OCR engine unavailable", str(exc), 503))

    @app.post("/translate")
    async def translate(
        req: TranslateRequest, pipeline: ImageTranslationPipeline = Depends(get_pipeline)
    ) -> Dict[str, Any]:
        return dict(await pipeline.translate_text(req.prompt, req.sourceLanguage, req.targetLanguage))

    @app.post("/translate/reverse")
    async def translate_reverse(
        req: TranslateReverseRequest, pipeline: ImageTranslationPipeline = Depends(get_pipeline)
    ) -> Dict[str, Any]:
        return dict(await pipeline.reverse_translate(req.prompt, req.targetLanguage))

    @app.post("/translate/image")
    async def translate_image(
        image: Optional[UploadFile] = File(None),
        sourceLanguage: Optional[str] = Form(None),
        targetLanguage: str = Form(DEFAULT_TARGET_LANGUAGE),
        policy: Optional[str] = Form(None),
        x: Optional[int] = Form(None),
        y: Optional[int] = Form(None),
        width: Optional[int] = Form(None),
        height: Optional[int] = Form(None),
        pipeline: ImageTranslationPipeline = Depends(get_pipeline),
    ) -> Dict[str, Any]:
        if image is None:
            raise HTTPException(status_code=400, detail='Upload an image with the field name "image"')
        if not _IMAGE_CONTENT_TYPE_RE.match(image.content_type or ""):
            raise HTTPException(status_code=400, detail=f"Unsupported image type {image.content_type!r}")
        try:
            _check_language(sourceLanguage)
            _check_language(targetLanguage)
            _check_policy(policy)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        region = _region_from_form(x, y, width, height)

        image_bytes = await image.read()
        if not image_bytes:
            raise HTTPException(status_code=400, detail="Uploaded image is empty")
        if len(image_bytes) > settings.max_upload_bytes:
            raise HTTPException(status_code=413, detail="Uploaded image is too large")
        return await _run_image(pipeline, image_bytes, sourceLanguage, targetLanguage, policy, region)

    @app.post("/translate/image/json")
    async def translate_image_json(
        req: ImageTranslateRequest, pipeline: ImageTranslationPipeline = Depends(get_pipeline)
    ) -> Dict[str, Any]:
        image_bytes = await asyncio.to_thread(req.load_bytes)
        if len(image_bytes) > settings.max_upload_bytes:
            raise HTTPException(status_code=413, detail="Image is too large")
        region: Optional[Region] = None
        if req.region is not None:
            region = {"x": req.region.x, "y": req.region.y, "width": req.region.width, "height": req.region.height}
        return await _run_image(pipeline, image_bytes, req.sourceLanguage, req.targetLanguage, req.policy, region)

    @app.get("/languages")
    def languages() -> Dict[str, List[str]]:
        return {"languages": list(SUPPORTED_LANGUAGES), "reverse": list(REVERSE_TARGET_LANGUAGES)}

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    return app


app: FastAPI = create_app()


__all__ = ["app", "create_app", "SUPPORTED_LANGUAGES", "REVERSE_TARGET_LANGUAGES"]
