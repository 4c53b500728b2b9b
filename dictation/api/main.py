from __future__ import annotations

"""
Speech API surface for the dictation gateway.

Design intent:
- Keep API orchestration thin; the gateway owns validation and provider dispatch.
- Answer every failure with the same JSON envelope and a predictable status code.
- Load configuration once and keep it read-only for the life of the process.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import requests
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from dictation.internal_core.config import DictationConfig, load_config
from dictation.internal_core.contracts import AudioSegment, TranscriptionOptions
from dictation.internal_core.errors import STTError
from dictation.internal_core.gateway import TranscriptionGateway
from dictation.internal_core.normalizer import error_body, normalize_error, status_code_for
from dictation.internal_core.stt.registry import (
    get_provider_spec,
    is_provider_configured,
    provider_catalog,
    provider_info,
)

app = FastAPI(title="dictation speech gateway")
logger = logging.getLogger(__name__)

_BOOT_CONFIG = load_config()
logging.getLogger("dictation").setLevel(_BOOT_CONFIG.DICTATION_LOG_LEVEL.upper())

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_BOOT_CONFIG.DICTATION_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}


def _get_speech_config() -> DictationConfig:
    existing = getattr(app.state, "speech_config", None)
    if isinstance(existing, DictationConfig):
        return existing
    setattr(app.state, "speech_config", _BOOT_CONFIG)
    return _BOOT_CONFIG


def _get_session_factory() -> Optional[Callable[[], requests.Session]]:
    factory = getattr(app.state, "speech_http_session_factory", None)
    return factory if callable(factory) else None


def _get_gateway() -> TranscriptionGateway:
    return TranscriptionGateway(_get_speech_config(), session_factory=_get_session_factory())


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _form_bool(value: Any, default: bool) -> bool:
    if value is None or isinstance(value, UploadFile):
        return default
    text = str(value).strip().lower()
    if not text:
        return default
    return text in _TRUE_VALUES


def _form_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, UploadFile):
        return None
    text = str(value).strip()
    return text or None


def _error_response(exc: BaseException, provider: str) -> JSONResponse:
    envelope = normalize_error(exc, provider)
    return JSONResponse(status_code=status_code_for(envelope.kind), content=error_body(envelope))


def _provider_configured(cfg: DictationConfig, provider: str) -> bool:
    spec = get_provider_spec(provider)
    if spec is None:
        return False
    if not spec.server_side:
        return True
    return is_provider_configured(cfg.provider_config(provider))


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/speech/transcribe")
async def transcribe_speech(request: Request) -> JSONResponse:
    cfg = _get_speech_config()
    provider = cfg.SPEECH_PROVIDER
    form = await request.form()
    try:
        upload = form.get("audio")
        if not isinstance(upload, UploadFile):
            return _error_response(
                STTError("InvalidInput", "Please upload an audio file in the 'audio' field.", provider),
                provider,
            )

        max_bytes = int(cfg.SPEECH_MAX_UPLOAD_BYTES)
        # Read at most one byte past the ceiling.
        payload = await upload.read(max_bytes + 1)
        mime_type = str(upload.content_type or "")
        logger.info(
            "speech.transcribe provider=%s bytes=%s mime=%s",
            provider,
            len(payload),
            mime_type or "-",
        )

        try:
            options = TranscriptionOptions(
                language=_form_str(form.get("language")) or cfg.SPEECH_LANGUAGE or "en-US",
                diarization=_form_bool(form.get("diarization"), False),
                timestamps=_form_bool(form.get("timestamps"), False),
                punctuate=_form_bool(form.get("punctuate"), True),
                model=_form_str(form.get("model")),
            )
        except ValidationError as exc:
            return _error_response(
                STTError("InvalidInput", f"Invalid transcription options ({exc.error_count()} errors).", provider),
                provider,
            )

        segment = AudioSegment(payload, mime_type, session_id=_form_str(form.get("session_id")) or "")
        response = await _get_gateway().process(
            segment,
            options,
            provider_id=provider,
            is_disconnected=request.is_disconnected,
        )
    finally:
        await form.close()

    return JSONResponse(status_code=response.status_code, content=response.body)


@app.get("/api/speech/config")
async def speech_config() -> dict[str, Any]:
    cfg = _get_speech_config()
    provider = cfg.SPEECH_PROVIDER
    return {
        "currentProvider": provider,
        "hasApiKey": cfg.provider_config(provider).has_credential,
        "isConfigured": _provider_configured(cfg, provider),
        "providerInfo": provider_info(provider),
        "allProviders": provider_catalog(),
    }


@app.get("/api/speech/health")
async def speech_health() -> dict[str, Any]:
    cfg = _get_speech_config()
    return {
        "status": "ok",
        "provider": cfg.SPEECH_PROVIDER,
        "configured": _provider_configured(cfg, cfg.SPEECH_PROVIDER),
        "timestamp": _utc_now_iso(),
    }


@app.post("/api/speech/test")
async def speech_self_test() -> JSONResponse:
    cfg = _get_speech_config()
    provider = cfg.SPEECH_PROVIDER
    spec = get_provider_spec(provider)

    if spec is None:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "unknown provider",
                "message": f"SPEECH_PROVIDER={provider!r} is not a supported provider.",
                "provider": provider,
            },
        )
    if not spec.server_side:
        return JSONResponse(
            content={
                "success": True,
                "message": "Browser-based speech recognition should be tested on the client.",
                "provider": provider,
            }
        )
    if not is_provider_configured(cfg.provider_config(provider)):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "API key not configured",
                "message": f"Please set SPEECH_API_KEY for {provider}.",
                "provider": provider,
            },
        )
    return JSONResponse(
        content={
            "success": True,
            "message": f"Speech service configured with {provider}",
            "provider": provider,
            "protocol": spec.protocol,
            "hasApiKey": cfg.provider_config(provider).has_credential,
        }
    )
