from __future__ import annotations

"""
Turn one audio upload into one normalized transcription.

Design intent:
- Fail fast on bad input before any upstream traffic.
- Report "feature disabled" (NotConfigured) separately from "feature failed".
- Share nothing mutable across requests; config is read-only after startup.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

import requests

from .config import DictationConfig
from .contracts import (
    AudioSegment,
    NotConfiguredResult,
    TranscriptionOptions,
    TranscriptionRequest,
    TranscriptionResult,
)
from .errors import STTError
from .normalizer import (
    error_body,
    normalize_error,
    not_configured_envelope,
    status_code_for,
    success_body,
)
from .audio_utils import is_audio_mime
from .stt.registry import build_provider, get_provider_spec, is_provider_configured

logger = logging.getLogger(__name__)

GatewayOutcome = Union[TranscriptionResult, NotConfiguredResult]
DisconnectProbe = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int
    body: dict[str, Any]


class TranscriptionGateway:
    def __init__(
        self,
        cfg: DictationConfig,
        *,
        session_factory: Optional[Callable[[], requests.Session]] = None,
        disconnect_poll_sec: float = 0.25,
    ) -> None:
        self._cfg = cfg
        self._session_factory = session_factory
        self._disconnect_poll_sec = disconnect_poll_sec

    @property
    def provider_id(self) -> str:
        return self._cfg.SPEECH_PROVIDER

    def validate(self, segment: AudioSegment, provider_id: Optional[str] = None) -> None:
        provider = provider_id or self.provider_id
        if not is_audio_mime(segment.mime_type):
            raise STTError(
                "InvalidInput",
                f"Only audio uploads are accepted (got {segment.mime_type or 'no content type'}).",
                provider,
            )
        if segment.size_bytes == 0:
            raise STTError("InvalidInput", "Uploaded audio is empty.", provider)
        max_bytes = int(self._cfg.SPEECH_MAX_UPLOAD_BYTES)
        if segment.size_bytes > max_bytes:
            raise STTError(
                "PayloadTooLarge",
                f"Uploaded audio exceeds the {max_bytes} byte limit.",
                provider,
            )

    def check_configured(self, provider_id: Optional[str] = None) -> Optional[NotConfiguredResult]:
        provider = (provider_id or self.provider_id).strip().lower()
        spec = get_provider_spec(provider)
        if spec is None:
            return NotConfiguredResult(provider=provider, reason=f"Unknown speech provider '{provider}'.")
        if not spec.server_side:
            return NotConfiguredResult(
                provider=provider,
                reason="Server-side transcription is disabled; the browser recognizes speech locally.",
            )
        if not is_provider_configured(self._cfg.provider_config(provider)):
            return NotConfiguredResult(
                provider=provider,
                reason=f"Please set SPEECH_API_KEY (or the {provider} key) to enable transcription.",
            )
        return None

    async def transcribe(
        self,
        request: TranscriptionRequest,
        *,
        is_disconnected: Optional[DisconnectProbe] = None,
    ) -> GatewayOutcome:
        """Validate, dispatch and wait; raises STTError for every failure."""
        self.validate(request.segment, request.provider_id)
        not_configured = self.check_configured(request.provider_id)
        if not_configured is not None:
            logger.info(
                "speech.not_configured provider=%s reason=%s",
                not_configured.provider,
                not_configured.reason,
            )
            return not_configured

        provider_cfg = self._cfg.provider_config(request.provider_id)
        session = self._session_factory() if self._session_factory is not None else None
        provider = build_provider(provider_cfg, session)
        audio = request.segment.take()
        cancel_event = threading.Event()
        watcher: Optional[asyncio.Task] = None
        if is_disconnected is not None:
            watcher = asyncio.create_task(self._watch_disconnect(is_disconnected, cancel_event))

        timeout = float(self._cfg.SPEECH_REQUEST_TIMEOUT_SEC)
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    provider.transcribe,
                    audio,
                    request.segment.mime_type,
                    request.options,
                    cancel_event,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            cancel_event.set()
            raise STTError(
                "Timeout",
                f"transcription exceeded the {timeout:.1f}s request limit",
                provider.name(),
            ) from exc
        except asyncio.CancelledError:
            cancel_event.set()
            raise
        finally:
            if watcher is not None:
                watcher.cancel()
            provider.close()

        logger.info(
            "speech.transcribed provider=%s status=%s chars=%s elapsed_ms=%s",
            result.provider,
            result.status,
            len(result.text),
            int((time.monotonic() - started) * 1000),
        )
        return result

    async def _watch_disconnect(self, is_disconnected: DisconnectProbe, cancel_event: threading.Event) -> None:
        while not cancel_event.is_set():
            if await is_disconnected():
                logger.info("speech.client_disconnected provider=%s", self.provider_id)
                cancel_event.set()
                return
            await asyncio.sleep(self._disconnect_poll_sec)

    async def process(
        self,
        segment: AudioSegment,
        options: TranscriptionOptions,
        *,
        provider_id: Optional[str] = None,
        is_disconnected: Optional[DisconnectProbe] = None,
    ) -> GatewayResponse:
        """Same as `transcribe`, rendered as an HTTP status and JSON body."""
        provider = provider_id or self.provider_id
        secret = self._cfg.provider_config(provider).credential
        try:
            request = TranscriptionRequest(provider, segment, options)
            outcome = await self.transcribe(request, is_disconnected=is_disconnected)
        except STTError as exc:
            envelope = normalize_error(exc, provider, secret=secret)
            level = logging.INFO if exc.code in {"InvalidInput", "PayloadTooLarge"} else logging.WARNING
            logger.log(level, "speech.failed provider=%s kind=%s", provider, exc.code)
            return GatewayResponse(status_code_for(envelope.kind), error_body(envelope))
        except Exception as exc:
            logger.exception("speech.unexpected_error provider=%s", provider)
            envelope = normalize_error(exc, provider, secret=secret)
            return GatewayResponse(status_code_for(envelope.kind), error_body(envelope))

        if isinstance(outcome, NotConfiguredResult):
            envelope = not_configured_envelope(outcome)
            return GatewayResponse(status_code_for(envelope.kind), error_body(envelope))
        return GatewayResponse(200, success_body(outcome))
