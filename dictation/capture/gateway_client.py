from __future__ import annotations

import logging
from typing import Any, Optional, Union

import requests
from pydantic import ValidationError

from dictation.internal_core.audio_utils import suffix_for_mime
from dictation.internal_core.contracts import (
    ERROR_KINDS,
    AudioSegment,
    NotConfiguredResult,
    TranscriptionOptions,
    TranscriptionResult,
)
from dictation.internal_core.errors import STTError

logger = logging.getLogger(__name__)

_RESULT_FIELDS = set(TranscriptionResult.model_fields)


class GatewayClient:
    """HTTP client for the speech gateway, used by the capture controller to ship finished audio."""

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_sec: float = 180.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()
        self._timeout_sec = float(timeout_sec)

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def transcribe(
        self,
        segment: AudioSegment,
        options: Optional[TranscriptionOptions] = None,
    ) -> Union[TranscriptionResult, NotConfiguredResult]:
        options = options or TranscriptionOptions()
        audio = segment.take()
        form = {
            "language": options.language,
            "diarization": str(options.diarization).lower(),
            "timestamps": str(options.timestamps).lower(),
            "punctuate": str(options.punctuate).lower(),
        }
        if options.model:
            form["model"] = options.model
        if segment.session_id:
            form["session_id"] = segment.session_id

        payload, status = self._request(
            "POST",
            "/api/speech/transcribe",
            files={"audio": (f"recording{suffix_for_mime(segment.mime_type)}", audio, segment.mime_type)},
            data=form,
        )
        if status == 200 and payload.get("success") is True:
            try:
                return TranscriptionResult.model_validate(
                    {key: value for key, value in payload.items() if key in _RESULT_FIELDS}
                )
            except ValidationError as exc:
                raise STTError(
                    "MalformedUpstreamResponse",
                    f"gateway returned an invalid transcription ({exc.error_count()} errors)",
                    "gateway",
                ) from exc

        kind = str(payload.get("kind") or "")
        provider = str(payload.get("provider") or "gateway")
        message = str(payload.get("message") or payload.get("error") or f"HTTP {status}")
        if kind == "NotConfigured" or (status == 503 and payload.get("error") == "not configured"):
            logger.info("capture.gateway_not_configured provider=%s", provider)
            return NotConfiguredResult(provider=provider, reason=message)
        if kind not in ERROR_KINDS:
            kind = "UpstreamError" if status >= 500 else "Unknown"
        raise STTError(kind, message, provider, status_code=status)

    def fetch_config(self) -> dict[str, Any]:
        payload, status = self._request("GET", "/api/speech/config")
        if status != 200:
            raise STTError("UpstreamError", f"config request failed: HTTP {status}", "gateway", status_code=status)
        return payload

    def _request(self, method: str, path: str, **kwargs: Any) -> tuple[dict[str, Any], int]:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout_sec, **kwargs)
        except requests.Timeout as exc:
            raise STTError("Timeout", f"gateway did not answer within {self._timeout_sec:.1f}s", "gateway") from exc
        except requests.RequestException as exc:
            raise STTError("UpstreamError", f"gateway unreachable: {type(exc).__name__}", "gateway") from exc

        status = int(response.status_code)
        try:
            payload = response.json()
        except ValueError as exc:
            raise STTError(
                "MalformedUpstreamResponse",
                f"gateway returned a non-JSON body (HTTP {status})",
                "gateway",
                status_code=status,
            ) from exc
        if not isinstance(payload, dict):
            raise STTError(
                "MalformedUpstreamResponse",
                "gateway returned a non-object JSON body",
                "gateway",
                status_code=status,
            )
        return payload, status
