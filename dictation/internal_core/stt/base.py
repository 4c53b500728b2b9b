from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests

from ..config import ProviderConfig
from ..contracts import TranscriptionOptions, TranscriptionResult
from ..errors import STTError, redact_secret

logger = logging.getLogger(__name__)

_BODY_SUMMARY_CHARS = 200


def summarize_body(response: Any) -> str:
    text = " ".join(str(getattr(response, "text", "") or "").split())
    if len(text) > _BODY_SUMMARY_CHARS:
        text = text[:_BODY_SUMMARY_CHARS] + "…"
    return text


class STTProvider(ABC):
    @abstractmethod
    def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        options: TranscriptionOptions,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscriptionResult: ...

    @abstractmethod
    def name(self) -> str: ...

    def close(self) -> None:
        return None


class HTTPTranscriber(STTProvider):
    """Shared plumbing for providers reached over HTTPS with `requests`."""

    default_base_url = ""

    def __init__(self, cfg: ProviderConfig, session: Optional[requests.Session] = None):
        self._cfg = cfg
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()
        self._base_url = (cfg.base_url or self.default_base_url).rstrip("/")

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def _fail(self, code: str, message: str, *, status_code: Optional[int] = None) -> STTError:
        return STTError(
            code,
            redact_secret(message, self._cfg.credential),
            self.name(),
            status_code=status_code,
        )

    def _check_cancelled(self, cancel_event: Optional[threading.Event], phase: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise self._fail("Cancelled", f"{phase} cancelled by caller")

    def _call(
        self,
        phase: str,
        method: str,
        url: str,
        *,
        timeout: float,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """One HTTP round trip; returns the decoded JSON object or raises STTError."""
        try:
            response = self._session.request(method, url, timeout=timeout, **kwargs)
        except requests.Timeout as exc:
            raise self._fail("Timeout", f"{phase} timed out after {timeout:.1f}s") from exc
        except requests.RequestException as exc:
            raise self._fail("UpstreamError", f"{phase} request failed: {type(exc).__name__}: {exc}") from exc

        status = int(response.status_code)
        if status < 200 or status >= 300:
            reason = str(getattr(response, "reason", "") or "").strip()
            detail = summarize_body(response)
            logger.warning(
                "stt.http_failed provider=%s phase=%s status=%s",
                self.name(),
                phase,
                status,
            )
            message = f"{phase} failed: HTTP {status}"
            if reason:
                message += f" {reason}"
            if detail:
                message += f": {detail}"
            raise self._fail("UpstreamError", message, status_code=status)

        try:
            payload = response.json()
        except ValueError as exc:
            raise self._fail("MalformedUpstreamResponse", f"{phase} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise self._fail(
                "MalformedUpstreamResponse",
                f"{phase} returned {type(payload).__name__}, expected a JSON object",
            )
        return payload
