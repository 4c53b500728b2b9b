from __future__ import annotations

import threading
from abc import abstractmethod
from typing import Any, Optional

from ..contracts import TranscriptionOptions, TranscriptionResult
from .base import HTTPTranscriber


class SingleShotTranscriber(HTTPTranscriber):
    """One request carries the audio; the response holds the transcript."""

    protocol = "single_shot"

    @abstractmethod
    def _send(self, audio: bytes, mime_type: str, options: TranscriptionOptions) -> dict[str, Any]: ...

    @staticmethod
    @abstractmethod
    def parse_response(payload: dict[str, Any]) -> TranscriptionResult:
        """Validate the provider's nested shape and extract the transcript; ValueError if absent."""

    def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        options: TranscriptionOptions,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscriptionResult:
        self._check_cancelled(cancel_event, "request")
        payload = self._send(audio, mime_type, options)
        try:
            return self.parse_response(payload)
        except ValueError as exc:
            raise self._fail("MalformedUpstreamResponse", str(exc)) from exc
