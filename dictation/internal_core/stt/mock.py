from __future__ import annotations

import threading
from typing import Optional

from ..contracts import TranscriptionOptions, TranscriptionResult
from ..normalizer import normalize_result
from .base import STTProvider


class MockSTTProvider(STTProvider):
    protocol = "local"

    def __init__(self) -> None:
        self._counter = 0
        self._lock = threading.Lock()

    def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        options: TranscriptionOptions,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscriptionResult:
        with self._lock:
            self._counter += 1
            counter = self._counter
        return normalize_result(
            self.name(),
            {
                "text": f"(mock) simulated transcript {counter} for {len(audio)} bytes of {mime_type}.",
                "confidence": 1.0,
                "language": options.language,
            },
        )

    def name(self) -> str:
        return "mock"
