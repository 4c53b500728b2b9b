from __future__ import annotations

import threading
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, model_validator

ErrorKind = Literal[
    "PermissionDenied",
    "DeviceNotFound",
    "DeviceBusy",
    "Unsupported",
    "InvalidInput",
    "PayloadTooLarge",
    "NotConfigured",
    "UpstreamError",
    "Timeout",
    "MalformedUpstreamResponse",
    "Cancelled",
    "Unknown",
]

ERROR_KINDS: frozenset[str] = frozenset(get_args(ErrorKind))

TranscriptionStatus = Literal["success", "partial", "failed"]

ProtocolKind = Literal["two_phase", "single_shot", "local", "client_side"]


class WordTimestamp(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    speaker: Optional[str] = None

    @model_validator(mode="after")
    def _validate_window(self) -> "WordTimestamp":
        if self.end < self.start:
            raise ValueError("WordTimestamp.end must be >= WordTimestamp.start")
        return self


class SpeakerSegment(BaseModel):
    """One diarized turn: consecutive speech attributed to a single speaker."""

    model_config = ConfigDict(extra="forbid")

    speaker: str
    text: str
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_window(self) -> "SpeakerSegment":
        if self.end < self.start:
            raise ValueError("SpeakerSegment.end must be >= SpeakerSegment.start")
        return self


class TranscriptionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    provider: str
    words: List[WordTimestamp] = Field(default_factory=list)
    speakers: List[SpeakerSegment] = Field(default_factory=list)
    language: Optional[str] = None
    duration_sec: Optional[float] = Field(default=None, ge=0.0)
    status: TranscriptionStatus = "success"


class NotConfiguredResult(BaseModel):
    """Server-side transcription is disabled for the selected provider."""

    model_config = ConfigDict(extra="forbid")

    provider: str
    reason: str


class ErrorEnvelope(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    kind: ErrorKind
    message: str
    provider: Optional[str] = None


class TranscriptionOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    language: str = Field(default="en-US", min_length=2, max_length=16)
    diarization: bool = False
    punctuate: bool = True
    timestamps: bool = False
    model: Optional[str] = None

    @property
    def primary_language(self) -> str:
        return self.language.replace("_", "-").split("-")[0].lower()


class AudioSegment:
    """Finished capture payload. The bytes can be taken exactly once."""

    def __init__(
        self,
        data: bytes,
        mime_type: str,
        *,
        duration_sec: Optional[float] = None,
        session_id: str = "",
    ) -> None:
        self._data: Optional[bytes] = bytes(data)
        self._size = len(self._data)
        self._lock = threading.Lock()
        self.mime_type = mime_type
        self.duration_sec = duration_sec
        self.session_id = session_id

    @property
    def size_bytes(self) -> int:
        return self._size

    @property
    def consumed(self) -> bool:
        return self._data is None

    def take(self) -> bytes:
        with self._lock:
            if self._data is None:
                raise RuntimeError(f"AudioSegment for session {self.session_id!r} was already consumed")
            data, self._data = self._data, None
        return data

    def __repr__(self) -> str:
        return (
            f"AudioSegment(mime_type={self.mime_type!r}, size_bytes={self._size}, "
            f"duration_sec={self.duration_sec!r}, session_id={self.session_id!r}, consumed={self.consumed})"
        )


class TranscriptionRequest:
    """One upload routed to exactly one provider."""

    def __init__(self, provider_id: str, segment: AudioSegment, options: TranscriptionOptions) -> None:
        if not provider_id or not provider_id.strip():
            raise ValueError("TranscriptionRequest requires a provider id")
        self.provider_id = provider_id.strip().lower()
        self.segment = segment
        self.options = options
