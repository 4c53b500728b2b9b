from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from dictation.internal_core.contracts import (
    AudioSegment,
    ErrorEnvelope,
    NotConfiguredResult,
    TranscriptionResult,
)
from dictation.internal_core.errors import CaptureError


class CaptureState(str, Enum):
    IDLE = "Idle"
    LISTENING = "Listening"
    RESTARTING = "Restarting"
    STOPPED = "Stopped"
    PERMISSION_DENIED = "PermissionDenied"


TERMINAL_STATES = frozenset({CaptureState.STOPPED, CaptureState.PERMISSION_DENIED})


# Messages consumed by the controller's single event loop task.


@dataclass(frozen=True)
class SpeechEvent:
    final_text: str = ""
    interim_text: str = ""
    run: int = 0


@dataclass(frozen=True)
class SilenceTimeout:
    generation: int


@dataclass(frozen=True)
class StopRequested:
    done: Optional[asyncio.Future] = None


@dataclass(frozen=True)
class EngineError:
    reason: str
    message: str = ""
    run: int = 0


@dataclass(frozen=True)
class EngineEnded:
    run: int = 0


@dataclass(frozen=True)
class RestartDue:
    attempt: int


CaptureMessage = Union[SpeechEvent, SilenceTimeout, StopRequested, EngineError, EngineEnded, RestartDue]


@dataclass
class CaptureSession:
    session_id: str
    silence_timeout_sec: float
    mime_type: str
    state: CaptureState = CaptureState.IDLE
    transcript: str = ""
    last_speech_at: float = 0.0
    restart_count: int = 0
    idle_restart_count: int = 0
    user_stopped: bool = False
    error: Optional[CaptureError] = None

    @property
    def active(self) -> bool:
        return self.state not in TERMINAL_STATES


@dataclass(frozen=True)
class CaptureSummary:
    session_id: str
    state: CaptureState
    transcript: str
    restart_count: int
    idle_restart_count: int
    error: Optional[CaptureError] = None
    segment: Optional[AudioSegment] = None
    transcription: Optional[TranscriptionResult] = None
    not_configured: Optional[NotConfiguredResult] = None
    gateway_error: Optional[ErrorEnvelope] = None

    @property
    def text(self) -> str:
        """Best available text: the gateway transcript when present, else the live one."""
        if self.transcription is not None and self.transcription.text:
            return self.transcription.text
        return self.transcript
