from __future__ import annotations

"""
Ports between the capture controller and the host platform.

Design intent:
- Describe microphone, recorder and recognizer as small interfaces so the state
  machine runs the same against a browser bridge, a desktop backend, or test fakes.
- Classify raw platform error names in one place.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

import numpy as np

from dictation.internal_core.audio_utils import pcm16_level, write_wav16k_mono_pcm16
from dictation.internal_core.errors import CaptureError

# Preference order when the recorder supports several containers.
PREFERRED_MIME_TYPES: tuple[str, ...] = (
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/ogg;codecs=opus",
    "audio/mp4",
    "audio/mpeg",
    "audio/wav",
)

_PERMISSION_DEVICE_ERRORS = {"NotAllowedError", "PermissionDeniedError", "SecurityError"}
_MISSING_DEVICE_ERRORS = {"NotFoundError", "DevicesNotFoundError", "OverconstrainedError"}
_BUSY_DEVICE_ERRORS = {"NotReadableError", "TrackStartError", "AbortError"}

TRANSIENT_ENGINE_REASONS = frozenset({"no-speech", "aborted"})
_PERMISSION_ENGINE_REASONS = {"not-allowed", "not-allowed-error", "permission-denied", "service-not-allowed"}


@dataclass(frozen=True)
class CapabilityReport:
    has_media_devices: bool
    has_get_user_media: bool
    has_media_recorder: bool
    supported_mime_types: tuple[str, ...] = ()

    @property
    def can_capture(self) -> bool:
        return self.has_media_devices and self.has_get_user_media

    @property
    def recommended_mime_type(self) -> Optional[str]:
        return pick_mime_type(self.supported_mime_types) if self.has_media_recorder else None


def pick_mime_type(supported: Sequence[str]) -> Optional[str]:
    available = {item.strip().lower() for item in supported if item and item.strip()}
    for candidate in PREFERRED_MIME_TYPES:
        if candidate in available:
            return candidate
    for item in supported:
        if item and item.strip().lower().startswith("audio/"):
            return item.strip()
    return None


class PlatformDeviceError(Exception):
    """Raised by an AudioInput when the platform refuses the microphone."""

    def __init__(self, name: str, message: str = ""):
        super().__init__(message or name)
        self.name = name
        self.message = message or name


def classify_device_error(name: str, message: str = "") -> CaptureError:
    if name in _PERMISSION_DEVICE_ERRORS:
        return CaptureError("PermissionDenied", message or "Microphone access denied. Please allow microphone permissions.")
    if name in _MISSING_DEVICE_ERRORS:
        return CaptureError("DeviceNotFound", message or "No microphone found. Please connect a microphone.")
    if name in _BUSY_DEVICE_ERRORS:
        return CaptureError("DeviceBusy", message or "Microphone is already in use by another application.")
    return CaptureError("Unknown", message or f"Failed to open microphone ({name}).")


def classify_engine_error(reason: str, message: str = "") -> Optional[CaptureError]:
    """Map a recognizer error reason to a terminal CaptureError; None means transient."""
    reason = (reason or "").strip().lower()
    if reason in TRANSIENT_ENGINE_REASONS:
        return None
    if reason in _PERMISSION_ENGINE_REASONS:
        return CaptureError("PermissionDenied", message or "Microphone permission denied by user or system.")
    if reason == "audio-capture":
        return CaptureError("DeviceNotFound", message or "Audio capture failed: no microphone found.")
    if reason == "network":
        return CaptureError("UpstreamError", message or "Network error during speech recognition.")
    return CaptureError("Unknown", message or f"Speech recognition error: {reason or 'unknown'}.")


class AudioInput(ABC):
    """Microphone handle plus recorder. `close()` must be safe to call more than once."""

    @abstractmethod
    def open(self, mime_type: str) -> None:
        """Acquire the device and start recording; raises PlatformDeviceError."""

    @abstractmethod
    def level(self) -> float:
        """Current input level in [0, 1]."""

    @abstractmethod
    def finish(self) -> bytes:
        """Stop recording and return the encoded audio."""

    @abstractmethod
    def close(self) -> None: ...

    def output_mime_type(self, requested: str) -> str:
        """Container actually produced by `finish()` for a requested MIME type."""
        return requested


@dataclass(frozen=True)
class EngineCallbacks:
    on_result: Callable[[str, str], None]
    on_error: Callable[[str, str], None]
    on_end: Callable[[], None]


class RecognitionEngine(ABC):
    """
    Continuous recognizer that may end on its own at any time.

    `on_result(final_text, interim_text)` carries text finalized since the last
    event plus the current interim hypothesis. `stop()` ends gracefully and
    is followed by `on_end`; `abort()` ends immediately.
    """

    @abstractmethod
    def start(self, callbacks: EngineCallbacks) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def abort(self) -> None: ...


class PCMBufferInput(AudioInput):
    """
    AudioInput fed with 16-bit mono PCM frames by a host audio callback.

    `finish()` wraps everything captured so far into a WAV container.
    """

    def __init__(self, sample_rate: int = 16000) -> None:
        self.sample_rate = int(sample_rate)
        self._frames: list[bytes] = []
        self._last_frame = b""
        self._opened = False
        self._closed = False
        self._lock = threading.Lock()

    def open(self, mime_type: str) -> None:
        # Each capture session starts from an empty buffer.
        with self._lock:
            self._frames = []
            self._last_frame = b""
            self._closed = False
            self._opened = True

    def output_mime_type(self, requested: str) -> str:
        return "audio/wav"

    def feed(self, frames: Union[np.ndarray, bytes]) -> None:
        if isinstance(frames, np.ndarray):
            if np.issubdtype(frames.dtype, np.floating):
                # Float frames are in [-1, 1].
                frames = np.clip(frames, -1.0, 1.0) * 32767.0
            data = np.clip(frames, -32768, 32767).astype("<i2").tobytes()
        else:
            data = bytes(frames)
        with self._lock:
            if not self._opened or self._closed:
                return
            self._frames.append(data)
            self._last_frame = data

    def level(self) -> float:
        with self._lock:
            frame = self._last_frame
        return pcm16_level(frame)

    def finish(self) -> bytes:
        with self._lock:
            pcm = b"".join(self._frames)
            self._frames = []
            self._last_frame = b""
        return write_wav16k_mono_pcm16(pcm, self.sample_rate)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._opened = False
            self._frames = []
            self._last_frame = b""

    @property
    def closed(self) -> bool:
        return self._closed
