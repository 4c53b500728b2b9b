from __future__ import annotations

import io
import wave
from typing import Optional

import numpy as np

MIME_SUFFIXES = {
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/mp4": ".m4a",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/flac": ".flac",
}


def base_mime_type(mime_type: Optional[str]) -> str:
    """`audio/webm;codecs=opus` -> `audio/webm`."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def is_audio_mime(mime_type: Optional[str]) -> bool:
    base = base_mime_type(mime_type)
    return base.startswith("audio/") and len(base) > len("audio/")


def suffix_for_mime(mime_type: Optional[str]) -> str:
    return MIME_SUFFIXES.get(base_mime_type(mime_type), ".bin")


def estimate_duration_sec(data: bytes, mime_type: Optional[str]) -> Optional[float]:
    # Only WAV carries a cheap, reliable length in its header.
    if base_mime_type(mime_type) not in {"audio/wav", "audio/x-wav", "audio/wave"}:
        return None
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            rate = wf.getframerate()
            frames = wf.getnframes()
    except (wave.Error, EOFError):
        return None
    return frames / float(rate) if rate else None


def compute_rms(audio: np.ndarray) -> float:
    if audio.size == 0:
        return 0.0
    x = audio.astype(np.float32)
    return float(np.sqrt(np.mean(x * x)))


def pcm16_level(pcm_bytes: bytes) -> float:
    """RMS level of 16-bit little-endian PCM, scaled to [0, 1]."""
    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    if usable <= 0:
        return 0.0
    samples = np.frombuffer(pcm_bytes[:usable], dtype="<i2").astype(np.float32) / 32768.0
    return min(1.0, compute_rms(samples))


def write_wav16k_mono_pcm16(pcm_bytes: bytes, sample_rate: int = 16000) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_bytes)
    return buf.getvalue()
