from __future__ import annotations

import math
from typing import Any, Optional

from ..audio_utils import base_mime_type, suffix_for_mime
from ..contracts import TranscriptionOptions, TranscriptionResult
from ..normalizer import as_list, normalize_result
from .single_shot import SingleShotTranscriber


def _confidence_from_segments(segments: Any) -> Optional[float]:
    # Whisper reports no confidence; exp(mean avg_logprob) is the usual proxy.
    if not isinstance(segments, list):
        return None
    logprobs = [
        float(seg["avg_logprob"])
        for seg in segments
        if isinstance(seg, dict) and isinstance(seg.get("avg_logprob"), (int, float))
    ]
    if not logprobs:
        return None
    return math.exp(sum(logprobs) / len(logprobs))


def parse_whisper_response(payload: dict[str, Any]) -> TranscriptionResult:
    if not isinstance(payload.get("text"), str):
        raise ValueError("response has no text field")
    words = [
        {"text": item.get("word"), "start": item.get("start"), "end": item.get("end")}
        for item in as_list(payload.get("words"))
        if isinstance(item, dict)
    ]
    return normalize_result(
        "whisper",
        {
            "text": payload["text"],
            "confidence": _confidence_from_segments(payload.get("segments")),
            "words": words,
            "language": payload.get("language"),
            "duration_sec": payload.get("duration"),
        },
    )


class WhisperTranscriber(SingleShotTranscriber):
    default_base_url = "https://api.openai.com"

    def name(self) -> str:
        return "whisper"

    def _send(self, audio: bytes, mime_type: str, options: TranscriptionOptions) -> dict[str, Any]:
        form: list[tuple[str, str]] = [
            ("model", options.model or self._cfg.model or "whisper-1"),
            ("language", options.primary_language),
            ("response_format", "verbose_json"),
        ]
        if options.timestamps:
            form.append(("timestamp_granularities[]", "word"))
            form.append(("timestamp_granularities[]", "segment"))
        filename = f"audio{suffix_for_mime(mime_type)}"
        return self._call(
            "transcription",
            "POST",
            f"{self._base_url}/v1/audio/transcriptions",
            timeout=self._cfg.request_timeout_sec,
            headers={"Authorization": f"Bearer {self._cfg.credential}"},
            files={"file": (filename, audio, base_mime_type(mime_type))},
            data=form,
        )

    @staticmethod
    def parse_response(payload: dict[str, Any]) -> TranscriptionResult:
        return parse_whisper_response(payload)
