from __future__ import annotations

from typing import Any

from ..audio_utils import base_mime_type
from ..contracts import TranscriptionOptions, TranscriptionResult
from ..normalizer import as_list, normalize_result, speaker_turns
from .single_shot import SingleShotTranscriber


def _first_alternative(payload: dict[str, Any]) -> dict[str, Any]:
    results = payload.get("results")
    if not isinstance(results, dict):
        raise ValueError("response has no results object")
    channels = results.get("channels")
    if not isinstance(channels, list) or not channels or not isinstance(channels[0], dict):
        raise ValueError("response has no results.channels[0]")
    alternatives = channels[0].get("alternatives")
    if not isinstance(alternatives, list) or not alternatives or not isinstance(alternatives[0], dict):
        raise ValueError("response has no results.channels[0].alternatives[0]")
    alternative = alternatives[0]
    if not isinstance(alternative.get("transcript"), str):
        raise ValueError("alternative has no transcript string")
    return alternative


def parse_deepgram_response(payload: dict[str, Any]) -> TranscriptionResult:
    alternative = _first_alternative(payload)
    words = [
        {
            "text": item.get("punctuated_word") or item.get("word"),
            "start": item.get("start"),
            "end": item.get("end"),
            "confidence": item.get("confidence"),
            "speaker": item.get("speaker"),
        }
        for item in as_list(alternative.get("words"))
        if isinstance(item, dict)
    ]
    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    return normalize_result(
        "deepgram",
        {
            "text": alternative["transcript"],
            "confidence": alternative.get("confidence"),
            "words": words,
            "speakers": speaker_turns(words),
            "duration_sec": metadata.get("duration"),
        },
    )


class DeepgramTranscriber(SingleShotTranscriber):
    default_base_url = "https://api.deepgram.com"

    def name(self) -> str:
        return "deepgram"

    def _send(self, audio: bytes, mime_type: str, options: TranscriptionOptions) -> dict[str, Any]:
        params = {
            "model": options.model or self._cfg.model or "nova-2",
            "language": options.language,
            "punctuate": str(options.punctuate).lower(),
            "smart_format": "true",
            "diarize": str(options.diarization).lower(),
        }
        return self._call(
            "transcription",
            "POST",
            f"{self._base_url}/v1/listen",
            timeout=self._cfg.request_timeout_sec,
            headers={
                "Authorization": f"Token {self._cfg.credential}",
                "Content-Type": base_mime_type(mime_type) or "application/octet-stream",
            },
            params=params,
            data=audio,
        )

    @staticmethod
    def parse_response(payload: dict[str, Any]) -> TranscriptionResult:
        return parse_deepgram_response(payload)
