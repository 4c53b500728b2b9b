from __future__ import annotations

import base64
from typing import Any, Optional

from ..audio_utils import base_mime_type
from ..contracts import TranscriptionOptions, TranscriptionResult
from ..normalizer import as_list, normalize_result, speaker_turns
from .single_shot import SingleShotTranscriber

# WAV/FLAC carry their own header, so Google infers the encoding for them.
_ENCODINGS = {
    "audio/webm": "WEBM_OPUS",
    "audio/ogg": "OGG_OPUS",
    "audio/mpeg": "MP3",
    "audio/l16": "LINEAR16",
}


def _parse_offset(value: Any) -> Optional[float]:
    # Durations arrive as "1.500s".
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.endswith("s"):
        try:
            return float(value[:-1])
        except ValueError:
            return None
    return None


def parse_google_response(payload: dict[str, Any]) -> TranscriptionResult:
    results = payload.get("results")
    if results is None or results == []:
        # No speech recognized: an empty transcript, not an error.
        return normalize_result("google", {"text": "", "confidence": 0.0, "status": "partial"})
    if not isinstance(results, list):
        raise ValueError("results is not a list")

    texts: list[str] = []
    confidences: list[float] = []
    words: list[dict[str, Any]] = []
    for idx, result in enumerate(results):
        alternatives = result.get("alternatives") if isinstance(result, dict) else None
        if not isinstance(alternatives, list) or not alternatives or not isinstance(alternatives[0], dict):
            raise ValueError(f"results[{idx}] has no alternatives[0]")
        best = alternatives[0]
        if not isinstance(best.get("transcript"), str):
            raise ValueError(f"results[{idx}].alternatives[0] has no transcript")
        texts.append(best["transcript"])
        if isinstance(best.get("confidence"), (int, float)):
            confidences.append(float(best["confidence"]))
        for item in as_list(best.get("words")):
            if not isinstance(item, dict):
                continue
            words.append(
                {
                    "text": item.get("word"),
                    "start": _parse_offset(item.get("startTime")),
                    "end": _parse_offset(item.get("endTime")),
                    "confidence": item.get("confidence"),
                    "speaker": item.get("speakerTag"),
                }
            )

    return normalize_result(
        "google",
        {
            "text": " ".join(texts),
            "confidence": sum(confidences) / len(confidences) if confidences else None,
            "words": words,
            "speakers": speaker_turns(words),
            "language": results[-1].get("languageCode"),
        },
    )


class GoogleSpeechTranscriber(SingleShotTranscriber):
    default_base_url = "https://speech.googleapis.com"

    def name(self) -> str:
        return "google"

    def _send(self, audio: bytes, mime_type: str, options: TranscriptionOptions) -> dict[str, Any]:
        config: dict[str, Any] = {
            "languageCode": options.language,
            "enableAutomaticPunctuation": options.punctuate,
            "enableWordTimeOffsets": options.timestamps,
        }
        encoding = _ENCODINGS.get(base_mime_type(mime_type))
        if encoding:
            config["encoding"] = encoding
            if encoding in {"WEBM_OPUS", "OGG_OPUS"}:
                config["sampleRateHertz"] = 48000
            elif encoding == "LINEAR16":
                config["sampleRateHertz"] = 16000
        model = options.model or self._cfg.model
        if model:
            config["model"] = model
        if options.diarization:
            config["diarizationConfig"] = {
                "enableSpeakerDiarization": True,
                "minSpeakerCount": 1,
                "maxSpeakerCount": 6,
            }
        return self._call(
            "transcription",
            "POST",
            f"{self._base_url}/v1/speech:recognize",
            timeout=self._cfg.request_timeout_sec,
            # Key travels in a header, never in the URL.
            headers={"X-Goog-Api-Key": self._cfg.credential},
            json={
                "config": config,
                "audio": {"content": base64.b64encode(audio).decode("ascii")},
            },
        )

    @staticmethod
    def parse_response(payload: dict[str, Any]) -> TranscriptionResult:
        return parse_google_response(payload)
