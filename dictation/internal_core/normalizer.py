from __future__ import annotations

"""
Map provider payloads and failures onto one response schema.

Design intent:
- Stay pure: no I/O, no clock, no config. Same input, same bytes out.
- Substitute safe defaults for optional fields instead of failing the request.
- Keep error envelopes free of credentials and raw upstream bodies.
"""

import json
import math
import re
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from .contracts import ErrorEnvelope, NotConfiguredResult, SpeakerSegment, TranscriptionResult, WordTimestamp
from .errors import CaptureError, STTError

_WS_RE = re.compile(r"\s+")

ERROR_LABELS: dict[str, str] = {
    "NotConfigured": "not configured",
    "InvalidInput": "invalid input",
    "PayloadTooLarge": "payload too large",
    "UpstreamError": "upstream error",
    "Timeout": "timeout",
    "MalformedUpstreamResponse": "malformed upstream response",
    "Cancelled": "cancelled",
}

_STATUS_CODES: dict[str, int] = {
    "InvalidInput": 400,
    "Unsupported": 400,
    "PayloadTooLarge": 413,
    "Cancelled": 499,
    "NotConfigured": 503,
    "UpstreamError": 502,
    "MalformedUpstreamResponse": 502,
    "Timeout": 504,
}


def _clean_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return _WS_RE.sub(" ", value).strip()


def as_list(value: Any) -> list[Any]:
    """Optional list fields read as empty unless the provider sent an actual list."""
    return value if isinstance(value, list) else []


def clamp_confidence(value: Any) -> Optional[float]:
    """Return a confidence in [0, 1], or None when the value is not a usable number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    score = float(value)
    if math.isnan(score):
        return None
    return min(1.0, max(0.0, score))


def _normalize_words(raw_words: Any) -> list[WordTimestamp]:
    if not isinstance(raw_words, (list, tuple)):
        return []
    words: list[WordTimestamp] = []
    for item in raw_words:
        if isinstance(item, WordTimestamp):
            words.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        text = _clean_text(item.get("text"))
        start = item.get("start")
        end = item.get("end")
        if not text or not isinstance(start, (int, float)) or not isinstance(end, (int, float)):
            continue
        start_f = max(0.0, float(start))
        end_f = max(start_f, float(end))
        speaker = item.get("speaker")
        words.append(
            WordTimestamp(
                text=text,
                start=start_f,
                end=end_f,
                confidence=clamp_confidence(item.get("confidence")),
                speaker=str(speaker) if speaker is not None else None,
            )
        )
    return words


def _normalize_speakers(raw_segments: Any) -> list[SpeakerSegment]:
    if not isinstance(raw_segments, (list, tuple)):
        return []
    segments: list[SpeakerSegment] = []
    for item in raw_segments:
        if isinstance(item, SpeakerSegment):
            segments.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        speaker = item.get("speaker")
        text = _clean_text(item.get("text"))
        start = item.get("start")
        end = item.get("end")
        if speaker is None or not text:
            continue
        if not isinstance(start, (int, float)) or not isinstance(end, (int, float)):
            continue
        start_f = max(0.0, float(start))
        segments.append(
            SpeakerSegment(
                speaker=str(speaker),
                text=text,
                start=start_f,
                end=max(start_f, float(end)),
                confidence=clamp_confidence(item.get("confidence")),
            )
        )
    return segments


def speaker_turns(raw_words: Any) -> list[dict[str, Any]]:
    """Group consecutive speaker-tagged words (seconds) into per-speaker turns."""
    turns: list[dict[str, Any]] = []
    scores: list[list[float]] = []
    for word in _normalize_words(raw_words):
        if word.speaker is None:
            continue
        if turns and turns[-1]["speaker"] == word.speaker:
            turn = turns[-1]
            turn["text"] = f"{turn['text']} {word.text}"
            turn["end"] = max(turn["end"], word.end)
        else:
            turns.append({"speaker": word.speaker, "text": word.text, "start": word.start, "end": word.end})
            scores.append([])
        if word.confidence is not None:
            scores[-1].append(word.confidence)
    for turn, turn_scores in zip(turns, scores):
        turn["confidence"] = sum(turn_scores) / len(turn_scores) if turn_scores else None
    return turns


def normalize_result(
    provider: str,
    fields: Union[Mapping[str, Any], TranscriptionResult],
) -> TranscriptionResult:
    """
    Build a TranscriptionResult from already-extracted provider fields.

    Expected keys: text, confidence, words and speakers (seconds), language,
    duration_sec, status.
    A missing confidence becomes 0.0 and downgrades status to "partial".
    """
    if isinstance(fields, TranscriptionResult):
        fields = fields.model_dump()

    confidence = clamp_confidence(fields.get("confidence"))
    status = fields.get("status") or "success"
    if status not in {"success", "partial", "failed"}:
        status = "success"
    if confidence is None:
        confidence = 0.0
        if status == "success":
            status = "partial"

    duration = fields.get("duration_sec")
    duration_sec = float(duration) if isinstance(duration, (int, float)) and duration >= 0 else None
    language = fields.get("language")

    return TranscriptionResult(
        text=_clean_text(fields.get("text")),
        confidence=confidence,
        provider=str(fields.get("provider") or provider),
        words=_normalize_words(fields.get("words")),
        speakers=_normalize_speakers(fields.get("speakers")),
        language=language if isinstance(language, str) and language else None,
        duration_sec=duration_sec,
        status=status,
    )


def normalize_error(
    exc: BaseException,
    provider: Optional[str] = None,
    *,
    secret: Optional[str] = None,
) -> ErrorEnvelope:
    if isinstance(exc, STTError):
        kind = exc.code
        message = exc.message
        provider = exc.provider_name or provider
    elif isinstance(exc, CaptureError):
        kind = exc.code
        message = exc.message
    elif isinstance(exc, ValidationError):
        kind = "MalformedUpstreamResponse"
        message = f"provider payload failed validation ({exc.error_count()} errors)"
    elif isinstance(exc, TimeoutError):
        kind = "Timeout"
        message = str(exc) or "transcription timed out"
    else:
        kind = "Unknown"
        message = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__

    if secret:
        message = message.replace(secret, "***")
    return ErrorEnvelope(
        error=ERROR_LABELS.get(kind, kind),
        kind=kind,
        message=message,
        provider=provider,
    )


def not_configured_envelope(result: NotConfiguredResult) -> ErrorEnvelope:
    return ErrorEnvelope(
        error=ERROR_LABELS["NotConfigured"],
        kind="NotConfigured",
        message=result.reason,
        provider=result.provider,
    )


def status_code_for(kind: str) -> int:
    return _STATUS_CODES.get(kind, 500)


def success_body(result: TranscriptionResult) -> dict[str, Any]:
    body = {"success": True}
    body.update(result.model_dump(mode="json"))
    return body


def error_body(envelope: ErrorEnvelope) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False}
    body.update(envelope.model_dump(mode="json"))
    return body


def render_payload(obj: Union[TranscriptionResult, ErrorEnvelope, Mapping[str, Any]]) -> bytes:
    """Canonical JSON bytes for a normalized payload."""
    if isinstance(obj, (TranscriptionResult, ErrorEnvelope)):
        data: Any = obj.model_dump(mode="json")
    else:
        data = dict(obj)
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
