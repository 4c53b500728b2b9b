import json

import pytest

from dictation.internal_core.contracts import NotConfiguredResult, TranscriptionResult
from dictation.internal_core.errors import CaptureError, STTError
from dictation.internal_core.normalizer import (
    error_body,
    normalize_error,
    normalize_result,
    not_configured_envelope,
    render_payload,
    status_code_for,
    success_body,
)

RAW_FIELDS = {
    "text": "  the quick\n brown fox ",
    "confidence": 0.912,
    "words": [
        {"text": "the", "start": 0.0, "end": 0.2, "confidence": 0.99},
        {"text": "quick", "start": 0.25, "end": 0.2},
        {"text": "", "start": 0.3, "end": 0.4},
        "not-a-word",
    ],
    "language": "en",
    "duration_sec": 1.25,
}


def test_normalize_result_is_idempotent_and_byte_stable() -> None:
    first = normalize_result("deepgram", RAW_FIELDS)
    second = normalize_result("deepgram", RAW_FIELDS)
    renormalized = normalize_result("deepgram", first)

    assert render_payload(first) == render_payload(second)
    assert render_payload(renormalized) == render_payload(first)
    assert first == renormalized


def test_normalize_result_cleans_text_and_words() -> None:
    result = normalize_result("deepgram", RAW_FIELDS)

    assert result.text == "the quick brown fox"
    assert [word.text for word in result.words] == ["the", "quick"]
    # end < start is pulled up to start.
    assert result.words[1].end == result.words[1].start == 0.25
    assert result.status == "success"


@pytest.mark.parametrize(
    "raw, expected, status",
    [
        (1.7, 1.0, "success"),
        (-0.2, 0.0, "success"),
        ("high", 0.0, "partial"),
        (None, 0.0, "partial"),
        (True, 0.0, "partial"),
        (float("nan"), 0.0, "partial"),
    ],
)
def test_normalize_result_confidence_bounds(raw, expected, status) -> None:
    result = normalize_result("whisper", {"text": "x", "confidence": raw})

    assert result.confidence == expected
    assert result.status == status


def test_normalize_result_keeps_explicit_failed_status() -> None:
    result = normalize_result("whisper", {"text": "", "confidence": None, "status": "failed"})

    assert result.status == "failed"


def test_normalize_error_maps_taxonomy_and_redacts_secret() -> None:
    exc = STTError("UpstreamError", "upload failed: token abc123 rejected", "assemblyai", status_code=401)

    envelope = normalize_error(exc, secret="abc123")

    assert envelope.kind == "UpstreamError"
    assert envelope.error == "upstream error"
    assert envelope.provider == "assemblyai"
    assert "abc123" not in envelope.message
    assert status_code_for(envelope.kind) == 502


def test_normalize_error_handles_non_taxonomy_exceptions() -> None:
    timeout = normalize_error(TimeoutError("slow"), "deepgram")
    unknown = normalize_error(KeyError("boom"), "deepgram")
    capture = normalize_error(CaptureError("PermissionDenied", "denied"))

    assert timeout.kind == "Timeout"
    assert status_code_for(timeout.kind) == 504
    assert unknown.kind == "Unknown"
    assert "KeyError" in unknown.message
    assert status_code_for(unknown.kind) == 500
    assert capture.kind == "PermissionDenied"
    assert capture.provider is None


def test_normalize_error_is_byte_stable() -> None:
    exc = STTError("Timeout", "job j1 not finished after 3 polls", "assemblyai")

    assert render_payload(normalize_error(exc)) == render_payload(normalize_error(exc))


@pytest.mark.parametrize(
    "kind, status",
    [
        ("InvalidInput", 400),
        ("PayloadTooLarge", 413),
        ("NotConfigured", 503),
        ("MalformedUpstreamResponse", 502),
        ("Cancelled", 499),
        ("Unknown", 500),
    ],
)
def test_status_code_for_kinds(kind, status) -> None:
    assert status_code_for(kind) == status


def test_not_configured_envelope_is_distinct_from_upstream_error() -> None:
    envelope = not_configured_envelope(NotConfiguredResult(provider="google", reason="set a key"))
    body = error_body(envelope)

    assert body == {
        "success": False,
        "error": "not configured",
        "kind": "NotConfigured",
        "message": "set a key",
        "provider": "google",
    }


def test_success_body_carries_result_fields() -> None:
    result = TranscriptionResult(text="hi", confidence=0.5, provider="mock")

    body = success_body(result)

    assert body["success"] is True
    assert body["text"] == "hi"
    assert body["provider"] == "mock"
    assert json.loads(render_payload(body)) == body


def test_normalize_result_keeps_speaker_turns_stable() -> None:
    raw = {
        "text": "a b",
        "confidence": 0.5,
        "speakers": [
            {"speaker": 1, "text": " a ", "start": 0.5, "end": 0.1},
            {"speaker": None, "text": "untagged", "start": 0.0, "end": 1.0},
            {"speaker": "2", "text": "b", "start": 1.0, "end": 2.0, "confidence": 3},
        ],
    }

    first = normalize_result("deepgram", raw)

    assert [(turn.speaker, turn.text) for turn in first.speakers] == [("1", "a"), ("2", "b")]
    assert first.speakers[0].end == 0.5
    assert first.speakers[1].confidence == 1.0
    assert render_payload(normalize_result("deepgram", first)) == render_payload(first)
