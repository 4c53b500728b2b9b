import asyncio
import base64
import math

import pytest
import requests

from dictation.internal_core.contracts import AudioSegment, TranscriptionOptions
from dictation.internal_core.errors import STTError
from dictation.internal_core.gateway import TranscriptionGateway
from dictation.internal_core.stt.deepgram import DeepgramTranscriber, parse_deepgram_response
from dictation.internal_core.stt.google_speech import GoogleSpeechTranscriber, parse_google_response
from dictation.internal_core.stt.whisper_openai import WhisperTranscriber, parse_whisper_response
from speech_fakes import FakeResponse, FakeSession, make_session_factory, provider_config, speech_config


def _deepgram_payload(**alternative):
    alt = {"transcript": "hello there", "confidence": 0.97}
    alt.update(alternative)
    return {"metadata": {"duration": 1.5}, "results": {"channels": [{"alternatives": [alt]}]}}


def test_deepgram_missing_nested_alternative_is_malformed() -> None:
    session = FakeSession([FakeResponse(200, {"results": {"channels": [{"alternatives": []}]}})])
    transcriber = DeepgramTranscriber(provider_config("deepgram", "dg-key"), session)

    with pytest.raises(STTError) as excinfo:
        transcriber.transcribe(b"audio", "audio/webm", TranscriptionOptions())

    assert excinfo.value.code == "MalformedUpstreamResponse"
    assert "alternatives[0]" in excinfo.value.message


def test_deepgram_sends_raw_body_with_token_auth() -> None:
    session = FakeSession([FakeResponse(200, _deepgram_payload())])
    transcriber = DeepgramTranscriber(provider_config("deepgram", "dg-key"), session)

    result = transcriber.transcribe(b"raw-audio", "audio/webm;codecs=opus", TranscriptionOptions(diarization=True))

    call = session.calls[0]
    assert call["url"] == "https://api.deepgram.com/v1/listen"
    assert call["headers"]["Authorization"] == "Token dg-key"
    assert call["headers"]["Content-Type"] == "audio/webm"
    assert call["params"]["model"] == "nova-2"
    assert call["params"]["diarize"] == "true"
    assert call["data"] == b"raw-audio"
    assert result.text == "hello there"
    assert result.confidence == pytest.approx(0.97)
    assert result.duration_sec == pytest.approx(1.5)


def test_parse_deepgram_response_defaults_missing_confidence() -> None:
    payload = _deepgram_payload()
    del payload["results"]["channels"][0]["alternatives"][0]["confidence"]

    result = parse_deepgram_response(payload)

    assert result.confidence == 0.0
    assert result.status == "partial"


def test_parse_deepgram_response_prefers_punctuated_words() -> None:
    payload = _deepgram_payload(
        words=[
            {"word": "hello", "punctuated_word": "Hello", "start": 0.1, "end": 0.4, "confidence": 0.99, "speaker": 0},
            {"word": "there", "start": 0.5, "end": 0.9, "confidence": 0.95},
        ]
    )

    result = parse_deepgram_response(payload)

    assert [word.text for word in result.words] == ["Hello", "there"]
    assert result.words[0].speaker == "0"


def test_parse_deepgram_response_rejects_missing_results() -> None:
    with pytest.raises(ValueError):
        parse_deepgram_response({"metadata": {}})


def test_whisper_posts_multipart_verbose_json() -> None:
    payload = {
        "text": " Testing one two. ",
        "language": "english",
        "duration": 2.0,
        "segments": [{"avg_logprob": -0.2}, {"avg_logprob": -0.4}],
    }
    session = FakeSession([FakeResponse(200, payload)])
    transcriber = WhisperTranscriber(provider_config("whisper", "sk-key"), session)

    result = transcriber.transcribe(b"ogg-bytes", "audio/ogg;codecs=opus", TranscriptionOptions(language="de-DE"))

    call = session.calls[0]
    assert call["url"] == "https://api.openai.com/v1/audio/transcriptions"
    assert call["headers"]["Authorization"] == "Bearer sk-key"
    assert call["files"]["file"] == ("audio.ogg", b"ogg-bytes", "audio/ogg")
    form = dict(call["data"])
    assert form["model"] == "whisper-1"
    assert form["language"] == "de"
    assert form["response_format"] == "verbose_json"
    assert result.text == "Testing one two."
    assert result.confidence == pytest.approx(math.exp(-0.3))
    assert result.status == "success"


def test_parse_whisper_response_without_segments_is_partial() -> None:
    result = parse_whisper_response({"text": "plain"})

    assert result.text == "plain"
    assert result.confidence == 0.0
    assert result.status == "partial"


def test_whisper_missing_text_is_malformed() -> None:
    session = FakeSession([FakeResponse(200, {"segments": []})])
    transcriber = WhisperTranscriber(provider_config("whisper", "sk-key"), session)

    with pytest.raises(STTError) as excinfo:
        transcriber.transcribe(b"audio", "audio/wav", TranscriptionOptions())

    assert excinfo.value.code == "MalformedUpstreamResponse"


def test_google_sends_key_in_header_and_base64_audio() -> None:
    payload = {
        "results": [
            {"alternatives": [{"transcript": "first part", "confidence": 0.8}], "languageCode": "en-us"},
            {"alternatives": [{"transcript": "second part", "confidence": 0.6}], "languageCode": "en-us"},
        ]
    }
    session = FakeSession([FakeResponse(200, payload)])
    transcriber = GoogleSpeechTranscriber(provider_config("google", "g-key"), session)

    result = transcriber.transcribe(b"webm-bytes", "audio/webm;codecs=opus", TranscriptionOptions())

    call = session.calls[0]
    assert call["url"] == "https://speech.googleapis.com/v1/speech:recognize"
    assert "g-key" not in call["url"]
    assert call["headers"]["X-Goog-Api-Key"] == "g-key"
    assert base64.b64decode(call["json"]["audio"]["content"]) == b"webm-bytes"
    assert call["json"]["config"]["encoding"] == "WEBM_OPUS"
    assert call["json"]["config"]["sampleRateHertz"] == 48000
    assert result.text == "first part second part"
    assert result.confidence == pytest.approx(0.7)
    assert result.language == "en-us"


def test_parse_google_response_empty_results_is_empty_partial() -> None:
    result = parse_google_response({})

    assert result.text == ""
    assert result.status == "partial"
    assert result.provider == "google"


def test_parse_google_response_word_offsets_are_parsed() -> None:
    payload = {
        "results": [
            {
                "alternatives": [
                    {
                        "transcript": "hi",
                        "confidence": 0.9,
                        "words": [{"word": "hi", "startTime": "0.100s", "endTime": "0.500s", "speakerTag": 1}],
                    }
                ]
            }
        ]
    }

    result = parse_google_response(payload)

    assert result.words[0].start == pytest.approx(0.1)
    assert result.words[0].end == pytest.approx(0.5)
    assert result.words[0].speaker == "1"


def test_google_result_without_alternatives_is_malformed() -> None:
    session = FakeSession([FakeResponse(200, {"results": [{"languageCode": "en-us"}]})])
    transcriber = GoogleSpeechTranscriber(provider_config("google", "g-key"), session)

    with pytest.raises(STTError) as excinfo:
        transcriber.transcribe(b"audio", "audio/wav", TranscriptionOptions())

    assert excinfo.value.code == "MalformedUpstreamResponse"


def test_single_shot_non_json_body_is_malformed() -> None:
    session = FakeSession([FakeResponse(200, text="<html>gateway</html>")])
    transcriber = DeepgramTranscriber(provider_config("deepgram", "dg-key"), session)

    with pytest.raises(STTError) as excinfo:
        transcriber.transcribe(b"audio", "audio/webm", TranscriptionOptions())

    assert excinfo.value.code == "MalformedUpstreamResponse"


def test_single_shot_transport_failure_is_upstream_error() -> None:
    session = FakeSession([requests.ConnectionError("connection refused")])
    transcriber = WhisperTranscriber(provider_config("whisper", "sk-key"), session)

    with pytest.raises(STTError) as excinfo:
        transcriber.transcribe(b"audio", "audio/webm", TranscriptionOptions())

    assert excinfo.value.code == "UpstreamError"
    assert "ConnectionError" in excinfo.value.message


def test_single_shot_server_error_summarizes_body() -> None:
    long_body = "x" * 500
    session = FakeSession([FakeResponse(503, text=long_body, reason="Service Unavailable")])
    transcriber = DeepgramTranscriber(provider_config("deepgram", "dg-key"), session)

    with pytest.raises(STTError) as excinfo:
        transcriber.transcribe(b"audio", "audio/webm", TranscriptionOptions())

    assert excinfo.value.code == "UpstreamError"
    assert excinfo.value.status_code == 503
    assert "HTTP 503 Service Unavailable" in excinfo.value.message
    assert len(excinfo.value.message) < 300


def test_base_url_override_is_respected() -> None:
    session = FakeSession([FakeResponse(200, _deepgram_payload())])
    cfg = provider_config("deepgram", "dg-key", base_url="http://localhost:9999/")
    transcriber = DeepgramTranscriber(cfg, session)

    transcriber.transcribe(b"audio", "audio/webm", TranscriptionOptions())

    assert session.calls[0]["url"] == "http://localhost:9999/v1/listen"


def test_non_list_words_fall_back_to_empty() -> None:
    deepgram = parse_deepgram_response(_deepgram_payload(words=7))
    whisper = parse_whisper_response({"text": "plain", "words": "not-a-list"})
    google = parse_google_response(
        {"results": [{"alternatives": [{"transcript": "hi", "confidence": 0.9, "words": {"word": "hi"}}]}]}
    )

    assert deepgram.text == "hello there"
    assert deepgram.words == []
    assert whisper.words == []
    assert google.text == "hi"
    assert google.words == []


def test_deepgram_word_speakers_become_speaker_turns() -> None:
    payload = _deepgram_payload(
        words=[
            {"word": "hi", "start": 0.0, "end": 0.3, "confidence": 0.9, "speaker": 0},
            {"word": "there", "start": 0.3, "end": 0.6, "confidence": 0.7, "speaker": 0},
            {"word": "hello", "start": 0.8, "end": 1.2, "confidence": 0.8, "speaker": 1},
        ]
    )

    result = parse_deepgram_response(payload)

    assert [(turn.speaker, turn.text) for turn in result.speakers] == [("0", "hi there"), ("1", "hello")]
    assert result.speakers[0].start == 0.0
    assert result.speakers[0].end == pytest.approx(0.6)
    assert result.speakers[0].confidence == pytest.approx(0.8)


def test_google_speaker_tags_become_speaker_turns() -> None:
    payload = {
        "results": [
            {
                "alternatives": [
                    {
                        "transcript": "yes no",
                        "confidence": 0.9,
                        "words": [
                            {"word": "yes", "startTime": "0s", "endTime": "0.400s", "speakerTag": 1},
                            {"word": "no", "startTime": "0.500s", "endTime": "0.900s", "speakerTag": 2},
                        ],
                    }
                ]
            }
        ]
    }

    result = parse_google_response(payload)

    assert [(turn.speaker, turn.text) for turn in result.speakers] == [("1", "yes"), ("2", "no")]
    assert result.speakers[1].start == pytest.approx(0.5)


def test_words_without_speakers_leave_speakers_empty() -> None:
    result = parse_deepgram_response(_deepgram_payload(words=[{"word": "hi", "start": 0.0, "end": 0.2}]))

    assert len(result.words) == 1
    assert result.speakers == []


def test_gateway_maps_non_list_words_to_success() -> None:
    factory, _ = make_session_factory([FakeResponse(200, _deepgram_payload(words=7))])
    gateway = TranscriptionGateway(speech_config("deepgram", api_key="dg-key"), session_factory=factory)

    response = asyncio.run(gateway.process(AudioSegment(b"audio", "audio/webm"), TranscriptionOptions()))

    assert response.status_code == 200
    assert response.body["words"] == []
    assert response.body["speakers"] == []
