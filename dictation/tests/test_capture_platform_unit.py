import numpy as np
import pytest

from dictation.capture.platform import (
    CapabilityReport,
    PCMBufferInput,
    classify_device_error,
    classify_engine_error,
    pick_mime_type,
)
from dictation.capture.transcript import TranscriptAccumulator
from dictation.internal_core.audio_utils import estimate_duration_sec


def test_pick_mime_type_follows_preference_order() -> None:
    assert pick_mime_type(["audio/mp4", "audio/webm"]) == "audio/webm"
    assert pick_mime_type(["AUDIO/OGG;CODECS=OPUS", "audio/mp4"]) == "audio/ogg;codecs=opus"
    assert pick_mime_type(["audio/x-custom"]) == "audio/x-custom"
    assert pick_mime_type(["video/webm"]) is None
    assert pick_mime_type([]) is None


def test_capability_report_without_recorder_has_no_format() -> None:
    caps = CapabilityReport(True, True, False, ("audio/webm",))

    assert caps.can_capture is True
    assert caps.recommended_mime_type is None


@pytest.mark.parametrize(
    "name, kind",
    [
        ("NotAllowedError", "PermissionDenied"),
        ("SecurityError", "PermissionDenied"),
        ("DevicesNotFoundError", "DeviceNotFound"),
        ("TrackStartError", "DeviceBusy"),
        ("WeirdError", "Unknown"),
    ],
)
def test_classify_device_error(name, kind) -> None:
    assert classify_device_error(name).code == kind


def test_classify_engine_error_transient_and_terminal() -> None:
    assert classify_engine_error("no-speech") is None
    assert classify_engine_error("aborted") is None
    assert classify_engine_error("not-allowed").code == "PermissionDenied"
    assert classify_engine_error("audio-capture").code == "DeviceNotFound"
    assert classify_engine_error("network").code == "UpstreamError"
    assert classify_engine_error("bad-grammar").code == "Unknown"


def test_accumulator_commits_interim_before_restart() -> None:
    acc = TranscriptAccumulator()

    assert acc.apply("Hello  world", "how are") == "Hello world how are"
    assert acc.apply("", "how are you") == "Hello world how are you"
    assert acc.commit_interim() == "Hello world how are you"
    assert acc.apply("", "") == "Hello world how are you"
    assert acc.interim == ""

    acc.reset()
    assert acc.merged() == ""


def test_pcm_buffer_input_writes_wav_with_duration() -> None:
    audio = PCMBufferInput(sample_rate=16000)
    audio.open("audio/webm")
    audio.feed(np.full(8000, 0.5, dtype=np.float32))
    audio.feed(np.zeros(8000, dtype=np.int16).tobytes())

    assert audio.output_mime_type("audio/webm") == "audio/wav"
    assert audio.level() == 0.0
    data = audio.finish()
    audio.close()

    assert data[:4] == b"RIFF"
    assert estimate_duration_sec(data, "audio/wav") == pytest.approx(1.0)
    assert audio.closed is True


def test_pcm_buffer_input_level_tracks_last_frame() -> None:
    audio = PCMBufferInput()
    audio.open("audio/wav")
    audio.feed(np.full(160, 16384, dtype=np.int16))

    assert audio.level() == pytest.approx(0.5, abs=0.01)


def test_pcm_buffer_input_reopens_with_an_empty_buffer() -> None:
    audio = PCMBufferInput()
    audio.open("audio/wav")
    audio.feed(np.full(1600, 1000, dtype=np.int16))
    audio.finish()
    audio.close()
    audio.feed(b"\x00\x01")

    audio.open("audio/wav")
    audio.feed(np.zeros(800, dtype=np.int16))
    data = audio.finish()

    assert audio.closed is False
    assert estimate_duration_sec(data, "audio/wav") == pytest.approx(0.05)
