from __future__ import annotations

from typing import Any

from ..contracts import TranscriptionOptions, TranscriptionResult
from ..normalizer import as_list, normalize_result
from .two_phase import TwoPhaseTranscriber

_KNOWN_STATUSES = {"queued", "processing", "completed", "error"}


def _ms_items(items: Any, keys: tuple[str, ...]) -> list[dict[str, Any]]:
    """Copy `keys` from timed entries, converting start/end from ms to seconds."""
    converted = []
    for item in as_list(items):
        if not isinstance(item, dict):
            continue
        start, end = item.get("start"), item.get("end")
        if not isinstance(start, (int, float)) or not isinstance(end, (int, float)):
            continue
        entry = {key: item.get(key) for key in keys}
        entry["start"] = start / 1000.0
        entry["end"] = end / 1000.0
        converted.append(entry)
    return converted


def parse_assemblyai_job(job: dict[str, Any]) -> TranscriptionResult:
    """Completed AssemblyAI transcript -> TranscriptionResult (word and utterance times are in ms)."""
    if not isinstance(job.get("text"), str):
        raise ValueError("completed transcript has no text field")
    return normalize_result(
        "assemblyai",
        {
            "text": job.get("text"),
            "confidence": job.get("confidence"),
            "words": _ms_items(job.get("words"), ("text", "confidence", "speaker")),
            "speakers": _ms_items(job.get("utterances"), ("speaker", "text", "confidence")),
            "language": job.get("language_code"),
            "duration_sec": job.get("audio_duration"),
        },
    )


class AssemblyAITranscriber(TwoPhaseTranscriber):
    default_base_url = "https://api.assemblyai.com"

    def name(self) -> str:
        return "assemblyai"

    def _headers(self) -> dict[str, str]:
        return {"authorization": self._cfg.credential}

    def _upload(self, audio: bytes, mime_type: str) -> str:
        payload = self._call(
            "upload",
            "POST",
            f"{self._base_url}/v2/upload",
            timeout=self._cfg.upload_timeout_sec,
            headers={**self._headers(), "content-type": "application/octet-stream"},
            data=audio,
        )
        upload_url = payload.get("upload_url")
        if not isinstance(upload_url, str) or not upload_url:
            raise self._fail("MalformedUpstreamResponse", "upload response has no upload_url")
        return upload_url

    def _create_job(self, handle: str, options: TranscriptionOptions) -> str:
        body: dict[str, Any] = {
            "audio_url": handle,
            "language_code": options.primary_language,
            "punctuate": options.punctuate,
            "format_text": options.punctuate,
            "speaker_labels": options.diarization,
        }
        model = options.model or self._cfg.model
        if model:
            body["speech_model"] = model
        payload = self._call(
            "job creation",
            "POST",
            f"{self._base_url}/v2/transcript",
            timeout=self._cfg.request_timeout_sec,
            headers={**self._headers(), "content-type": "application/json"},
            json=body,
        )
        job_id = payload.get("id")
        if not isinstance(job_id, str) or not job_id:
            raise self._fail("MalformedUpstreamResponse", "transcript creation response has no id")
        return job_id

    def _fetch_job(self, job_id: str) -> dict[str, Any]:
        return self._call(
            "poll",
            "GET",
            f"{self._base_url}/v2/transcript/{job_id}",
            timeout=self._cfg.request_timeout_sec,
            headers=self._headers(),
        )

    def _job_status(self, job: dict[str, Any]) -> str:
        status = job.get("status")
        if status not in _KNOWN_STATUSES:
            raise self._fail("MalformedUpstreamResponse", f"unexpected job status: {status!r}")
        return status

    def _job_error(self, job: dict[str, Any]) -> str:
        return str(job.get("error") or "unknown error")

    def parse_job(self, job: dict[str, Any]) -> TranscriptionResult:
        try:
            return parse_assemblyai_job(job)
        except ValueError as exc:
            raise self._fail("MalformedUpstreamResponse", str(exc)) from exc
