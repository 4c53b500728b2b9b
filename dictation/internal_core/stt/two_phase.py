from __future__ import annotations

import logging
import threading
import time
from abc import abstractmethod
from typing import Any, Callable, Optional

from ..contracts import TranscriptionOptions, TranscriptionResult
from .base import HTTPTranscriber

logger = logging.getLogger(__name__)


class TwoPhaseTranscriber(HTTPTranscriber):
    """
    Upload-then-poll protocol.

    Phases: upload bytes -> create job -> poll job until completed/error.
    Every phase has its own timeout; polling is bounded by both
    `max_poll_attempts` and `poll_timeout_sec`.
    """

    protocol = "two_phase"

    def __init__(self, cfg, session=None, *, clock: Callable[[], float] = time.monotonic):
        super().__init__(cfg, session)
        self._clock = clock

    @abstractmethod
    def _upload(self, audio: bytes, mime_type: str) -> str: ...

    @abstractmethod
    def _create_job(self, handle: str, options: TranscriptionOptions) -> str: ...

    @abstractmethod
    def _fetch_job(self, job_id: str) -> dict[str, Any]: ...

    @abstractmethod
    def _job_status(self, job: dict[str, Any]) -> str:
        """Return one of: queued, processing, completed, error."""

    @abstractmethod
    def _job_error(self, job: dict[str, Any]) -> str: ...

    @abstractmethod
    def parse_job(self, job: dict[str, Any]) -> TranscriptionResult: ...

    def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        options: TranscriptionOptions,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscriptionResult:
        cancel_event = cancel_event or threading.Event()

        self._check_cancelled(cancel_event, "upload")
        handle = self._upload(audio, mime_type)
        logger.info("stt.two_phase.uploaded provider=%s bytes=%s", self.name(), len(audio))

        self._check_cancelled(cancel_event, "job creation")
        job_id = self._create_job(handle, options)
        logger.info("stt.two_phase.job_created provider=%s job_id=%s", self.name(), job_id)

        job = self._poll(job_id, cancel_event)
        return self.parse_job(job)

    def _poll(self, job_id: str, cancel_event: threading.Event) -> dict[str, Any]:
        max_attempts = max(1, int(self._cfg.max_poll_attempts))
        interval = max(0.0, float(self._cfg.poll_interval_sec))
        deadline = self._clock() + max(0.0, float(self._cfg.poll_timeout_sec))
        last_status = "unknown"

        for attempt in range(1, max_attempts + 1):
            self._check_cancelled(cancel_event, "polling")
            job = self._fetch_job(job_id)
            last_status = self._job_status(job)

            if last_status == "completed":
                logger.info(
                    "stt.two_phase.completed provider=%s job_id=%s attempts=%s",
                    self.name(),
                    job_id,
                    attempt,
                )
                return job
            if last_status == "error":
                raise self._fail(
                    "UpstreamError",
                    f"transcription job {job_id} failed: {self._job_error(job)}",
                )

            if attempt == max_attempts:
                break
            if self._clock() + interval > deadline:
                raise self._fail(
                    "Timeout",
                    f"polling job {job_id} exceeded {self._cfg.poll_timeout_sec:.1f}s "
                    f"(last status {last_status})",
                )
            if cancel_event.wait(interval):
                self._check_cancelled(cancel_event, "polling")

        raise self._fail(
            "Timeout",
            f"job {job_id} not finished after {max_attempts} polls (last status {last_status})",
        )
