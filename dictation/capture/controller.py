from __future__ import annotations

"""
Continuous dictation session as an explicit state machine.

Design intent:
- One asyncio task consumes typed messages; platform callbacks only post messages.
- Hide recognizer hiccups (silence, no-speech, spontaneous end) behind restarts
  that never lose transcript text.
- Tear down watchdog, level monitor and microphone together on every exit path.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional
from uuid import uuid4

from dictation.internal_core.audio_utils import estimate_duration_sec
from dictation.internal_core.config import DictationConfig
from dictation.internal_core.contracts import (
    AudioSegment,
    NotConfiguredResult,
    TranscriptionOptions,
)
from dictation.internal_core.errors import CaptureError, STTError
from dictation.internal_core.normalizer import normalize_error

from .gateway_client import GatewayClient
from .models import (
    CaptureMessage,
    CaptureSession,
    CaptureState,
    CaptureSummary,
    EngineEnded,
    EngineError,
    RestartDue,
    SilenceTimeout,
    SpeechEvent,
    StopRequested,
)
from .platform import (
    AudioInput,
    CapabilityReport,
    EngineCallbacks,
    PlatformDeviceError,
    RecognitionEngine,
    classify_device_error,
    classify_engine_error,
)
from .transcript import TranscriptAccumulator

logger = logging.getLogger(__name__)


class CaptureController:
    def __init__(
        self,
        *,
        capabilities: CapabilityReport,
        audio_input: AudioInput,
        engine: RecognitionEngine,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_state: Optional[Callable[[CaptureState], None]] = None,
        on_error: Optional[Callable[[CaptureError], None]] = None,
        on_level: Optional[Callable[[float], None]] = None,
        gateway: Optional[GatewayClient] = None,
        options: Optional[TranscriptionOptions] = None,
        silence_timeout_sec: float = 8.0,
        restart_backoff_sec: float = 0.2,
        max_idle_restarts: Optional[int] = None,
        level_interval_sec: float = 0.1,
    ) -> None:
        if silence_timeout_sec <= 0:
            raise ValueError("silence_timeout_sec must be > 0")
        self._capabilities = capabilities
        self._audio = audio_input
        self._engine = engine
        self._on_transcript = on_transcript
        self._on_state = on_state
        self._on_error = on_error
        self._on_level = on_level
        self._gateway = gateway
        self._options = options or TranscriptionOptions()
        self._silence_timeout_sec = float(silence_timeout_sec)
        self._restart_backoff_sec = max(0.0, float(restart_backoff_sec))
        self._max_idle_restarts = max_idle_restarts
        self._level_interval_sec = max(0.01, float(level_interval_sec))

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._level_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._watchdog_generation = 0
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._restart_attempt = 0
        self._engine_run = 0
        self._started_at = 0.0
        self._accumulator = TranscriptAccumulator()
        self._session: Optional[CaptureSession] = None
        self._segment: Optional[AudioSegment] = None

    @classmethod
    def from_config(
        cls,
        cfg: DictationConfig,
        *,
        capabilities: CapabilityReport,
        audio_input: AudioInput,
        engine: RecognitionEngine,
        **kwargs,
    ) -> "CaptureController":
        if "gateway" not in kwargs and cfg.CAPTURE_SHIP_AUDIO:
            kwargs["gateway"] = GatewayClient(cfg.CAPTURE_GATEWAY_URL, timeout_sec=cfg.SPEECH_REQUEST_TIMEOUT_SEC)
        kwargs.setdefault("options", TranscriptionOptions(language=cfg.SPEECH_LANGUAGE or "en-US"))
        return cls(
            capabilities=capabilities,
            audio_input=audio_input,
            engine=engine,
            silence_timeout_sec=cfg.CAPTURE_SILENCE_TIMEOUT_SEC,
            restart_backoff_sec=cfg.CAPTURE_RESTART_BACKOFF_SEC,
            max_idle_restarts=cfg.CAPTURE_MAX_IDLE_RESTARTS,
            **kwargs,
        )

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def state(self) -> CaptureState:
        return self._session.state if self._session is not None else CaptureState.IDLE

    @property
    def transcript(self) -> str:
        return self._accumulator.merged()

    # -- public operations -------------------------------------------------

    async def start(self) -> CaptureSession:
        if self._session is not None and self._session.active:
            logger.info("capture.start_ignored session_id=%s state=%s", self._session.session_id, self._session.state.value)
            return self._session

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._accumulator.reset()
        self._segment = None
        self._watchdog_generation += 1

        caps = self._capabilities
        mime_type = caps.recommended_mime_type
        session = CaptureSession(
            session_id=uuid4().hex[:12],
            silence_timeout_sec=self._silence_timeout_sec,
            mime_type=mime_type or "",
        )
        self._session = session

        if not caps.can_capture:
            self._fail_start(CaptureError("Unsupported", "Microphone capture is not supported on this platform."))
        if mime_type is None and self._gateway is not None:
            self._fail_start(CaptureError("Unsupported", "No supported audio recording format is available."))

        try:
            self._audio.open(session.mime_type)
        except PlatformDeviceError as exc:
            self._fail_start(classify_device_error(exc.name, exc.message))
        session.mime_type = self._audio.output_mime_type(session.mime_type)

        try:
            self._start_engine()
        except PlatformDeviceError as exc:
            self._fail_start(classify_device_error(exc.name, exc.message))
        except Exception:
            self._teardown(keep_audio=False)
            session.state = CaptureState.STOPPED
            raise

        self._started_at = self._loop.time()
        session.last_speech_at = self._started_at
        self._set_state(CaptureState.LISTENING)
        self._arm_watchdog()
        self._consumer = asyncio.create_task(self._run())
        if self._on_level is not None:
            self._level_task = asyncio.create_task(self._monitor_levels())
        logger.info(
            "capture.started session_id=%s mime=%s silence_timeout_sec=%s",
            session.session_id,
            session.mime_type or "-",
            self._silence_timeout_sec,
        )
        return session

    async def stop(self) -> CaptureSummary:
        session = self._session
        if session is None:
            return CaptureSummary(
                session_id="",
                state=CaptureState.IDLE,
                transcript="",
                restart_count=0,
                idle_restart_count=0,
            )

        if session.active:
            # Flag first so the engine's own end event reads as a user stop.
            session.user_stopped = True
            self._halt_engine(abort=False)
            done = self._loop.create_future()
            self._post(StopRequested(done))
            await done

        segment, self._segment = self._segment, None
        summary = CaptureSummary(
            session_id=session.session_id,
            state=session.state,
            transcript=session.transcript,
            restart_count=session.restart_count,
            idle_restart_count=session.idle_restart_count,
            error=session.error,
            segment=segment,
        )
        if segment is None or self._gateway is None or segment.size_bytes == 0:
            return summary
        return await self._ship(summary, segment)

    async def close(self) -> None:
        """Caller teardown: abort everything, keep no audio."""
        session = self._session
        if session is not None and session.active:
            session.user_stopped = True
            self._halt_engine(abort=True)
            self._teardown(keep_audio=False)
            self._set_state(CaptureState.STOPPED)
        else:
            self._teardown(keep_audio=False)
        self._segment = None
        self._resolve_pending_stops()

        consumer, self._consumer = self._consumer, None
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
        if self._gateway is not None:
            self._gateway.close()

    # -- engine and timers -------------------------------------------------

    def _start_engine(self) -> None:
        self._engine_run += 1
        run = self._engine_run
        self._engine.start(
            EngineCallbacks(
                on_result=lambda final_text, interim_text: self._post(SpeechEvent(final_text, interim_text, run)),
                on_error=lambda reason, message="": self._post(EngineError(reason, message, run)),
                on_end=lambda: self._post(EngineEnded(run)),
            )
        )

    def _halt_engine(self, *, abort: bool) -> None:
        try:
            if abort:
                self._engine.abort()
            else:
                self._engine.stop()
        except Exception:
            # Engines raise when already stopped; the session state is authoritative.
            logger.warning("capture.engine_halt_failed abort=%s", abort, exc_info=True)

    def _post(self, message: CaptureMessage) -> None:
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            queue.put_nowait(message)
        else:
            loop.call_soon_threadsafe(queue.put_nowait, message)

    def _arm_watchdog(self, delay: Optional[float] = None) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
        self._watchdog_generation += 1
        generation = self._watchdog_generation
        self._watchdog = self._loop.call_later(
            self._silence_timeout_sec if delay is None else delay,
            self._post,
            SilenceTimeout(generation),
        )

    def _cancel_timers(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self._watchdog_generation += 1
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    async def _monitor_levels(self) -> None:
        while True:
            try:
                level = float(self._audio.level())
            except Exception:
                logger.warning("capture.level_monitor_failed", exc_info=True)
                return
            self._on_level(min(1.0, max(0.0, level)))
            await asyncio.sleep(self._level_interval_sec)

    def _teardown(self, *, keep_audio: bool) -> Optional[bytes]:
        self._cancel_timers()
        level_task, self._level_task = self._level_task, None
        if level_task is not None:
            level_task.cancel()
        data: Optional[bytes] = None
        try:
            if keep_audio:
                data = self._audio.finish()
        finally:
            self._audio.close()
        return data

    # -- message loop ------------------------------------------------------

    async def _run(self) -> None:
        queue = self._queue
        while self._session is not None and self._session.active:
            message = await queue.get()
            try:
                self._dispatch(message)
            except Exception as exc:
                logger.exception("capture.dispatch_failed message=%s", type(message).__name__)
                if isinstance(message, StopRequested) and message.done is not None and not message.done.done():
                    message.done.set_exception(exc)
        # A terminal transition can leave a stop request queued behind it.
        self._resolve_pending_stops()

    def _resolve_pending_stops(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while not queue.empty():
            message = queue.get_nowait()
            if isinstance(message, StopRequested) and message.done is not None and not message.done.done():
                message.done.set_result(None)

    def _dispatch(self, message: CaptureMessage) -> None:
        session = self._session
        if isinstance(message, SpeechEvent):
            self._handle_speech(session, message)
        elif isinstance(message, SilenceTimeout):
            self._handle_silence(session, message)
        elif isinstance(message, EngineError):
            self._handle_engine_error(session, message)
        elif isinstance(message, EngineEnded):
            self._handle_engine_ended(session, message)
        elif isinstance(message, RestartDue):
            self._handle_restart_due(session, message)
        elif isinstance(message, StopRequested):
            self._handle_stop(session, message)

    def _handle_speech(self, session: CaptureSession, event: SpeechEvent) -> None:
        if not session.active or session.user_stopped:
            return
        if event.run != self._engine_run:
            logger.debug("capture.stale_result run=%s", event.run)
            return
        merged = self._accumulator.apply(event.final_text, event.interim_text)
        session.transcript = self._accumulator.finalized
        session.last_speech_at = self._loop.time()
        session.idle_restart_count = 0
        if session.state == CaptureState.LISTENING:
            self._arm_watchdog()
        if self._on_transcript is not None and merged:
            self._on_transcript(merged)

    def _handle_silence(self, session: CaptureSession, event: SilenceTimeout) -> None:
        if event.generation != self._watchdog_generation:
            logger.debug("capture.stale_watchdog generation=%s", event.generation)
            return
        if session.state != CaptureState.LISTENING or session.user_stopped:
            return
        elapsed = self._loop.time() - session.last_speech_at
        if elapsed < self._silence_timeout_sec:
            self._arm_watchdog(self._silence_timeout_sec - elapsed)
            return
        self._begin_restart(session, reason="silence")

    def _handle_engine_error(self, session: CaptureSession, event: EngineError) -> None:
        if event.run != self._engine_run or session.user_stopped:
            return
        error = classify_engine_error(event.reason, event.message)
        if error is None:
            if session.state == CaptureState.LISTENING:
                self._begin_restart(session, reason=event.reason)
            return
        self._fail(session, error)

    def _handle_engine_ended(self, session: CaptureSession, event: EngineEnded) -> None:
        if event.run != self._engine_run or session.user_stopped:
            return
        if session.state == CaptureState.LISTENING:
            self._begin_restart(session, reason="ended")

    def _handle_restart_due(self, session: CaptureSession, event: RestartDue) -> None:
        if event.attempt != self._restart_attempt or session.state != CaptureState.RESTARTING:
            return
        if session.user_stopped:
            return
        self._restart_handle = None
        try:
            self._start_engine()
        except PlatformDeviceError as exc:
            self._fail(session, classify_device_error(exc.name, exc.message))
            return
        except Exception as exc:
            logger.warning("capture.restart_failed session_id=%s", session.session_id, exc_info=True)
            self._fail(session, CaptureError("Unknown", f"Speech recognition failed to restart: {exc}"))
            return
        session.last_speech_at = self._loop.time()
        self._set_state(CaptureState.LISTENING)
        self._arm_watchdog()

    def _handle_stop(self, session: CaptureSession, event: StopRequested) -> None:
        if session.active:
            self._accumulator.commit_interim()
            session.transcript = self._accumulator.finalized
            try:
                self._segment = self._finalize_segment(session)
            finally:
                self._set_state(CaptureState.STOPPED)
            logger.info(
                "capture.stopped session_id=%s restarts=%s chars=%s",
                session.session_id,
                session.restart_count,
                len(session.transcript),
            )
        if event.done is not None and not event.done.done():
            event.done.set_result(None)

    def _begin_restart(self, session: CaptureSession, *, reason: str) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self._watchdog_generation += 1
        self._accumulator.commit_interim()
        session.transcript = self._accumulator.finalized

        if self._max_idle_restarts is not None and session.idle_restart_count >= self._max_idle_restarts:
            logger.info(
                "capture.idle_limit session_id=%s idle_restarts=%s",
                session.session_id,
                session.idle_restart_count,
            )
            self._halt_engine(abort=True)
            self._segment = self._finalize_segment(session)
            self._set_state(CaptureState.STOPPED)
            return

        session.idle_restart_count += 1
        session.restart_count += 1
        self._set_state(CaptureState.RESTARTING)
        if reason == "silence":
            self._halt_engine(abort=True)
        self._restart_attempt += 1
        # Callbacks from the halted run are ignored from here on.
        self._engine_run += 1
        logger.info(
            "capture.restart session_id=%s reason=%s restarts=%s",
            session.session_id,
            reason,
            session.restart_count,
        )
        self._restart_handle = self._loop.call_later(
            self._restart_backoff_sec,
            self._post,
            RestartDue(self._restart_attempt),
        )

    def _fail(self, session: CaptureSession, error: CaptureError) -> None:
        session.error = error
        self._halt_engine(abort=True)
        self._teardown(keep_audio=False)
        if error.code == "PermissionDenied":
            self._set_state(CaptureState.PERMISSION_DENIED)
        else:
            self._set_state(CaptureState.STOPPED)
        logger.warning("capture.terminal_error session_id=%s kind=%s", session.session_id, error.code)
        if self._on_error is not None:
            self._on_error(error)

    def _fail_start(self, error: CaptureError) -> None:
        session = self._session
        session.error = error
        self._teardown(keep_audio=False)
        self._set_state(
            CaptureState.PERMISSION_DENIED if error.code == "PermissionDenied" else CaptureState.STOPPED
        )
        logger.warning("capture.start_failed session_id=%s kind=%s", session.session_id, error.code)
        raise error

    def _finalize_segment(self, session: CaptureSession) -> AudioSegment:
        data = self._teardown(keep_audio=True) or b""
        duration = estimate_duration_sec(data, session.mime_type)
        if duration is None:
            duration = max(0.0, self._loop.time() - self._started_at)
        return AudioSegment(data, session.mime_type, duration_sec=duration, session_id=session.session_id)

    def _set_state(self, state: CaptureState) -> None:
        session = self._session
        if session.state == state:
            return
        session.state = state
        if self._on_state is not None:
            self._on_state(state)

    async def _ship(self, summary: CaptureSummary, segment: AudioSegment) -> CaptureSummary:
        logger.info("capture.ship session_id=%s bytes=%s", segment.session_id, segment.size_bytes)
        try:
            outcome = await asyncio.to_thread(
                self._gateway.transcribe, segment, self._options
            )
        except STTError as exc:
            logger.warning("capture.ship_failed session_id=%s kind=%s", segment.session_id, exc.code)
            return replace(summary, gateway_error=normalize_error(exc))
        if isinstance(outcome, NotConfiguredResult):
            return replace(summary, not_configured=outcome)
        return replace(summary, transcription=outcome)
