from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# Provider id -> dedicated credential env var. SPEECH_API_KEY is the shared fallback.
PROVIDER_KEY_ENV: dict[str, str] = {
    "assemblyai": "ASSEMBLYAI_API_KEY",
    "deepgram": "DEEPGRAM_API_KEY",
    "whisper": "OPENAI_API_KEY",
    "google": "GOOGLE_SPEECH_API_KEY",
}


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_opt_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_list(name: str, default: list[str]) -> list[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class ProviderConfig:
    provider_id: str
    credential: str = field(repr=False)
    poll_interval_sec: float = 1.0
    request_timeout_sec: float = 30.0
    upload_timeout_sec: float = 60.0
    poll_timeout_sec: float = 120.0
    max_poll_attempts: int = 120
    base_url: str = ""
    model: str = ""

    @property
    def has_credential(self) -> bool:
        return bool(self.credential.strip())


@dataclass(frozen=True)
class DictationConfig:
    SPEECH_PROVIDER: str
    SPEECH_API_KEY: str = field(repr=False)
    PROVIDER_API_KEYS: dict[str, str] = field(repr=False)
    SPEECH_LANGUAGE: str
    SPEECH_MODEL: str
    SPEECH_PROVIDER_BASE_URL: str
    SPEECH_MAX_UPLOAD_BYTES: int
    SPEECH_REQUEST_TIMEOUT_SEC: float
    SPEECH_HTTP_TIMEOUT_SEC: float
    SPEECH_UPLOAD_TIMEOUT_SEC: float
    SPEECH_POLL_INTERVAL_SEC: float
    SPEECH_POLL_TIMEOUT_SEC: float
    SPEECH_MAX_POLL_ATTEMPTS: int
    DICTATION_CORS_ORIGINS: list[str]
    DICTATION_LOG_LEVEL: str
    CAPTURE_SILENCE_TIMEOUT_SEC: float
    CAPTURE_RESTART_BACKOFF_SEC: float
    CAPTURE_MAX_IDLE_RESTARTS: Optional[int]
    CAPTURE_GATEWAY_URL: str
    CAPTURE_SHIP_AUDIO: bool

    def credential_for(self, provider_id: str) -> str:
        dedicated = self.PROVIDER_API_KEYS.get(provider_id, "")
        if dedicated:
            return dedicated
        # The shared key only belongs to the active provider.
        if provider_id == self.SPEECH_PROVIDER:
            return self.SPEECH_API_KEY
        return ""

    def provider_config(self, provider_id: Optional[str] = None) -> ProviderConfig:
        pid = (provider_id or self.SPEECH_PROVIDER).strip().lower()
        return ProviderConfig(
            provider_id=pid,
            credential=self.credential_for(pid),
            poll_interval_sec=self.SPEECH_POLL_INTERVAL_SEC,
            request_timeout_sec=self.SPEECH_HTTP_TIMEOUT_SEC,
            upload_timeout_sec=self.SPEECH_UPLOAD_TIMEOUT_SEC,
            poll_timeout_sec=self.SPEECH_POLL_TIMEOUT_SEC,
            max_poll_attempts=self.SPEECH_MAX_POLL_ATTEMPTS,
            base_url=self.SPEECH_PROVIDER_BASE_URL,
            model=self.SPEECH_MODEL,
        )


def load_config() -> DictationConfig:
    provider = _getenv_str("SPEECH_PROVIDER", "assemblyai").strip().lower() or "assemblyai"
    provider_keys = {
        pid: _getenv_str(env_name, "").strip() for pid, env_name in PROVIDER_KEY_ENV.items()
    }

    return DictationConfig(
        SPEECH_PROVIDER=provider,
        SPEECH_API_KEY=_getenv_str("SPEECH_API_KEY", "").strip(),
        PROVIDER_API_KEYS=provider_keys,
        SPEECH_LANGUAGE=_getenv_str("SPEECH_LANGUAGE", "en-US"),
        SPEECH_MODEL=_getenv_str("SPEECH_MODEL", ""),
        SPEECH_PROVIDER_BASE_URL=_getenv_str("SPEECH_PROVIDER_BASE_URL", "").rstrip("/"),
        SPEECH_MAX_UPLOAD_BYTES=_getenv_int("SPEECH_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        SPEECH_REQUEST_TIMEOUT_SEC=_getenv_float("SPEECH_REQUEST_TIMEOUT_SEC", 180.0),
        SPEECH_HTTP_TIMEOUT_SEC=_getenv_float("SPEECH_HTTP_TIMEOUT_SEC", 30.0),
        SPEECH_UPLOAD_TIMEOUT_SEC=_getenv_float("SPEECH_UPLOAD_TIMEOUT_SEC", 60.0),
        SPEECH_POLL_INTERVAL_SEC=_getenv_float("SPEECH_POLL_INTERVAL_SEC", 1.0),
        SPEECH_POLL_TIMEOUT_SEC=_getenv_float("SPEECH_POLL_TIMEOUT_SEC", 120.0),
        SPEECH_MAX_POLL_ATTEMPTS=_getenv_int("SPEECH_MAX_POLL_ATTEMPTS", 120),
        DICTATION_CORS_ORIGINS=_getenv_list("DICTATION_CORS_ORIGINS", ["*"]),
        DICTATION_LOG_LEVEL=_getenv_str("DICTATION_LOG_LEVEL", "INFO"),
        CAPTURE_SILENCE_TIMEOUT_SEC=_getenv_float("CAPTURE_SILENCE_TIMEOUT_SEC", 8.0),
        CAPTURE_RESTART_BACKOFF_SEC=_getenv_float("CAPTURE_RESTART_BACKOFF_SEC", 0.2),
        CAPTURE_MAX_IDLE_RESTARTS=_getenv_opt_int("CAPTURE_MAX_IDLE_RESTARTS"),
        CAPTURE_GATEWAY_URL=_getenv_str("CAPTURE_GATEWAY_URL", "http://localhost:8787").rstrip("/"),
        CAPTURE_SHIP_AUDIO=_getenv_bool("CAPTURE_SHIP_AUDIO", True),
    )
