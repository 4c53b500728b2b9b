from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests

from ..config import ProviderConfig
from ..contracts import ProtocolKind
from .assemblyai import AssemblyAITranscriber
from .base import STTProvider
from .deepgram import DeepgramTranscriber
from .google_speech import GoogleSpeechTranscriber
from .mock import MockSTTProvider
from .whisper_openai import WhisperTranscriber

ProviderBuilder = Callable[[ProviderConfig, Optional[requests.Session]], STTProvider]


@dataclass(frozen=True)
class ProviderSpec:
    provider_id: str
    protocol: ProtocolKind
    builder: Optional[ProviderBuilder]
    requires_credential: bool
    info: dict[str, Any] = field(default_factory=dict)

    @property
    def server_side(self) -> bool:
        return self.builder is not None


PROVIDERS: dict[str, ProviderSpec] = {
    "browser": ProviderSpec(
        provider_id="browser",
        protocol="client_side",
        builder=None,
        requires_credential=False,
        info={
            "name": "Web Speech API (Browser)",
            "free": True,
            "realtime": True,
            "requiresBackend": False,
            "accuracy": "Medium",
            "setup": "No setup required - works in browser",
        },
    ),
    "assemblyai": ProviderSpec(
        provider_id="assemblyai",
        protocol="two_phase",
        builder=lambda cfg, session: AssemblyAITranscriber(cfg, session),
        requires_credential=True,
        info={
            "name": "AssemblyAI",
            "free": "$50 free credit",
            "realtime": True,
            "requiresBackend": True,
            "accuracy": "Very High",
            "setup": "Sign up at https://www.assemblyai.com/",
            "pricing": "$0.015/minute",
        },
    ),
    "deepgram": ProviderSpec(
        provider_id="deepgram",
        protocol="single_shot",
        builder=lambda cfg, session: DeepgramTranscriber(cfg, session),
        requires_credential=True,
        info={
            "name": "Deepgram",
            "free": "$200 free credit",
            "realtime": True,
            "requiresBackend": True,
            "accuracy": "High",
            "setup": "Sign up at https://deepgram.com/",
            "pricing": "$0.0043/minute",
        },
    ),
    "whisper": ProviderSpec(
        provider_id="whisper",
        protocol="single_shot",
        builder=lambda cfg, session: WhisperTranscriber(cfg, session),
        requires_credential=True,
        info={
            "name": "OpenAI Whisper",
            "free": False,
            "realtime": False,
            "requiresBackend": True,
            "accuracy": "High",
            "setup": "Get API key at https://platform.openai.com/",
            "pricing": "$0.006/minute",
        },
    ),
    "google": ProviderSpec(
        provider_id="google",
        protocol="single_shot",
        builder=lambda cfg, session: GoogleSpeechTranscriber(cfg, session),
        requires_credential=True,
        info={
            "name": "Google Cloud Speech-to-Text",
            "free": "60 minutes/month for 12 months",
            "realtime": True,
            "requiresBackend": True,
            "accuracy": "High",
            "setup": "Set up at https://cloud.google.com/speech-to-text",
            "pricing": "$0.006/15 seconds",
        },
    ),
    "mock": ProviderSpec(
        provider_id="mock",
        protocol="local",
        builder=lambda cfg, session: MockSTTProvider(),
        requires_credential=False,
        info={
            "name": "Mock (local development)",
            "free": True,
            "realtime": False,
            "requiresBackend": True,
            "accuracy": "None",
            "setup": "Set SPEECH_PROVIDER=mock",
        },
    ),
}


def get_provider_spec(provider_id: str) -> Optional[ProviderSpec]:
    return PROVIDERS.get((provider_id or "").strip().lower())


def provider_info(provider_id: str) -> Optional[dict[str, Any]]:
    spec = get_provider_spec(provider_id)
    if spec is None:
        return None
    return {**spec.info, "protocol": spec.protocol}


def provider_catalog() -> dict[str, dict[str, Any]]:
    return {pid: {**spec.info, "protocol": spec.protocol} for pid, spec in PROVIDERS.items()}


def is_provider_configured(cfg: ProviderConfig) -> bool:
    spec = get_provider_spec(cfg.provider_id)
    if spec is None:
        return False
    return not spec.requires_credential or cfg.has_credential


def build_provider(cfg: ProviderConfig, session: Optional[requests.Session] = None) -> STTProvider:
    spec = get_provider_spec(cfg.provider_id)
    if spec is None or spec.builder is None:
        raise KeyError(f"No server-side transcriber for provider: {cfg.provider_id}")
    return spec.builder(cfg, session)
