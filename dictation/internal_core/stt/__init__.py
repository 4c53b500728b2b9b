from __future__ import annotations

from ..errors import STTError
from .assemblyai import AssemblyAITranscriber, parse_assemblyai_job
from .base import HTTPTranscriber, STTProvider
from .deepgram import DeepgramTranscriber, parse_deepgram_response
from .google_speech import GoogleSpeechTranscriber, parse_google_response
from .mock import MockSTTProvider
from .registry import (
    PROVIDERS,
    ProviderSpec,
    build_provider,
    get_provider_spec,
    is_provider_configured,
    provider_catalog,
    provider_info,
)
from .single_shot import SingleShotTranscriber
from .two_phase import TwoPhaseTranscriber
from .whisper_openai import WhisperTranscriber, parse_whisper_response

__all__ = [
    "STTError",
    "STTProvider",
    "HTTPTranscriber",
    "TwoPhaseTranscriber",
    "SingleShotTranscriber",
    "AssemblyAITranscriber",
    "DeepgramTranscriber",
    "WhisperTranscriber",
    "GoogleSpeechTranscriber",
    "MockSTTProvider",
    "PROVIDERS",
    "ProviderSpec",
    "build_provider",
    "get_provider_spec",
    "is_provider_configured",
    "provider_catalog",
    "provider_info",
    "parse_assemblyai_job",
    "parse_deepgram_response",
    "parse_google_response",
    "parse_whisper_response",
]
