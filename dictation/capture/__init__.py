"""
Client-side capture: microphone session state machine and gateway client.

Design intent:
- Keep the recognizer's abrupt endings out of the caller's view.
- Talk to platform audio and recognition only through small ports.
"""

from .controller import CaptureController
from .gateway_client import GatewayClient
from .models import CaptureSession, CaptureState, CaptureSummary
from .platform import (
    AudioInput,
    CapabilityReport,
    EngineCallbacks,
    PCMBufferInput,
    PlatformDeviceError,
    RecognitionEngine,
)
from .transcript import TranscriptAccumulator

__all__ = [
    "AudioInput",
    "CapabilityReport",
    "CaptureController",
    "CaptureSession",
    "CaptureState",
    "CaptureSummary",
    "EngineCallbacks",
    "GatewayClient",
    "PCMBufferInput",
    "PlatformDeviceError",
    "RecognitionEngine",
    "TranscriptAccumulator",
]
