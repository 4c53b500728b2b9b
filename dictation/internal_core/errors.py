from __future__ import annotations

from typing import Optional

from .contracts import ERROR_KINDS


class STTError(RuntimeError):
    def __init__(
        self,
        code: str,
        message: str,
        provider_name: str,
        *,
        status_code: Optional[int] = None,
    ):
        if code not in ERROR_KINDS:
            raise ValueError(f"Unknown error kind: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name
        self.status_code = status_code


class CaptureError(RuntimeError):
    def __init__(self, code: str, message: str):
        if code not in ERROR_KINDS:
            raise ValueError(f"Unknown error kind: {code}")
        super().__init__(message)
        self.code = code
        self.message = message


def redact_secret(text: str, secret: Optional[str]) -> str:
    if not text or not secret:
        return text
    return text.replace(secret, "***")
