from __future__ import annotations

"""
Merge finalized and interim recognizer text into one live transcript.

Design intent:
- Finalized text is append-only; interim text is replaced on every event.
- An engine restart never loses text: pending interim text is committed first.
"""

import re

_WS_RE = re.compile(r"\s+")


def _clean(text: str) -> str:
    return _WS_RE.sub(" ", (text or "").strip())


class TranscriptAccumulator:
    def __init__(self) -> None:
        self._finalized: list[str] = []
        self._interim = ""

    @property
    def finalized(self) -> str:
        return " ".join(self._finalized)

    @property
    def interim(self) -> str:
        return self._interim

    def apply(self, final_text: str, interim_text: str) -> str:
        """Append newly finalized text, replace the interim hypothesis, return the merged string."""
        final_clean = _clean(final_text)
        if final_clean:
            self._finalized.append(final_clean)
        self._interim = _clean(interim_text)
        return self.merged()

    def commit_interim(self) -> str:
        if self._interim:
            self._finalized.append(self._interim)
            self._interim = ""
        return self.merged()

    def merged(self) -> str:
        if self._interim:
            return " ".join([*self._finalized, self._interim])
        return self.finalized

    def reset(self) -> None:
        self._finalized = []
        self._interim = ""
