"""
Voice dictation backend and capture client.

Design intent:
- Keep one transcription contract regardless of which STT vendor is configured.
- Keep microphone session quirks on the client side behind an explicit state machine.
"""
