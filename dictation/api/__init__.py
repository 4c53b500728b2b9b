"""
HTTP boundary for the transcription gateway.

Design intent:
- Expose thin, typed speech endpoints.
- Keep request validation explicit and failure modes predictable.
- Delegate provider selection and error mapping to internal_core.
"""
