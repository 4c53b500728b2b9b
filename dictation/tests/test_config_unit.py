from dictation.internal_core.config import PROVIDER_KEY_ENV, load_config

_ENV_KEYS = [
    "SPEECH_PROVIDER",
    "SPEECH_API_KEY",
    "SPEECH_MAX_UPLOAD_BYTES",
    "SPEECH_POLL_INTERVAL_SEC",
    "SPEECH_MAX_POLL_ATTEMPTS",
    "DICTATION_CORS_ORIGINS",
    "CAPTURE_SILENCE_TIMEOUT_SEC",
    "CAPTURE_MAX_IDLE_RESTARTS",
    "CAPTURE_SHIP_AUDIO",
    *PROVIDER_KEY_ENV.values(),
]


def _clean_env(monkeypatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_load_config_defaults(monkeypatch) -> None:
    _clean_env(monkeypatch)

    cfg = load_config()

    assert cfg.SPEECH_PROVIDER == "assemblyai"
    assert cfg.SPEECH_MAX_UPLOAD_BYTES == 10 * 1024 * 1024
    assert cfg.CAPTURE_SILENCE_TIMEOUT_SEC == 8.0
    assert cfg.CAPTURE_MAX_IDLE_RESTARTS is None
    assert cfg.CAPTURE_SHIP_AUDIO is True
    assert cfg.DICTATION_CORS_ORIGINS == ["*"]
    assert cfg.provider_config().has_credential is False


def test_load_config_reads_overrides(monkeypatch) -> None:
    _clean_env(monkeypatch)
    monkeypatch.setenv("SPEECH_PROVIDER", " Deepgram ")
    monkeypatch.setenv("SPEECH_MAX_UPLOAD_BYTES", "2048")
    monkeypatch.setenv("SPEECH_POLL_INTERVAL_SEC", "0.5")
    monkeypatch.setenv("SPEECH_MAX_POLL_ATTEMPTS", "7")
    monkeypatch.setenv("DICTATION_CORS_ORIGINS", "http://localhost:3000, https://app.example")
    monkeypatch.setenv("CAPTURE_MAX_IDLE_RESTARTS", "3")
    monkeypatch.setenv("CAPTURE_SHIP_AUDIO", "false")

    cfg = load_config()
    provider = cfg.provider_config()

    assert cfg.SPEECH_PROVIDER == "deepgram"
    assert cfg.SPEECH_MAX_UPLOAD_BYTES == 2048
    assert cfg.DICTATION_CORS_ORIGINS == ["http://localhost:3000", "https://app.example"]
    assert cfg.CAPTURE_MAX_IDLE_RESTARTS == 3
    assert cfg.CAPTURE_SHIP_AUDIO is False
    assert provider.provider_id == "deepgram"
    assert provider.poll_interval_sec == 0.5
    assert provider.max_poll_attempts == 7


def test_shared_key_only_applies_to_active_provider(monkeypatch) -> None:
    _clean_env(monkeypatch)
    monkeypatch.setenv("SPEECH_PROVIDER", "whisper")
    monkeypatch.setenv("SPEECH_API_KEY", "shared-key")
    monkeypatch.setenv("DEEPGRAM_API_KEY", "dg-dedicated")

    cfg = load_config()

    assert cfg.credential_for("whisper") == "shared-key"
    assert cfg.credential_for("deepgram") == "dg-dedicated"
    assert cfg.credential_for("google") == ""


def test_dedicated_key_wins_over_shared_key(monkeypatch) -> None:
    _clean_env(monkeypatch)
    monkeypatch.setenv("SPEECH_PROVIDER", "google")
    monkeypatch.setenv("SPEECH_API_KEY", "shared-key")
    monkeypatch.setenv("GOOGLE_SPEECH_API_KEY", "g-dedicated")

    assert load_config().provider_config().credential == "g-dedicated"


def test_credentials_are_hidden_from_repr(monkeypatch) -> None:
    _clean_env(monkeypatch)
    monkeypatch.setenv("SPEECH_API_KEY", "very-secret-key")

    cfg = load_config()

    assert "very-secret-key" not in repr(cfg)
    assert "very-secret-key" not in repr(cfg.provider_config())
