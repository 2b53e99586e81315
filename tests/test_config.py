from config import Settings, load_settings

_KEYS = [
    "PORT", "DATABASE_PATH", "ENVIRONMENT", "LOG_LEVEL", "GROK_API_KEY", "GROK_MODEL",
    "GROK_BASE_URL", "GROK_TIMEOUT", "WHATSAPP_ACCESS_TOKEN", "WHATSAPP_VERIFY_TOKEN",
    "WHATSAPP_PHONE_NUMBER_ID", "WHATSAPP_WEBHOOK_URL", "SESSION_CLEANUP_INTERVAL_SEC",
]


def _clear(monkeypatch):
    for key in _KEYS:
        # setenv first so teardown also removes values loaded from .env files
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def test_defaults(monkeypatch, tmp_path):
    _clear(monkeypatch)
    settings = load_settings(str(tmp_path / "missing.env"))
    assert settings == Settings()
    assert settings.port == 8080
    assert settings.grok_model == "grok-beta"
    assert settings.grok_base_url == "https://api.x.ai/v1"
    assert not settings.grok_configured


def test_environment_overrides(monkeypatch, tmp_path):
    _clear(monkeypatch)
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("GROK_API_KEY", "xai-abc")
    monkeypatch.setenv("GROK_BASE_URL", "http://localhost:1234/v1/")
    monkeypatch.setenv("GROK_TIMEOUT", "5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("DATABASE_PATH", "  ")
    settings = load_settings(str(tmp_path / "missing.env"))
    assert settings.port == 9090
    assert settings.grok_configured
    assert settings.grok_base_url == "http://localhost:1234/v1"
    assert settings.grok_timeout == 5.0
    assert settings.log_level == "DEBUG"
    # Blank values fall back to defaults
    assert settings.database_path == "./mcp_server.db"


def test_dotenv_file_does_not_override_environment(monkeypatch, tmp_path):
    _clear(monkeypatch)
    env_file = tmp_path / ".env"
    env_file.write_text("GROK_MODEL=grok-2\nWHATSAPP_VERIFY_TOKEN=from-file\n", encoding="utf-8")
    monkeypatch.setenv("GROK_MODEL", "grok-beta-env")
    settings = load_settings(str(env_file))
    assert settings.grok_model == "grok-beta-env"
    assert settings.whatsapp_verify_token == "from-file"
