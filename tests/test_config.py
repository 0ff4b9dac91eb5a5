from __future__ import annotations

from pathlib import Path

from ledgee.config import ExtractionConfig, Settings, get_settings


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("LEDGEE_DATABASE_PATH", raising=False)
    monkeypatch.chdir(Path(__file__).parent)
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.backend == "local"
    assert settings.structured_timeout == 15.0
    assert settings.agent_timeout == 5.0
    assert settings.default_currency == "PHP"
    assert settings.remote_api_key is None


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("LEDGEE_BACKEND", "REMOTE")
    monkeypatch.setenv("LEDGEE_REMOTE_API_KEY", "key-123")
    monkeypatch.setenv("LEDGEE_STRUCTURED_TIMEOUT", "20")
    monkeypatch.setenv("LEDGEE_AGENT_TIMEOUT", "not-a-number")
    monkeypatch.setenv("LEDGEE_DEFAULT_CURRENCY", "usd")
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.backend == "remote"
    assert settings.remote_api_key == "key-123"
    assert settings.structured_timeout == 20.0
    assert settings.agent_timeout == 5.0
    assert settings.default_currency == "USD"
    assert settings.database_path.name == "test_ledgee.db"


def test_settings_read_env_file(monkeypatch, tmp_path):
    (tmp_path / ".env").write_text(
        "# local overrides\nLEDGEE_LOCAL_MODEL=llava:13b\nLEDGEE_TEMPERATURE=0.3\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.local_model == "llava:13b"
    assert settings.temperature == 0.3


def test_extraction_config_overrides_ignore_none():
    settings = Settings(backend="local", local_model="llava", remote_api_key="k")

    config = ExtractionConfig.from_settings(settings, backend="remote", api_key=None, remote_model=None)

    assert config.backend == "remote"
    assert config.api_key == "k"
    assert config.remote_model == "gemini-2.5-flash-lite"
    assert config.model_label == "gemini:gemini-2.5-flash-lite"
    assert ExtractionConfig.from_settings(settings).model_label == "ollama:llava"
