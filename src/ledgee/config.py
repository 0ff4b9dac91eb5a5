"""Application configuration helpers."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_FILE_CANDIDATES = (Path(".env"), Path(".env.local"))

BackendName = Literal["local", "remote"]


class Settings(BaseModel):
    """Global application settings loaded from environment variables or .env files."""

    database_path: Path = Field(
        default=Path("./data/ledgee.db"),
        description="SQLite database holding the merchant/store/agent registry.",
    )
    log_level: str = Field(default="INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    log_format: str = Field(
        default="plain",
        description="Logging format (plain/json).",
    )
    backend: BackendName = Field(
        default="local",
        description="Model backend used for extraction (local or remote).",
    )
    local_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server hosting the on-device multimodal model.",
    )
    local_model: str = Field(
        default="llava",
        description="Multimodal model served by the local backend.",
    )
    remote_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API base URL.",
    )
    remote_model: str = Field(
        default="gemini-2.5-flash-lite",
        description="Gemini model identifier for remote extraction.",
    )
    remote_api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key; required for the remote backend.",
    )
    structured_timeout: float = Field(
        default=15.0,
        description="Seconds allowed for the structured prompt and, separately, the fallback prompt.",
    )
    agent_timeout: float = Field(
        default=5.0,
        description="Seconds allowed for the agent follow-up prompt.",
    )
    temperature: float = Field(
        default=0.1,
        description="Sampling temperature for extraction prompts.",
    )
    default_currency: str = Field(
        default="PHP",
        description="Currency assumed when neither the response nor the raw text names one.",
    )

    model_config = ConfigDict(frozen=True)


class ExtractionConfig(BaseModel):
    """Per-call backend selection and policy; nothing here outlives one extraction."""

    backend: BackendName = "local"
    local_base_url: str = "http://localhost:11434"
    local_model: str = "llava"
    remote_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    remote_model: str = "gemini-2.5-flash-lite"
    api_key: Optional[str] = None
    structured_timeout: float = 15.0
    agent_timeout: float = 5.0
    temperature: float = 0.1
    default_currency: str = "PHP"

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: object) -> "ExtractionConfig":
        settings = settings or get_settings()
        payload: dict[str, object] = {
            "backend": settings.backend,
            "local_base_url": settings.local_base_url,
            "local_model": settings.local_model,
            "remote_base_url": settings.remote_base_url,
            "remote_model": settings.remote_model,
            "api_key": settings.remote_api_key,
            "structured_timeout": settings.structured_timeout,
            "agent_timeout": settings.agent_timeout,
            "temperature": settings.temperature,
            "default_currency": settings.default_currency,
        }
        payload.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**payload)

    @property
    def model_label(self) -> str:
        if self.backend == "remote":
            return f"gemini:{self.remote_model}"
        return f"ollama:{self.local_model}"


def _parse_env_file(path: Path) -> dict[str, str]:
    payload: dict[str, str] = {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, raw_value = line.split("=", 1)
                payload[key.strip()] = raw_value.strip()
    except FileNotFoundError:
        return {}
    return payload


def _load_env_file_values() -> dict[str, str]:
    values: dict[str, str] = {}
    for candidate in ENV_FILE_CANDIDATES:
        values.update(_parse_env_file(candidate))
    return values


def _load_from_env() -> dict[str, object]:
    """Load optional overrides from env vars (with .env fallbacks)."""

    file_values = _load_env_file_values()

    def _env(key: str) -> Optional[str]:
        return os.environ.get(key) or file_values.get(key)

    payload: dict[str, object] = {}
    if (db_path := _env("LEDGEE_DATABASE_PATH")):
        payload["database_path"] = Path(db_path)
    if (log_level := _env("LEDGEE_LOG_LEVEL")):
        payload["log_level"] = log_level
    if (log_format := _env("LEDGEE_LOG_FORMAT")):
        payload["log_format"] = log_format
    if (backend := _env("LEDGEE_BACKEND")):
        normalized = backend.strip().lower()
        if normalized in {"local", "remote"}:
            payload["backend"] = normalized
    if (local_base_url := _env("LEDGEE_LOCAL_BASE_URL")):
        payload["local_base_url"] = local_base_url
    if (local_model := _env("LEDGEE_LOCAL_MODEL")):
        payload["local_model"] = local_model
    if (remote_base_url := _env("LEDGEE_REMOTE_BASE_URL")):
        payload["remote_base_url"] = remote_base_url
    if (remote_model := _env("LEDGEE_REMOTE_MODEL")):
        payload["remote_model"] = remote_model
    if (remote_api_key := _env("LEDGEE_REMOTE_API_KEY")):
        payload["remote_api_key"] = remote_api_key
    if (structured_timeout := _env("LEDGEE_STRUCTURED_TIMEOUT")):
        try:
            payload["structured_timeout"] = float(structured_timeout)
        except ValueError:
            pass
    if (agent_timeout := _env("LEDGEE_AGENT_TIMEOUT")):
        try:
            payload["agent_timeout"] = float(agent_timeout)
        except ValueError:
            pass
    if (temperature := _env("LEDGEE_TEMPERATURE")):
        try:
            payload["temperature"] = float(temperature)
        except ValueError:
            pass
    if (default_currency := _env("LEDGEE_DEFAULT_CURRENCY")):
        payload["default_currency"] = default_currency.strip().upper()
    return payload


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings(**_load_from_env())
