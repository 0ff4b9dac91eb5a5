"""Shared pytest fixtures for the Ledgee test suite."""

from __future__ import annotations

import io
import logging
from datetime import date

import pytest
from PIL import Image

from ledgee.config import ExtractionConfig, get_settings
from ledgee.db.repository import reset_repository_state
from ledgee.models.invoice import ExtractionRequest

TODAY = date(2024, 3, 5)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Ensure each test uses an isolated SQLite database location."""

    db_path = tmp_path / "test_ledgee.db"
    monkeypatch.setenv("LEDGEE_DATABASE_PATH", str(db_path))
    monkeypatch.delenv("LEDGEE_REMOTE_API_KEY", raising=False)
    monkeypatch.delenv("LEDGEE_BACKEND", raising=False)
    get_settings.cache_clear()
    reset_repository_state()
    yield
    reset_repository_state()
    monkeypatch.delenv("LEDGEE_DATABASE_PATH", raising=False)
    get_settings.cache_clear()


@pytest.fixture()
def restore_root_logging():
    """Undo configure_logging() so later tests keep pytest's handlers."""

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    clients = {name: logging.getLogger(name) for name in ("httpx", "httpcore")}
    saved = {name: (lg.filters[:], lg.level) for name, lg in clients.items()}
    yield
    root.handlers = handlers
    root.setLevel(level)
    for name, lg in clients.items():
        lg.filters, lg.level = saved[name]


@pytest.fixture()
def today() -> date:
    return TODAY


@pytest.fixture()
def png_bytes() -> bytes:
    """A tiny valid PNG standing in for an invoice photo."""

    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(255, 255, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def invoice_request(png_bytes) -> ExtractionRequest:
    return ExtractionRequest(content=png_bytes, mime_type="image/png", filename="invoice.png")


@pytest.fixture()
def local_config() -> ExtractionConfig:
    return ExtractionConfig(
        backend="local",
        local_base_url="http://ollama.test",
        local_model="llava",
        structured_timeout=0.5,
        agent_timeout=0.2,
    )


@pytest.fixture()
def remote_config() -> ExtractionConfig:
    return ExtractionConfig(
        backend="remote",
        remote_base_url="https://gemini.test/v1beta",
        remote_model="gemini-2.5-flash-lite",
        api_key="test-api-key",
        structured_timeout=0.5,
        agent_timeout=0.2,
    )
