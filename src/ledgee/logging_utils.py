"""Root logging setup for Ledgee with API-key and image-payload redaction."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Iterable, List, Pattern, Tuple

REDACTED = "[redacted]"

# (pattern, replacement) pairs applied to every formatted message.
_REDACTIONS: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/=]+", re.IGNORECASE), r"\1" + REDACTED),
    (re.compile(r"([?&]key=)[^&\s\"']+", re.IGNORECASE), r"\1" + REDACTED),
    (re.compile(r"(x-goog-api-key[=:]\s*)[^&\s\"']+", re.IGNORECASE), r"\1" + REDACTED),
    # Base64 image bodies sent to the model backends.
    (re.compile(r"[A-Za-z0-9+/]{512,}={0,2}"), "[image data]"),
)

# Record attributes copied into JSON output when a log call passes them via ``extra``.
CONTEXT_FIELDS = ("invoice_id", "backend", "stage")


def redact(message: str, secrets: Iterable[str] = ()) -> str:
    """Return ``message`` with known credential shapes and ``secrets`` masked."""

    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    for secret in secrets:
        if secret:
            message = message.replace(secret, REDACTED)
    return message


class SensitiveDataFilter(logging.Filter):
    """Redact API keys and image payloads before a record reaches a handler."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: List[str] = sorted(
            {secret.strip() for secret in secrets if secret and secret.strip()},
            key=len,
            reverse=True,
        )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message, self._secrets)
        if cleaned != message:
            record.msg, record.args = cleaned, ()
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if isinstance(value, str):
                setattr(record, field, redact(value, self._secrets))
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, carrying extraction context when present."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {field: getattr(record, field) for field in CONTEXT_FIELDS if getattr(record, field, None)}
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def _plain_formatter() -> logging.Formatter:
    return logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )


def configure_logging(level_name: str, fmt: str, secrets: Iterable[str]) -> None:
    """Install a single redacting stream handler on the root logger."""

    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    redactor = SensitiveDataFilter(secrets)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if (fmt or "").lower() == "json" else _plain_formatter())
    handler.addFilter(redactor)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    logging.captureWarnings(True)

    # httpx logs every request URL at INFO, and Gemini URLs carry the key.
    for name in ("httpx", "httpcore"):
        client_logger = logging.getLogger(name)
        client_logger.setLevel(max(level, logging.WARNING))
        if redactor not in client_logger.filters:
            client_logger.addFilter(redactor)


__all__ = ["REDACTED", "JsonFormatter", "SensitiveDataFilter", "configure_logging", "redact"]
