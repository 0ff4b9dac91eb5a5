"""Masking for model output before it reaches the logs."""

from __future__ import annotations

import re

_CARD_PATTERN = re.compile(r"(?<!\d)\d(?:[\s-]?\d){11,18}(?!\d)")
_WHITESPACE = re.compile(r"\s+")


def sanitize_text(value: str) -> str:
    """Mask sensitive numeric sequences that resemble payment identifiers."""

    def _mask(match: re.Match[str]) -> str:
        digits = re.sub(r"\D", "", match.group())
        if len(digits) < 12:
            return match.group()
        return digits[:4] + "*" * (len(digits) - 8) + digits[-4:]

    return _CARD_PATTERN.sub(_mask, value)


def log_preview(value: str, limit: int = 140) -> str:
    """Single-line, masked, truncated view of a model response."""

    flattened = _WHITESPACE.sub(" ", value or "").strip()
    if len(flattened) > limit:
        flattened = flattened[:limit] + "..."
    return sanitize_text(flattened)


__all__ = ["sanitize_text", "log_preview"]
