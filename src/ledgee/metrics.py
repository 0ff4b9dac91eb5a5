"""Prometheus metrics definitions for Ledgee."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

EXTRACTIONS = Counter(
    "ledgee_extractions_total",
    "Number of invoice extractions by terminal status",
    ["status", "backend"],
)

EXTRACTION_LATENCY = Histogram(
    "ledgee_extraction_duration_seconds",
    "Wall-clock duration of invoice extractions",
    ["backend"],
)

PROMPT_STAGES = Counter(
    "ledgee_prompt_stages_total",
    "Prompt stage outcomes observed by the extraction orchestrator",
    ["stage", "outcome"],
)

REGISTRY_CREATES = Counter(
    "ledgee_registry_entities_created_total",
    "Number of registry entities created by find-or-create resolution",
    ["table"],
)

__all__ = [
    "EXTRACTIONS",
    "EXTRACTION_LATENCY",
    "PROMPT_STAGES",
    "REGISTRY_CREATES",
]
