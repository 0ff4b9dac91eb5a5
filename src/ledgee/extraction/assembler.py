"""Composition of normalized invoices and resolved ids into ExtractionResult."""

from __future__ import annotations

import hashlib
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional

from ledgee.extraction.normalizer import degraded_invoice
from ledgee.extraction.resolver import ResolvedEntities
from ledgee.models.invoice import CandidateInvoice, ExtractionResult


def record_id_for(content: bytes) -> str:
    """Deterministic record id derived from the image bytes."""

    return f"inv_{hashlib.sha256(content).hexdigest()[:16]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResultAssembler:
    """Build terminal ExtractionResult records; holds no validation logic."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utcnow

    def assemble(
        self,
        candidate: CandidateInvoice,
        resolved: ResolvedEntities,
        *,
        record_id: str,
        processing_time_ms: int,
        model_identifier: str,
        raw_context: str = "",
        errors: Iterable[str] = (),
    ) -> ExtractionResult:
        payload = candidate.model_dump()
        payload["store_name"] = resolved.store_name or candidate.store_name
        return ExtractionResult(
            **payload,
            id=record_id,
            merchant_id=resolved.merchant_id,
            store_id=resolved.store_id,
            agent_id=resolved.agent_id,
            processing_time_ms=processing_time_ms,
            model_identifier=model_identifier,
            raw_context_description=raw_context,
            extracted_at=self._clock(),
            errors=list(errors),
        )

    def degraded(
        self,
        error: str,
        *,
        record_id: str,
        processing_time_ms: int,
        model_identifier: str,
        today: Optional[date] = None,
        currency: str = "PHP",
        resolved: Optional[ResolvedEntities] = None,
    ) -> ExtractionResult:
        """Terminal placeholder returned when the pipeline could not complete.

        ``resolved`` usually carries just the default store, so a failed record
        still lands in a store when one exists.
        """

        placeholder = degraded_invoice(today=today, confidence=0.0, currency=currency)
        return self.assemble(
            placeholder,
            resolved or ResolvedEntities(),
            record_id=record_id,
            processing_time_ms=processing_time_ms,
            model_identifier=model_identifier,
            errors=[error],
        )


__all__ = ["ResultAssembler", "record_id_for"]
