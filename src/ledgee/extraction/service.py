"""Top-level invoice extraction entry point."""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Callable, Optional

import httpx

from ledgee import metrics
from ledgee.config import ExtractionConfig, Settings, get_settings
from ledgee.db.registry import sqlite_registry
from ledgee.extraction.assembler import ResultAssembler, record_id_for
from ledgee.extraction.gateway import ExtractionError
from ledgee.extraction.normalizer import normalize_with_diagnostics
from ledgee.extraction.orchestrator import AvailabilityReport, ExtractionOrchestrator
from ledgee.extraction.resolver import EntityResolver, RegistryCollection
from ledgee.models.invoice import ExtractionRequest, ExtractionResult

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class InvoiceExtractionService:
    """Run image -> gateway -> normalizer -> resolver -> assembler for one request.

    ``extract`` always returns a well-formed ``ExtractionResult``; failures are
    reported through ``errors`` and a zero confidence instead of exceptions.
    Each call builds its own orchestrator from the supplied configuration, so
    concurrent calls share nothing but the registry.
    """

    def __init__(
        self,
        *,
        registry: RegistryCollection | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        assembler: ResultAssembler | None = None,
        id_factory: Callable[[bytes], str] = record_id_for,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._resolver = EntityResolver(registry or sqlite_registry())
        self._assembler = assembler or ResultAssembler()
        self._id_factory = id_factory

    def config_for(
        self, request: ExtractionRequest | None = None, config: ExtractionConfig | None = None
    ) -> ExtractionConfig:
        if config is not None:
            return config
        backend = request.backend if request is not None else None
        return ExtractionConfig.from_settings(self._settings or get_settings(), backend=backend)

    def _orchestrator(self, config: ExtractionConfig) -> ExtractionOrchestrator:
        return ExtractionOrchestrator.from_config(config, transport=self._transport)

    async def extract(
        self,
        request: ExtractionRequest,
        config: ExtractionConfig | None = None,
        *,
        today: Optional[date] = None,
    ) -> ExtractionResult:
        started = time.perf_counter()
        record_id = self._id_factory(request.content)
        config = self.config_for(request, config)
        log_extra = {"invoice_id": record_id, "backend": config.backend}
        label = config.model_label
        logger.info("Extracting invoice with %s", label, extra=log_extra)

        try:
            outcome = await self._orchestrator(config).run(request)
            normalized = normalize_with_diagnostics(
                outcome.response_text, today=today, default_currency=config.default_currency
            )
            invoice = normalized.invoice
            if not normalized.degraded and not invoice.agent_name and outcome.agent_hint:
                invoice = invoice.model_copy(update={"agent_name": outcome.agent_hint})
            resolved = await self._resolver.resolve_async(invoice)
            result = self._assembler.assemble(
                invoice,
                resolved,
                record_id=record_id,
                processing_time_ms=_elapsed_ms(started),
                model_identifier=outcome.model_label,
                raw_context=outcome.raw_context,
                errors=normalized.errors,
            )
            status = "degraded" if normalized.degraded else "ok"
        except ExtractionError as exc:
            logger.warning("Invoice extraction failed: %s", exc, extra=log_extra)
            result = await self._degraded(str(exc), record_id, started, label, today, config)
            status = "failed"
        except Exception as exc:
            logger.exception("Unexpected error during invoice extraction", extra=log_extra)
            message = f"Unexpected extraction error: {exc}" if str(exc) else exc.__class__.__name__
            result = await self._degraded(message, record_id, started, label, today, config)
            status = "failed"

        metrics.EXTRACTIONS.labels(status=status, backend=config.backend).inc()
        metrics.EXTRACTION_LATENCY.labels(backend=config.backend).observe(
            result.processing_time_ms / 1000
        )
        logger.info(
            "Extraction finished status=%s total=%.2f confidence=%.2f in %sms",
            status,
            result.total,
            result.confidence,
            result.processing_time_ms,
            extra=log_extra,
        )
        return result

    async def _degraded(
        self,
        message: str,
        record_id: str,
        started: float,
        label: str,
        today: Optional[date],
        config: ExtractionConfig,
    ) -> ExtractionResult:
        resolved = await self._resolver.resolve_default_async()
        return self._assembler.degraded(
            message,
            record_id=record_id,
            processing_time_ms=_elapsed_ms(started),
            model_identifier=label,
            today=today,
            currency=config.default_currency,
            resolved=resolved,
        )

    async def describe_image(
        self, request: ExtractionRequest, config: ExtractionConfig | None = None
    ) -> str:
        """Free-text description of the invoice; raises ExtractionError on failure."""

        return await self._orchestrator(self.config_for(request, config)).describe_image(request)

    async def check_availability(self, config: ExtractionConfig | None = None) -> AvailabilityReport:
        return await self._orchestrator(self.config_for(None, config)).check_availability()

    async def test_connection(self, config: ExtractionConfig | None = None) -> bool:
        return await self._orchestrator(self.config_for(None, config)).test_connection()


__all__ = ["InvoiceExtractionService"]
