"""Invoice photo extraction pipeline."""

from ledgee.extraction.assembler import ResultAssembler, record_id_for
from ledgee.extraction.gateway import (
    BackendError,
    BackendUnavailableError,
    ExtractionError,
    GatewayTimeoutError,
    ModelGateway,
    PromptOutcome,
    build_gateway,
)
from ledgee.extraction.images import UnsupportedImageError, load_request
from ledgee.extraction.normalizer import normalize_response, to_iso_date, to_number
from ledgee.extraction.orchestrator import (
    AvailabilityReport,
    ExtractionOrchestrator,
    OrchestrationOutcome,
)
from ledgee.extraction.resolver import EntityResolver, ResolvedEntities
from ledgee.extraction.service import InvoiceExtractionService

__all__ = [
    "AvailabilityReport",
    "BackendError",
    "BackendUnavailableError",
    "EntityResolver",
    "ExtractionError",
    "ExtractionOrchestrator",
    "GatewayTimeoutError",
    "InvoiceExtractionService",
    "ModelGateway",
    "OrchestrationOutcome",
    "PromptOutcome",
    "ResolvedEntities",
    "ResultAssembler",
    "UnsupportedImageError",
    "build_gateway",
    "load_request",
    "normalize_response",
    "record_id_for",
    "to_iso_date",
    "to_number",
]
