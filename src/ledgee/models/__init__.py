"""Pydantic models defining shared data contracts."""

from ledgee.models.invoice import (
    UNKNOWN_MERCHANT,
    CandidateInvoice,
    ExtractionRequest,
    ExtractionResult,
    InvoiceAddress,
    InvoiceItem,
)
from ledgee.models.registry import Agent, Merchant, RegistryEntity, Store

__all__ = [
    "UNKNOWN_MERCHANT",
    "CandidateInvoice",
    "ExtractionRequest",
    "ExtractionResult",
    "InvoiceAddress",
    "InvoiceItem",
    "Agent",
    "Merchant",
    "RegistryEntity",
    "Store",
]
