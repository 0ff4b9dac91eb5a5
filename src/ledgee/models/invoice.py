"""Pydantic models for invoice extraction requests and results."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNKNOWN_MERCHANT = "Unknown Merchant"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractionRequest(_CamelModel):
    """Image payload submitted for one extraction call."""

    content: bytes
    mime_type: str = "image/jpeg"
    backend: Optional[Literal["local", "remote"]] = None
    filename: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class InvoiceAddress(_CamelModel):
    """Merchant address as read from the invoice header."""

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None

    def as_text(self) -> str:
        parts = [self.street, self.city, self.state, self.zip_code, self.country]
        return ", ".join(part.strip() for part in parts if part and part.strip())


class InvoiceItem(_CamelModel):
    """Line item with coerced numeric fields."""

    id: str
    name: str
    description: Optional[str] = None
    quantity: float = 1.0
    unit_price: float = 0.0
    total_price: float = 0.0
    category: Optional[str] = None


class CandidateInvoice(_CamelModel):
    """Normalized view of a model response, prior to registry resolution."""

    store_name: Optional[str] = None
    merchant_name: str = UNKNOWN_MERCHANT
    merchant_address: Optional[InvoiceAddress] = None
    invoice_number: Optional[str] = None
    date: str
    time: Optional[str] = None
    items: List[InvoiceItem] = Field(default_factory=list)
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: float = 0.0
    currency: str = "PHP"
    payment_method: Optional[str] = None
    agent_name: Optional[str] = None
    terms: Optional[str] = None
    terms_days: Optional[int] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    confidence: float = 0.5


class ExtractionResult(CandidateInvoice):
    """Terminal artifact handed to the persistence collaborator."""

    id: str
    merchant_id: Optional[str] = None
    store_id: Optional[str] = None
    agent_id: Optional[str] = None
    processing_time_ms: int = 0
    model_identifier: str = ""
    raw_context_description: str = ""
    extracted_at: datetime
    errors: List[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors
