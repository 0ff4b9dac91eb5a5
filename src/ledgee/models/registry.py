"""Pydantic models for the merchant/store/agent reference registry."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class RegistryEntity(BaseModel):
    """Name-keyed registry row shared by merchants, stores and agents."""

    id: str
    name: str
    address: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Merchant(RegistryEntity):
    """Merchant that issued an invoice."""


class Store(RegistryEntity):
    """Store (branch) an invoice is filed under; at most one is the default."""

    is_default: bool = False


class Agent(RegistryEntity):
    """Sales agent or cashier named on an invoice."""
