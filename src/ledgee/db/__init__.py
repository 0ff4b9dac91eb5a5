"""Registry persistence."""

from .registry import AgentTable, MerchantTable, Registry, StoreTable, sqlite_registry

__all__ = ["AgentTable", "MerchantTable", "Registry", "StoreTable", "sqlite_registry"]
