"""Find-or-create resolution of merchant, store and agent names."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Sequence, Tuple

from ledgee import metrics
from ledgee.models.invoice import UNKNOWN_MERCHANT, CandidateInvoice
from ledgee.models.registry import RegistryEntity, Store

logger = logging.getLogger(__name__)


class RegistryTable(Protocol):
    """Registry collaborator contract consumed by the resolver."""

    @property
    def table_name(self) -> str: ...

    def list(self) -> Sequence[RegistryEntity]: ...

    def create(self, name: str, address: Optional[str] = None) -> RegistryEntity: ...

    def find_by_name(self, name: str) -> Optional[RegistryEntity]: ...


class StoreRegistryTable(RegistryTable, Protocol):
    def get_default(self) -> Optional[Store]: ...


class RegistryCollection(Protocol):
    merchants: RegistryTable
    stores: StoreRegistryTable
    agents: RegistryTable


@dataclass(frozen=True)
class ResolvedEntities:
    merchant_id: Optional[str] = None
    store_id: Optional[str] = None
    store_name: Optional[str] = None
    agent_id: Optional[str] = None


class EntityResolver:
    """Attach stable registry identifiers to the names on a candidate invoice.

    Lookups are case-insensitive exact matches; near-duplicate names (for
    example differing punctuation) are never merged.  Registry failures are
    logged and leave the corresponding identifier empty.
    """

    def __init__(self, registry: RegistryCollection) -> None:
        self._registry = registry

    def find_or_create(
        self, table: RegistryTable, name: str, address: Optional[str] = None
    ) -> RegistryEntity:
        existing = table.find_by_name(name)
        if existing is not None:
            return existing
        created = table.create(name.strip(), address)
        metrics.REGISTRY_CREATES.labels(table=table.table_name).inc()
        logger.info("Created %s registry entry %s (%s)", table.table_name, created.id, created.name)
        return created

    def resolve(self, candidate: CandidateInvoice) -> ResolvedEntities:
        """Resolve merchant, store and agent for one extraction call."""

        seen: Dict[Tuple[str, str], RegistryEntity] = {}

        def _lookup(table: RegistryTable, name: Optional[str], address: Optional[str] = None):
            cleaned = (name or "").strip()
            if not cleaned:
                return None
            key = (table.table_name, cleaned.lower())
            if key in seen:
                return seen[key]
            try:
                entity = self.find_or_create(table, cleaned, address)
            except Exception:
                logger.exception("Registry lookup failed for %s %r", table.table_name, cleaned)
                return None
            seen[key] = entity
            return entity

        merchant = None
        if candidate.merchant_name and candidate.merchant_name != UNKNOWN_MERCHANT:
            address = candidate.merchant_address.as_text() if candidate.merchant_address else None
            merchant = _lookup(self._registry.merchants, candidate.merchant_name, address or None)

        store = _lookup(self._registry.stores, candidate.store_name)
        if store is None and not (candidate.store_name or "").strip():
            store = self._default_store()

        agent = _lookup(self._registry.agents, candidate.agent_name)

        return ResolvedEntities(
            merchant_id=merchant.id if merchant else None,
            store_id=store.id if store else None,
            store_name=store.name if store else candidate.store_name,
            agent_id=agent.id if agent else None,
        )

    def _default_store(self) -> Optional[Store]:
        try:
            store = self._registry.stores.get_default()
        except Exception:
            logger.exception("Could not load the default store")
            return None
        if store is None:
            logger.debug("No store extracted and no default store configured")
        return store

    def resolve_default(self) -> ResolvedEntities:
        """Entities for a record with nothing extracted: only the default store."""

        store = self._default_store()
        if store is None:
            return ResolvedEntities()
        return ResolvedEntities(store_id=store.id, store_name=store.name)

    async def resolve_async(self, candidate: CandidateInvoice) -> ResolvedEntities:
        """Run ``resolve`` in a worker thread so registry I/O never blocks the loop."""

        return await asyncio.to_thread(self.resolve, candidate)

    async def resolve_default_async(self) -> ResolvedEntities:
        return await asyncio.to_thread(self.resolve_default)


__all__ = [
    "EntityResolver",
    "RegistryCollection",
    "RegistryTable",
    "ResolvedEntities",
    "StoreRegistryTable",
]
