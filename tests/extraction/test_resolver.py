from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from ledgee.db.registry import sqlite_registry
from ledgee.extraction.resolver import EntityResolver, ResolvedEntities
from ledgee.models.invoice import UNKNOWN_MERCHANT, CandidateInvoice, InvoiceAddress


@pytest.fixture()
def registry():
    return sqlite_registry()


@pytest.fixture()
def resolver(registry):
    return EntityResolver(registry)


def _candidate(**overrides) -> CandidateInvoice:
    payload = {"merchant_name": "Acme Corp", "date": "2024-01-17", "total": 10.0}
    payload.update(overrides)
    return CandidateInvoice(**payload)


def test_find_or_create_is_idempotent(resolver, registry):
    first = resolver.find_or_create(registry.merchants, "Acme Corp")
    second = resolver.find_or_create(registry.merchants, "acme corp")

    assert first.id == second.id
    assert len(registry.merchants.list()) == 1


def test_near_duplicates_are_not_merged(resolver, registry):
    resolver.find_or_create(registry.merchants, "Acme Corp")
    resolver.find_or_create(registry.merchants, "Acme Corp.")
    assert len(registry.merchants.list()) == 2


def test_resolve_creates_merchant_store_and_agent(resolver, registry):
    candidate = _candidate(
        merchant_address=InvoiceAddress(street="1 Rizal Ave", city="Manila"),
        store_name="Main Branch",
        agent_name="ROGER",
    )

    resolved = resolver.resolve(candidate)

    merchant = registry.merchants.find_by_name("Acme Corp")
    assert resolved.merchant_id == merchant.id
    assert merchant.address == "1 Rizal Ave, Manila"
    store = registry.stores.find_by_name("Main Branch")
    assert resolved.store_id == store.id
    assert resolved.store_name == "Main Branch"
    assert store.is_default is True
    assert resolved.agent_id == registry.agents.find_by_name("roger").id


def test_resolve_twice_reuses_existing_entities(resolver, registry):
    candidate = _candidate(store_name="Main Branch", agent_name="ROGER")
    first = resolver.resolve(candidate)
    second = resolver.resolve(candidate)

    assert first == second
    assert len(registry.merchants.list()) == 1
    assert len(registry.stores.list()) == 1
    assert len(registry.agents.list()) == 1


def test_missing_store_falls_back_to_default(resolver, registry):
    default = registry.stores.create("Main Branch")
    registry.stores.create("Annex")

    resolved = resolver.resolve(_candidate())

    assert resolved.store_id == default.id
    assert resolved.store_name == "Main Branch"


def test_missing_store_without_any_store_stays_empty(resolver, registry):
    resolved = resolver.resolve(_candidate())

    assert resolved.store_id is None
    assert resolved.store_name is None
    assert registry.stores.list() == []


def test_new_store_does_not_change_default(resolver, registry):
    registry.stores.create("Main Branch")
    resolver.resolve(_candidate(store_name="Pop-up Kiosk"))

    assert registry.stores.get_default().name == "Main Branch"
    assert registry.stores.find_by_name("Pop-up Kiosk").is_default is False


def test_unknown_merchant_and_blank_agent_are_not_registered(resolver, registry):
    resolved = resolver.resolve(_candidate(merchant_name=UNKNOWN_MERCHANT, agent_name="  "))

    assert resolved.merchant_id is None
    assert resolved.agent_id is None
    assert registry.merchants.list() == []
    assert registry.agents.list() == []


class _BrokenTable:
    table_name = "merchants"

    def list(self):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def find_by_name(self, name):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def create(self, name, address=None):  # pragma: no cover - lookup fails first
        raise AssertionError("create should not be reached")

    def get_default(self):
        raise OperationalError("SELECT", {}, Exception("database is locked"))


class _PartiallyBrokenRegistry:
    def __init__(self, working):
        self.merchants = _BrokenTable()
        self.stores = _BrokenTable()
        self.agents = working.agents


def test_registry_errors_leave_ids_empty(registry, caplog):
    resolver = EntityResolver(_PartiallyBrokenRegistry(registry))

    with caplog.at_level("ERROR"):
        resolved = resolver.resolve(_candidate(agent_name="Liza"))

    assert resolved.merchant_id is None
    assert resolved.store_id is None
    assert resolved.agent_id == registry.agents.find_by_name("Liza").id
    assert "Registry lookup failed" in caplog.text


@pytest.mark.asyncio
async def test_resolve_async_runs_in_worker_thread(resolver, registry):
    resolved = await resolver.resolve_async(_candidate(store_name="Main Branch"))
    assert resolved.store_id == registry.stores.find_by_name("Main Branch").id


def test_resolve_default_carries_only_the_default_store(resolver, registry):
    assert resolver.resolve_default() == ResolvedEntities()

    main = registry.stores.create("Main Branch")
    registry.stores.create("Annex")

    assert resolver.resolve_default() == ResolvedEntities(store_id=main.id, store_name="Main Branch")


def test_resolve_default_tolerates_registry_errors(registry, caplog):
    resolver = EntityResolver(_PartiallyBrokenRegistry(registry))

    with caplog.at_level("ERROR"):
        assert resolver.resolve_default() == ResolvedEntities()

    assert "Could not load the default store" in caplog.text
