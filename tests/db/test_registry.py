from __future__ import annotations

import re

import pytest

from ledgee.db.registry import generate_record_id, sqlite_registry


@pytest.fixture()
def registry():
    return sqlite_registry()


def test_generate_record_id_format():
    record_id = generate_record_id("merchant")
    assert re.fullmatch(r"merchant_\d{13}_[0-9a-f]{9}", record_id)
    assert generate_record_id("merchant") != record_id


def test_create_and_find_merchant_case_insensitively(registry):
    created = registry.merchants.create("  Acme Corp ", address="1 Rizal Ave, Manila")

    assert created.name == "Acme Corp"
    assert created.address == "1 Rizal Ave, Manila"
    assert created.id.startswith("merchant_")
    assert created.created_at is not None

    found = registry.merchants.find_by_name("ACME corp")
    assert found is not None
    assert found.id == created.id
    assert registry.merchants.find_by_name("Acme Corp.") is None
    assert registry.merchants.find_by_name("   ") is None


def test_list_is_sorted_by_name(registry):
    registry.agents.create("Roger")
    registry.agents.create("Edward")

    assert [agent.name for agent in registry.agents.list()] == ["Edward", "Roger"]


def test_agents_never_store_an_address(registry):
    agent = registry.agents.create("Liza", address="ignored")
    assert agent.address is None


def test_create_requires_a_name(registry):
    with pytest.raises(ValueError):
        registry.stores.create("   ")


def test_first_store_becomes_default(registry):
    assert registry.stores.get_default() is None

    first = registry.stores.create("Main Branch")
    second = registry.stores.create("Annex")

    assert first.is_default is True
    assert second.is_default is False
    default = registry.stores.get_default()
    assert default is not None
    assert default.id == first.id
    assert sum(store.is_default for store in registry.stores.list()) == 1


def test_tables_are_independent(registry):
    registry.merchants.create("Shared Name")
    assert registry.agents.find_by_name("Shared Name") is None
    assert registry.stores.find_by_name("Shared Name") is None
