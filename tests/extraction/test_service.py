from __future__ import annotations

import json

import httpx
import pytest

from ledgee.config import Settings
from ledgee.db.registry import sqlite_registry
from ledgee.extraction.assembler import record_id_for
from ledgee.extraction.prompts import AGENT_FOLLOWUP_PROMPT, STRUCTURED_PROMPT
from ledgee.extraction.service import InvoiceExtractionService
from ledgee.models.invoice import UNKNOWN_MERCHANT, ExtractionRequest

JOLLIBEE = (
    '{"merchantName":"Jollibee","date":"01/17/2024","total":"224.00","items":['
    '{"name":"Chicken Joy","quantity":2,"unitPrice":85,"totalPrice":170},'
    '{"name":"Rice","quantity":2,"unitPrice":15,"totalPrice":30}]}'
)


def _ollama_transport(
    structured_reply: str, *, models=("llava:latest",), agent_body=None
) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": name} for name in models]})
        body = json.loads(request.content)
        prompt = body["messages"][-1]["content"]
        if prompt.endswith(STRUCTURED_PROMPT):
            content = structured_reply
        elif prompt == AGENT_FOLLOWUP_PROMPT:
            if agent_body is not None:
                return httpx.Response(200, json=agent_body)
            content = "agentName: ROGER"
        else:  # pragma: no cover - unexpected prompt
            return httpx.Response(400, text="unexpected prompt")
        return httpx.Response(200, json={"message": {"role": "assistant", "content": content}})

    return httpx.MockTransport(handler)


@pytest.fixture()
def registry():
    return sqlite_registry()


@pytest.mark.asyncio
async def test_end_to_end_extraction(invoice_request, local_config, registry, today):
    service = InvoiceExtractionService(registry=registry, transport=_ollama_transport(JOLLIBEE))

    result = await service.extract(invoice_request, local_config, today=today)

    assert result.errors == []
    assert result.id == record_id_for(invoice_request.content)
    assert result.merchant_name == "Jollibee"
    assert result.date == "2024-01-17"
    assert result.total == pytest.approx(224.0)
    assert sum(item.total_price for item in result.items) == pytest.approx(200.0)
    assert result.confidence == pytest.approx(0.5)
    assert result.currency == "PHP"
    assert result.agent_name == "ROGER"
    assert result.agent_id == registry.agents.find_by_name("ROGER").id
    assert result.merchant_id == registry.merchants.find_by_name("Jollibee").id
    assert result.store_id is None
    assert result.model_identifier == "ollama:llava"
    assert result.raw_context_description == "[Image provided to ollama:llava session]"
    assert result.processing_time_ms >= 0


@pytest.mark.asyncio
async def test_repeated_extraction_is_idempotent(invoice_request, local_config, registry, today):
    service = InvoiceExtractionService(registry=registry, transport=_ollama_transport(JOLLIBEE))

    first = await service.extract(invoice_request, local_config, today=today)
    second = await service.extract(invoice_request, local_config, today=today)

    assert first.id == second.id
    assert first.merchant_id == second.merchant_id
    assert len(registry.merchants.list()) == 1
    assert len(registry.agents.list()) == 1


@pytest.mark.asyncio
async def test_unavailable_backend_returns_degraded_result(invoice_request, local_config, registry, today):
    service = InvoiceExtractionService(
        registry=registry, transport=_ollama_transport(JOLLIBEE, models=())
    )

    result = await service.extract(invoice_request, local_config, today=today)

    assert not result.succeeded
    assert "not been downloaded" in result.errors[0]
    assert result.merchant_name == UNKNOWN_MERCHANT
    assert result.total == 0
    assert result.items == []
    assert result.confidence == 0
    assert result.date == today.isoformat()
    assert registry.merchants.list() == []


@pytest.mark.asyncio
async def test_unparseable_response_degrades_with_low_confidence(invoice_request, local_config, registry, today):
    service = InvoiceExtractionService(
        registry=registry, transport=_ollama_transport("I cannot read this invoice")
    )

    result = await service.extract(invoice_request, local_config, today=today)

    assert result.errors and "Could not parse" in result.errors[0]
    assert result.merchant_name == UNKNOWN_MERCHANT
    assert result.confidence == pytest.approx(0.1)
    assert result.agent_id is None


@pytest.mark.asyncio
async def test_unexpected_errors_never_escape(invoice_request, local_config, registry, today):
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("transport exploded")

    service = InvoiceExtractionService(registry=registry, transport=httpx.MockTransport(handler))

    result = await service.extract(invoice_request, local_config, today=today)

    assert result.confidence == 0
    assert "transport exploded" in result.errors[0]


@pytest.mark.asyncio
async def test_remote_without_api_key_is_reported(invoice_request, remote_config, registry, today):
    config = remote_config.model_copy(update={"api_key": None})
    service = InvoiceExtractionService(registry=registry)

    result = await service.extract(invoice_request, config, today=today)

    assert "API key" in result.errors[0]
    assert result.model_identifier == "gemini:gemini-2.5-flash-lite"


def test_request_backend_selects_config(png_bytes):
    service = InvoiceExtractionService(settings=Settings(backend="local", remote_api_key="k"))

    remote = service.config_for(ExtractionRequest(content=png_bytes, backend="remote"))
    default = service.config_for(ExtractionRequest(content=png_bytes))

    assert remote.backend == "remote"
    assert remote.api_key == "k"
    assert default.backend == "local"


@pytest.mark.asyncio
async def test_check_availability_through_service(local_config):
    service = InvoiceExtractionService(transport=_ollama_transport(JOLLIBEE))
    report = await service.check_availability(local_config)
    assert report.available
    assert report.status == "available"


@pytest.mark.asyncio
async def test_malformed_agent_followup_keeps_structured_result(invoice_request, local_config, registry, today):
    service = InvoiceExtractionService(
        registry=registry, transport=_ollama_transport(JOLLIBEE, agent_body=[])
    )

    result = await service.extract(invoice_request, local_config, today=today)

    assert result.errors == []
    assert result.merchant_name == "Jollibee"
    assert result.confidence == pytest.approx(0.5)
    assert result.agent_name is None
    assert result.agent_id is None
    assert registry.agents.list() == []


@pytest.mark.asyncio
async def test_failed_extraction_falls_back_to_default_store(invoice_request, local_config, registry, today):
    store = registry.stores.create("Main Branch")
    service = InvoiceExtractionService(
        registry=registry, transport=_ollama_transport(JOLLIBEE, models=())
    )

    result = await service.extract(invoice_request, local_config, today=today)

    assert "not been downloaded" in result.errors[0]
    assert result.confidence == 0
    assert result.store_id == store.id
    assert result.store_name == "Main Branch"
    assert result.merchant_id is None
