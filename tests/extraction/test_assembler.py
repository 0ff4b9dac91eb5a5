from __future__ import annotations

from datetime import datetime, timezone

from ledgee.extraction.assembler import ResultAssembler, record_id_for
from ledgee.extraction.resolver import ResolvedEntities
from ledgee.models.invoice import UNKNOWN_MERCHANT, CandidateInvoice, InvoiceItem

FIXED_NOW = datetime(2024, 1, 17, 9, 30, tzinfo=timezone.utc)


def test_record_id_is_deterministic_per_image():
    assert record_id_for(b"image-a") == record_id_for(b"image-a")
    assert record_id_for(b"image-a") != record_id_for(b"image-b")
    assert record_id_for(b"image-a").startswith("inv_")


def test_assemble_merges_candidate_and_resolved_ids():
    candidate = CandidateInvoice(
        merchant_name="Jollibee",
        date="2024-01-17",
        items=[InvoiceItem(id="item_1", name="Rice", quantity=2, unit_price=15, total_price=30)],
        total=30.0,
        confidence=0.8,
    )
    resolved = ResolvedEntities(
        merchant_id="merchant_1", store_id="store_1", store_name="Main Branch", agent_id="agent_1"
    )

    result = ResultAssembler(clock=lambda: FIXED_NOW).assemble(
        candidate,
        resolved,
        record_id="inv_abc",
        processing_time_ms=1234,
        model_identifier="ollama:llava",
        raw_context="[Image provided to ollama:llava session]",
    )

    assert result.id == "inv_abc"
    assert result.merchant_name == "Jollibee"
    assert result.store_name == "Main Branch"
    assert (result.merchant_id, result.store_id, result.agent_id) == (
        "merchant_1",
        "store_1",
        "agent_1",
    )
    assert result.items[0].total_price == 30
    assert result.processing_time_ms == 1234
    assert result.model_identifier == "ollama:llava"
    assert result.extracted_at == FIXED_NOW
    assert result.errors == []
    assert result.succeeded


def test_result_serializes_with_camel_case_aliases():
    candidate = CandidateInvoice(merchant_name="Acme", date="2024-01-17", terms_days=30)
    result = ResultAssembler(clock=lambda: FIXED_NOW).assemble(
        candidate,
        ResolvedEntities(),
        record_id="inv_1",
        processing_time_ms=5,
        model_identifier="gemini:gemini-2.5-flash-lite",
    )

    payload = result.model_dump(mode="json", by_alias=True)
    assert payload["merchantName"] == "Acme"
    assert payload["termsDays"] == 30
    assert payload["processingTimeMs"] == 5
    assert payload["storeName"] is None


def test_degraded_result_is_a_zero_confidence_placeholder(today):
    result = ResultAssembler(clock=lambda: FIXED_NOW).degraded(
        "Model backend not ready (status: no).",
        record_id="inv_1",
        processing_time_ms=12,
        model_identifier="ollama:llava",
        today=today,
    )

    assert result.merchant_name == UNKNOWN_MERCHANT
    assert result.total == 0
    assert result.items == []
    assert result.confidence == 0
    assert result.date == today.isoformat()
    assert result.errors == ["Model backend not ready (status: no)."]
    assert not result.succeeded
