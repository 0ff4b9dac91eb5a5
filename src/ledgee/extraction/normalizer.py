"""Turn noisy model output into a validated CandidateInvoice."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ledgee.extraction.sanitize import log_preview
from ledgee.models.invoice import UNKNOWN_MERCHANT, CandidateInvoice, InvoiceAddress, InvoiceItem

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DEGRADED_CONFIDENCE = 0.1
TOTAL_TOLERANCE = 0.01
# Absolute, currency-unaware threshold; see DESIGN.md.
TOTAL_PENALTY_THRESHOLD = 100.0
TOTAL_PENALTY = 0.2
MAX_JSON_SPAN = 256 * 1024

_STRIPPED_GLYPHS = re.compile(r"[₱¥€£]")
_NUMERIC_CHARS = re.compile(r"[^0-9.,\-]")
_THOUSANDS_GROUPED = re.compile(r"^-?\d{1,3}(?:,\d{3})+$")
_LEADING_NUMBER = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_DATE_SPLIT = re.compile(r"[/-]")
_ISO_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})")
_TERMS_AGENT_PAREN = re.compile(r"terms/agent[:\s]*(\d+)\s*days?\s*\(([^)]+)\)", re.IGNORECASE)
_TERMS_AGENT_LOOSE = re.compile(
    r"terms/agent[:\s]*(\d+)\s*days?[ \t]+([A-Za-z][A-Za-z .'-]*)", re.IGNORECASE
)
_BARE_DAYS = re.compile(r"(\d+)\s*days?\b", re.IGNORECASE)

_NATIVE_DATE_FORMATS = (
    "%Y/%m/%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d %Y",
    "%b %d %Y",
)

CURRENCY_SYMBOLS: Dict[str, str] = {
    "₱": "PHP",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "₽": "RUB",
    "₩": "KRW",
    "₪": "ILS",
}
CURRENCY_CODES = (
    "PHP",
    "USD",
    "EUR",
    "GBP",
    "JPY",
    "INR",
    "CHF",
    "CAD",
    "AUD",
    "NZD",
    "SGD",
    "HKD",
    "SEK",
    "NOK",
    "DKK",
    "PLN",
    "CZK",
    "HUF",
    "BRL",
    "MXN",
    "CNY",
    "TRY",
    "ZAR",
)
_CURRENCY_CODE_PATTERN = re.compile(r"\b(" + "|".join(CURRENCY_CODES) + r")\b")

_AGENT_KEYS = (
    "agentName",
    "agent",
    "salesAgent",
    "salesperson",
    "cashier",
    "representative",
    "accountManager",
)


def to_number(value: Any) -> Optional[float]:
    """Tolerantly coerce ``value`` to a finite float, or ``None``."""

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    cleaned = _NUMERIC_CHARS.sub("", value)
    if "," in cleaned:
        if "." in cleaned or _THOUSANDS_GROUPED.match(cleaned) or cleaned.count(",") > 1:
            cleaned = cleaned.replace(",", "")
        else:
            # "12,5" style: a lone comma that is not thousands grouping is a decimal mark.
            cleaned = cleaned.replace(",", ".")

    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return None
    number = float(match.group())
    return number if math.isfinite(number) else None


def _native_date(text: str) -> Optional[date]:
    iso = _ISO_PREFIX.match(text)
    if iso:
        try:
            return date.fromisoformat(iso.group(1))
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _NATIVE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def to_iso_date(value: Any, *, today: Optional[date] = None) -> str:
    """Normalize ``value`` to ``YYYY-MM-DD``, defaulting to ``today``."""

    fallback = today or date.today()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return fallback.isoformat()

    trimmed = value.strip()
    if not trimmed:
        return fallback.isoformat()

    parsed = _native_date(trimmed)
    if parsed is not None:
        return parsed.isoformat()

    parts = [part.strip() for part in _DATE_SPLIT.split(trimmed)]
    if len(parts) == 3 and all(part.isdigit() for part in parts):
        month, day, year = parts
        if len(year) == 2:
            year = f"20{year}"
        try:
            return date(int(year), int(month), int(day)).isoformat()
        except ValueError:
            pass

    return fallback.isoformat()


def extract_json_candidate(text: str) -> str:
    """Return the span from the first ``{`` to the last ``}`` (or the trimmed text)."""

    trimmed = (text or "").strip()
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start != -1 and end > start:
        candidate = trimmed[start : end + 1]
    else:
        candidate = trimmed
    if len(candidate) > MAX_JSON_SPAN:
        raise ValueError(f"JSON span of {len(candidate)} characters exceeds {MAX_JSON_SPAN}")
    return candidate


def detect_currency(
    explicit: Any, raw_texts: Iterable[str], *, default: str = "PHP"
) -> str:
    """Resolve the currency code from an explicit field or symbols/codes in text."""

    if isinstance(explicit, str) and explicit.strip():
        value = explicit.strip()
        if value in CURRENCY_SYMBOLS:
            return CURRENCY_SYMBOLS[value]
        return value.upper()

    for text in raw_texts:
        if not text:
            continue
        for symbol, code in CURRENCY_SYMBOLS.items():
            if symbol in text:
                return code
        match = _CURRENCY_CODE_PATTERN.search(text)
        if match:
            return match.group(1)
    return default


def _clean_text(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        value = value.get("name")
    if value is None or isinstance(value, (list, dict)):
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


def _first_text(payload: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        text = _clean_text(payload.get(key))
        if text:
            return text
    return None


def _first_present(payload: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _coerce_address(value: Any) -> Optional[InvoiceAddress]:
    if isinstance(value, str) and value.strip():
        return InvoiceAddress(street=value.strip())
    if not isinstance(value, Mapping):
        return None
    address = InvoiceAddress(
        street=_first_text(value, ("street", "line1", "address")),
        city=_first_text(value, ("city",)),
        state=_first_text(value, ("state", "province")),
        zip_code=_first_text(value, ("zipCode", "zip_code", "postalCode", "zip")),
        country=_first_text(value, ("country",)),
    )
    return address if address.as_text() else None


def _resolve_agent(payload: Mapping[str, Any]) -> Optional[str]:
    agent = _first_text(payload, _AGENT_KEYS)
    if agent:
        return agent
    for key, value in payload.items():
        lowered = key.lower()
        if "agent" in lowered or "cashier" in lowered:
            text = _clean_text(value)
            if text:
                return text
    return None


def _to_terms_days(value: Any) -> Optional[int]:
    number = to_number(value)
    if not number:
        return None
    return int(number)


def _normalize_items(raw_items: Any) -> List[InvoiceItem]:
    if not isinstance(raw_items, list):
        return []
    items: List[InvoiceItem] = []
    for index, entry in enumerate(raw_items, start=1):
        item = entry if isinstance(entry, Mapping) else {"name": entry}
        quantity = to_number(_first_present(item, ("quantity", "qty")))
        if quantity is None:
            quantity = 1.0
        unit_price = to_number(
            _first_present(item, ("unitPrice", "unit_price", "price_per_unit", "price"))
        )
        if unit_price is None:
            unit_price = 0.0
        # A bare "price" is read as the line total too, even when quantity > 1.
        total_price = to_number(_first_present(item, ("totalPrice", "total_price", "total", "price")))
        if total_price is None:
            total_price = quantity * unit_price

        description = _clean_text(item.get("description"))
        items.append(
            InvoiceItem(
                id=_clean_text(item.get("id")) or f"item_{index}",
                name=_clean_text(item.get("name")) or description or f"Item {index}",
                description=description,
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
                category=_clean_text(item.get("category")),
            )
        )
    return items


@dataclass
class _TermsAgent:
    terms: Optional[str]
    terms_days: Optional[int]
    agent_name: Optional[str]


def _recover_terms_and_agent(raw_text: str, current: _TermsAgent) -> _TermsAgent:
    """Fill missing terms/agent fields from the raw model text."""

    result = _TermsAgent(current.terms, current.terms_days, current.agent_name)
    match = _TERMS_AGENT_PAREN.search(raw_text) or _TERMS_AGENT_LOOSE.search(raw_text)
    if match:
        logger.debug("Recovered TERMS/AGENT pattern from raw response: %s", match.group(0))
        days = int(match.group(1))
        if not result.terms_days:
            result.terms_days = days
        if not result.terms:
            result.terms = f"{days} DAYS"
        if not result.agent_name:
            result.agent_name = match.group(2).strip() or None

    if not result.terms_days:
        days_match = _BARE_DAYS.search(raw_text)
        if days_match:
            result.terms_days = int(days_match.group(1))
            if not result.terms:
                result.terms = f"{days_match.group(1)} DAYS"
    return result


def degraded_invoice(
    *,
    today: Optional[date] = None,
    confidence: float = DEGRADED_CONFIDENCE,
    currency: str = "PHP",
) -> CandidateInvoice:
    """Minimal placeholder used when a response cannot be parsed."""

    return CandidateInvoice(
        merchant_name=UNKNOWN_MERCHANT,
        date=(today or date.today()).isoformat(),
        items=[],
        total=0.0,
        currency=currency,
        confidence=confidence,
    )


@dataclass
class NormalizedResponse:
    """Normalizer output plus any parse problems worth reporting."""

    invoice: CandidateInvoice
    errors: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.errors)


def _build_invoice(
    parsed: Mapping[str, Any], raw_text: str, *, today: date, default_currency: str
) -> CandidateInvoice:
    terms_agent = _TermsAgent(
        terms=_clean_text(parsed.get("terms")),
        terms_days=_to_terms_days(parsed.get("termsDays")),
        agent_name=_resolve_agent(parsed),
    )
    if not (terms_agent.terms and terms_agent.terms_days and terms_agent.agent_name):
        terms_agent = _recover_terms_and_agent(raw_text, terms_agent)

    raw_date = parsed.get("date") or _first_present(parsed, ("invoice_date", "transaction_date"))
    items = _normalize_items(parsed.get("items"))

    stated_total = to_number(_first_present(parsed, ("total", "totalAmount", "amount_due")))
    total = stated_total if stated_total is not None else 0.0
    confidence = to_number(parsed.get("confidence"))
    confidence = DEFAULT_CONFIDENCE if confidence is None else min(1.0, max(0.0, confidence))

    calculated_total = sum(item.total_price for item in items)
    difference = abs(calculated_total - total)
    if difference > TOTAL_TOLERANCE:
        # The stated (usually handwritten) total is authoritative over the line-item sum.
        logger.warning(
            "Total mismatch calculated=%.2f stated=%.2f difference=%.2f",
            calculated_total,
            total,
            difference,
        )
        if confidence and difference > TOTAL_PENALTY_THRESHOLD:
            confidence = max(DEGRADED_CONFIDENCE, confidence - TOTAL_PENALTY)

    return CandidateInvoice(
        store_name=_first_text(parsed, ("storeName", "store", "branch")),
        merchant_name=_first_text(parsed, ("merchantName", "merchant", "vendor")) or UNKNOWN_MERCHANT,
        merchant_address=_coerce_address(parsed.get("merchantAddress")),
        invoice_number=_first_text(
            parsed, ("invoiceNumber", "invoice_number", "invoice_no", "invoiceId")
        ),
        date=to_iso_date(raw_date, today=today),
        time=_clean_text(parsed.get("time")),
        items=items,
        subtotal=to_number(parsed.get("subtotal")),
        tax=to_number(_first_present(parsed, ("tax", "sales_tax"))),
        total=total,
        currency=detect_currency(
            _first_present(parsed, ("currency", "currencyCode", "currency_code")),
            (raw_text, _clean_text(parsed.get("rawText")) or ""),
            default=default_currency,
        ),
        payment_method=_first_text(parsed, ("paymentMethod", "payment_method", "payment_type")),
        agent_name=terms_agent.agent_name,
        terms=terms_agent.terms,
        terms_days=terms_agent.terms_days,
        phone_number=_first_text(parsed, ("phoneNumber", "phone")),
        email=_first_text(parsed, ("email",)),
        website=_first_text(parsed, ("website",)),
        confidence=confidence,
    )


def normalize_with_diagnostics(
    raw_text: str,
    *,
    today: Optional[date] = None,
    default_currency: str = "PHP",
) -> NormalizedResponse:
    """Normalize ``raw_text``; never raises, degrading to a placeholder instead."""

    current_day = today or date.today()
    try:
        candidate = _STRIPPED_GLYPHS.sub("", extract_json_candidate(raw_text))
        parsed = json.loads(candidate)
        if not isinstance(parsed, dict):
            raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
        invoice = _build_invoice(
            parsed, raw_text or "", today=current_day, default_currency=default_currency
        )
    except (ValueError, TypeError, RecursionError) as exc:
        logger.warning(
            "Failed to parse model response: %s; response=%s", exc, log_preview(raw_text or "")
        )
        return NormalizedResponse(
            invoice=degraded_invoice(today=current_day, currency=default_currency),
            errors=[f"Could not parse model response: {exc}"],
        )
    return NormalizedResponse(invoice=invoice)


def normalize_response(
    raw_text: str,
    *,
    today: Optional[date] = None,
    default_currency: str = "PHP",
) -> CandidateInvoice:
    """Pure ``raw text -> CandidateInvoice`` conversion."""

    return normalize_with_diagnostics(
        raw_text, today=today, default_currency=default_currency
    ).invoice


__all__ = [
    "CURRENCY_CODES",
    "CURRENCY_SYMBOLS",
    "NormalizedResponse",
    "degraded_invoice",
    "detect_currency",
    "extract_json_candidate",
    "normalize_response",
    "normalize_with_diagnostics",
    "to_iso_date",
    "to_number",
]
