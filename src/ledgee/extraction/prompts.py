"""Prompt text and response schema for invoice extraction."""

from __future__ import annotations

from typing import Any, Dict

_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_NUMBER = {"type": ["number", "string", "null"]}

INVOICE_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "merchantName": _NULLABLE_STRING,
        "storeName": _NULLABLE_STRING,
        "merchantAddress": {
            "type": ["object", "null"],
            "properties": {
                "street": _NULLABLE_STRING,
                "city": _NULLABLE_STRING,
                "state": _NULLABLE_STRING,
                "zipCode": _NULLABLE_STRING,
                "country": _NULLABLE_STRING,
            },
            "additionalProperties": True,
        },
        "invoiceNumber": _NULLABLE_STRING,
        "date": _NULLABLE_STRING,
        "time": _NULLABLE_STRING,
        "subtotal": _NULLABLE_NUMBER,
        "tax": _NULLABLE_NUMBER,
        "total": {"type": ["number", "string"]},
        "currency": _NULLABLE_STRING,
        "paymentMethod": _NULLABLE_STRING,
        "agentName": _NULLABLE_STRING,
        "terms": _NULLABLE_STRING,
        "termsDays": _NULLABLE_NUMBER,
        "phoneNumber": _NULLABLE_STRING,
        "email": _NULLABLE_STRING,
        "website": _NULLABLE_STRING,
        "confidence": _NULLABLE_NUMBER,
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": _NULLABLE_STRING,
                    "name": _NULLABLE_STRING,
                    "description": _NULLABLE_STRING,
                    "quantity": _NULLABLE_NUMBER,
                    "unitPrice": _NULLABLE_NUMBER,
                    "totalPrice": _NULLABLE_NUMBER,
                    "category": _NULLABLE_STRING,
                },
                "additionalProperties": True,
            },
        },
    },
    "required": ["merchantName", "date", "total", "items"],
    "additionalProperties": True,
}

EXTRACTION_SYSTEM_PROMPT = """You are an expert invoice data extraction assistant. Analyze invoice photos and extract structured data with high accuracy.

Extract:
- Merchant name and address, and the store/branch name if printed
- Invoice number, date and time
- Terms and agent information (look for a "TERMS/AGENT" field)
- Every line item with quantity, unit price and line total
- Subtotal, tax and total amounts
- Currency (symbols such as $, €, £, ¥, ₱ or codes such as USD, EUR, GBP, JPY, PHP)
- Payment method and contact details (phone, email, website) when visible

Respond with valid JSON in exactly this shape:
{
  "merchantName": "string",
  "storeName": "string",
  "merchantAddress": {"street": "string", "city": "string", "state": "string", "zipCode": "string", "country": "string"},
  "invoiceNumber": "string",
  "date": "YYYY-MM-DD",
  "time": "HH:MM",
  "agentName": "string",
  "terms": "string",
  "termsDays": number,
  "items": [
    {"id": "string", "name": "string", "description": "string", "quantity": number, "unitPrice": number, "totalPrice": number, "category": "string"}
  ],
  "subtotal": number,
  "tax": number,
  "total": number,
  "currency": "string",
  "paymentMethod": "string",
  "phoneNumber": "string",
  "email": "string",
  "website": "string",
  "confidence": number
}

Rules:
1. TERMS/AGENT: for "TERMS/AGENT: 120 DAYS (ROGER)" or "TERMS/AGENT: 120 DAYS EDWARD" return terms "120 DAYS", termsDays 120 and agentName "ROGER" or "EDWARD". The signature at the bottom is not the agent.
2. Totals: handwritten totals (often in red ink or highlighted) take precedence over the sum of the line items. Report the handwritten figure as total.
3. Quantities: skip crossed-out rows, trust circled values, and read the QUANTITY column exactly (a "50" is 50, not 1). Check quantity x unitPrice = totalPrice.
4. Addresses: copy place names exactly as written.
5. Use null for missing values, item ids "item_1", "item_2", ..., ISO dates, and plain numbers without currency symbols or thousands separators.
6. confidence is between 0 and 1 and reflects legibility and completeness. If no currency is indicated, use PHP and lower confidence."""

IMAGE_CONTEXT_PROMPT = (
    "Analyze this invoice image and prepare to respond with the structured data "
    "described in the system instructions."
)

STRUCTURED_PROMPT = "Return only the JSON object that represents the extracted invoice."

FALLBACK_PROMPT = (
    "Extract the invoice data as JSON with the fields merchantName, storeName, merchantAddress, "
    "agentName, terms, termsDays, invoiceNumber, date, time, subtotal, tax, total, currency, "
    "paymentMethod, phoneNumber, email, website, confidence, and items (array with name, "
    "description, quantity, unitPrice, totalPrice, category). Pay attention to: 1) TERMS/AGENT "
    'fields such as "TERMS/AGENT: 120 DAYS (ROGER)" or "TERMS/AGENT: 120 DAYS EDWARD" which '
    'give terms="120 DAYS", termsDays=120, agentName="ROGER" or "EDWARD"; 2) handwritten '
    "totals, which win over calculated totals; 3) crossed-out rows, which are excluded; "
    "4) exact quantities from the QUANTITY column; 5) comma-separated numbers like \"13,365\". "
    "Output plain numbers for monetary values. Return only the JSON object."
)

AGENT_FOLLOWUP_PROMPT = (
    "What is the sales agent or cashier name shown on this invoice? "
    "Respond with `agentName: <name>` or `agentName: null` if none."
)

DESCRIPTION_SYSTEM_PROMPT = (
    "You are a detailed invoice analysis assistant. Describe ALL visible information in "
    "invoice images: every piece of text, number and detail. Rows with a horizontal line "
    "through them are crossed out and must be excluded."
)

DESCRIPTION_PROMPT = (
    "Extract and describe all visible information from this invoice image: merchant name, "
    "address, invoice number, date, terms/agent information, every item (quantity, description, "
    "price), totals, currency and any other text or numbers. Exclude crossed-out rows. "
    "Be thorough and list everything that is clearly visible and valid."
)

CONNECTION_TEST_PROMPT = "Hello, are you ready to extract invoice data?"

__all__ = [
    "AGENT_FOLLOWUP_PROMPT",
    "CONNECTION_TEST_PROMPT",
    "DESCRIPTION_PROMPT",
    "DESCRIPTION_SYSTEM_PROMPT",
    "EXTRACTION_SYSTEM_PROMPT",
    "FALLBACK_PROMPT",
    "IMAGE_CONTEXT_PROMPT",
    "INVOICE_RESPONSE_SCHEMA",
    "STRUCTURED_PROMPT",
]
