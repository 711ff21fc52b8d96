"""Prompt, response schema and response parsing shared by the AI providers."""

import json
import re
from typing import Any

from services.extraction.schema import DocumentInput, DocumentKind
from services.extraction.structured_parser import read_workbook

# Enough for multi-page exports without blowing the context window
MAX_PROMPT_TEXT_CHARS = 12_000

SYSTEM_PROMPT = (
    "You are an Irish VAT document analyst. You read invoices, receipts, credit notes "
    "and e-commerce tax reports and return the VAT figures a business needs for its "
    "VAT3 return."
)

VAT_DATA_SCHEMA: dict[str, Any] = {
    "name": "extract_vat_data",
    "description": "Extract VAT figures and business details from a financial document",
    "parameters": {
        "type": "object",
        "properties": {
            "document_type": {
                "type": "string",
                "enum": [
                    "INVOICE",
                    "RECEIPT",
                    "CREDIT_NOTE",
                    "SALES_INVOICE",
                    "PURCHASE_INVOICE",
                    "SALES_RECEIPT",
                    "PURCHASE_RECEIPT",
                    "OTHER",
                ],
            },
            "business_details": {
                "type": "object",
                "properties": {
                    "business_name": {"type": ["string", "null"]},
                    "vat_number": {"type": ["string", "null"]},
                    "address": {"type": ["string", "null"]},
                },
            },
            "transaction_data": {
                "type": "object",
                "properties": {
                    "date": {"type": ["string", "null"], "format": "date"},
                    "invoice_number": {"type": ["string", "null"]},
                    "currency": {"type": ["string", "null"]},
                },
            },
            "sales_vat": {"type": "array", "items": {"type": "number", "minimum": 0}},
            "purchase_vat": {"type": "array", "items": {"type": "number", "minimum": 0}},
            "total_amount": {"type": ["number", "null"]},
            "vat_rate": {"type": ["number", "null"]},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "extracted_text": {"type": "string"},
            "validation_flags": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["document_type", "sales_vat", "purchase_vat", "confidence"],
    },
}


def build_vat_prompt(file_name: str, category: str, document_text: str | None = None) -> str:
    """Build the user prompt for VAT extraction.

    Args:
        file_name: Original filename
        category: Caller-supplied SALES/PURCHASE category hint
        document_text: Text content for non-visual documents (spreadsheets, text)

    Returns:
        Formatted prompt string
    """
    schema = json.dumps(VAT_DATA_SCHEMA["parameters"]["properties"], indent=None)
    source = (
        f"DOCUMENT TEXT:\n{document_text}"
        if document_text is not None
        else "The document is attached as an image or PDF."
    )

    return f"""Extract the VAT information from the document "{file_name}".
The uploader filed it under the category: "{category or 'UNSPECIFIED'}".

IRISH VAT RULES:
- Rates: 23% standard, 13.5% reduced, 9% second reduced (hospitality, tourism), 4.8% livestock, 0%
- Till receipts print rate bands: STD23 (23%), RED13.5 (13.5%), TOU9 (9%), MIN (livestock)
- sales_vat: VAT the business CHARGED its customers (its own sales invoices, sales reports)
- purchase_vat: VAT the business PAID to suppliers (bills, receipts, expenses)
- When the document itself is ambiguous, use the category above: SALES -> sales_vat, PURCHASE -> purchase_vat
- Report each distinct VAT amount once; never add the same figure from a summary and a line item
- VAT amounts are never negative; use null/empty lists for anything not clearly present
- Irish VAT numbers look like IE1234567A or IE1234567AB

VALIDATION FLAGS (add any that apply):
- MISSING_VAT_NUMBER, NON_IRISH_VAT, NO_VAT_FOUND, MISSING_DATE

CONFIDENCE: 0.9+ only when every VAT figure is printed clearly; lower it for blurry scans,
handwritten amounts or figures you had to calculate.

Return ONLY valid JSON matching this schema (dates as YYYY-MM-DD):
{schema}

{source}"""


def document_text(document: DocumentInput) -> str | None:
    """Text content to inline in the prompt, or None for visual documents."""
    if document.kind in (DocumentKind.PDF, DocumentKind.IMAGE):
        return None

    if document.file_data[:2] == b"PK":
        text = read_workbook(document.file_data).text
    else:
        text = document.decode_text()
    return text[:MAX_PROMPT_TEXT_CHARS]


def parse_json_response(response_text: str) -> dict[str, Any]:
    """Extract and parse JSON from LLM response.

    Handles common LLM quirks like markdown code blocks.

    Args:
        response_text: Raw LLM response

    Returns:
        Parsed JSON dict

    Raises:
        json.JSONDecodeError: If no valid JSON found
    """
    json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response_text)
    if json_match:
        result: dict[str, Any] = json.loads(json_match.group(1).strip())
        return result

    json_match = re.search(r"\{[\s\S]*\}", response_text)
    if json_match:
        result = json.loads(json_match.group(0))
        return result

    result = json.loads(response_text.strip())
    return result
