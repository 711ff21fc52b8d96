"""Unit tests for prompt building and LLM response parsing."""

import json

import pytest

from services.extraction.prompts import (
    MAX_PROMPT_TEXT_CHARS,
    build_vat_prompt,
    document_text,
    parse_json_response,
)
from services.extraction.schema import DocumentInput


class TestJsonParsing:
    def test_parse_plain_json(self) -> None:
        assert parse_json_response('{"sales_vat": [23.0]}') == {"sales_vat": [23.0]}

    def test_parse_json_in_markdown(self) -> None:
        assert parse_json_response('```json\n{"confidence": 0.9}\n```') == {"confidence": 0.9}

    def test_parse_json_with_surrounding_text(self) -> None:
        response = 'Here is the result: {"document_type": "RECEIPT"} Done.'
        assert parse_json_response(response) == {"document_type": "RECEIPT"}

    def test_parse_invalid_json_raises(self) -> None:
        with pytest.raises(json.JSONDecodeError):
            parse_json_response("not json at all")


class TestPromptBuilding:
    def test_prompt_contains_category_and_rules(self) -> None:
        prompt = build_vat_prompt("receipt.jpg", "PURCHASE")

        assert '"receipt.jpg"' in prompt
        assert '"PURCHASE"' in prompt
        assert "STD23" in prompt
        assert "attached as an image or PDF" in prompt

    def test_prompt_contains_schema(self) -> None:
        prompt = build_vat_prompt("a.csv", "", "VAT,46.00")

        assert "purchase_vat" in prompt
        assert "validation_flags" in prompt
        assert "UNSPECIFIED" in prompt
        assert prompt.endswith("DOCUMENT TEXT:\nVAT,46.00")


class TestDocumentText:
    def test_visual_documents_have_no_text(self) -> None:
        image = DocumentInput(file_data=b"\x89PNG", mime_type="image/png", file_name="a.png")
        pdf = DocumentInput(file_data=b"%PDF", mime_type="application/pdf", file_name="a.pdf")

        assert document_text(image) is None
        assert document_text(pdf) is None

    def test_text_is_truncated(self) -> None:
        document = DocumentInput(
            file_data=b"x" * (MAX_PROMPT_TEXT_CHARS + 10), mime_type="text/plain", file_name="a"
        )

        text = document_text(document)

        assert text is not None
        assert len(text) == MAX_PROMPT_TEXT_CHARS
