"""Unit tests for OpenAIDocumentService.

The OpenAI API is never called: the retrying API call is patched out.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from services.extraction.openai_provider import OpenAIDocumentService
from services.extraction.schema import DocumentInput
from services.shared.config import Settings


@pytest.fixture
def service() -> OpenAIDocumentService:
    return OpenAIDocumentService(Settings(openai_model="gpt-4o-mini"))


@pytest.fixture
def api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


def _function_call_response(arguments: dict[str, object] | None) -> MagicMock:
    response = MagicMock()
    message = response.choices[0].message
    if arguments is None:
        message.function_call = None
    else:
        message.function_call.arguments = json.dumps(arguments)
    return response


def test_provider_name(service: OpenAIDocumentService) -> None:
    assert service.provider_name == "openai"


def test_not_available_without_api_key(
    service: OpenAIDocumentService, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert service.is_available() is False
    result = service.process_document(b"data", "image/png", "r.png", "")
    assert result.success is False
    assert "OPENAI_API_KEY" in str(result.error)


def test_empty_document(service: OpenAIDocumentService, api_key: None) -> None:
    result = service.process_document(b"", "image/png", "r.png", "")

    assert result.success is False
    assert result.error == "Empty document provided"


def test_successful_extraction(service: OpenAIDocumentService, api_key: None) -> None:
    response = _function_call_response(
        {
            "document_type": "INVOICE",
            "business_details": {"business_name": "Acme Ltd", "vat_number": "IE9876543W"},
            "sales_vat": [46.0],
            "purchase_vat": [],
            "total_amount": 246.0,
            "confidence": 0.92,
        }
    )

    with patch.object(service, "_call_openai_with_retry", return_value=response):
        result = service.process_document(b"\x89PNG", "image/png", "invoice.png", "SALES")

    assert result.success is True
    assert result.provider == "openai"
    assert result.extracted_data is not None
    assert result.extracted_data.sales_vat == [46.0]
    assert result.extracted_data.business_details.vat_number == "IE9876543W"


def test_missing_function_call(service: OpenAIDocumentService, api_key: None) -> None:
    with patch.object(
        service, "_call_openai_with_retry", return_value=_function_call_response(None)
    ):
        result = service.process_document(b"\x89PNG", "image/png", "r.png", "")

    assert result.success is False
    assert result.error == "No function call in API response"


def test_api_failure_reported_not_raised(service: OpenAIDocumentService, api_key: None) -> None:
    with patch.object(
        service, "_call_openai_with_retry", side_effect=RuntimeError("API unavailable")
    ):
        result = service.process_document(b"\x89PNG", "image/png", "r.png", "")

    assert result.success is False
    assert "AI extraction failed: API unavailable" == result.error


class TestBuildMessages:
    def test_image_attached_as_data_url(self, service: OpenAIDocumentService) -> None:
        document = DocumentInput(file_data=b"\x89PNG", mime_type="image/png", file_name="r.png")

        messages = service._build_messages(document)

        assert messages[0]["role"] == "system"
        content = messages[1]["content"]
        assert content[1]["type"] == "image_url"
        assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw=="

    def test_pdf_attached_as_file(self, service: OpenAIDocumentService) -> None:
        document = DocumentInput(
            file_data=b"%PDF-1.4", mime_type="application/pdf", file_name="i.pdf"
        )

        content = service._build_messages(document)[1]["content"]

        assert content[1]["type"] == "file"
        assert content[1]["file"]["filename"] == "i.pdf"
        assert content[1]["file"]["file_data"].startswith("data:application/pdf;base64,")

    def test_csv_inlined_in_prompt(self, service: OpenAIDocumentService) -> None:
        document = DocumentInput(
            file_data=b"VAT,Total\n46.00,246.00", mime_type="text/csv", file_name="i.csv"
        )

        content = service._build_messages(document)[1]["content"]

        assert len(content) == 1
        assert "VAT,Total\n46.00,246.00" in content[0]["text"]
