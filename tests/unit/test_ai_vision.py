"""Unit tests for the AI vision extraction method."""

import time
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.errors.models import AIErrorType
from services.errors.tracker import ErrorTracker
from services.extraction.ai_vision import (
    AIVisionMethod,
    adapt_enhanced_data,
    map_document_type,
)
from services.extraction.base import AIDocumentService
from services.extraction.schema import (
    AIProcessingResult,
    BusinessDetails,
    DocumentInput,
    DocumentKind,
    DocumentType,
    EnhancedVATData,
    ProcessingMethod,
    TransactionData,
    ValidationFlag,
)
from services.shared.config import Settings


@pytest.fixture
def ai_service() -> MagicMock:
    service = MagicMock(spec=AIDocumentService)
    service.provider_name = "mock"
    return service


@pytest.fixture
def error_tracker() -> AsyncMock:
    return AsyncMock(spec=ErrorTracker)


@pytest.fixture
def method(ai_service: MagicMock, error_tracker: AsyncMock) -> AIVisionMethod:
    return AIVisionMethod(Settings(method_timeout_seconds=1.0), ai_service, error_tracker)


@pytest.fixture
def document() -> DocumentInput:
    return DocumentInput(
        file_data=b"\x89PNG",
        mime_type="image/png",
        file_name="receipt.png",
        category="PURCHASE",
        document_id="doc-1",
        user_id="user-1",
    )


@pytest.fixture
def enhanced() -> EnhancedVATData:
    return EnhancedVATData(
        document_type="RECEIPT",
        business_details=BusinessDetails(business_name="Centra Ranelagh", vat_number="IE 6388047V"),
        transaction_data=TransactionData(date="2024-03-12"),
        purchase_vat=[4.6],
        total_amount=24.6,
        vat_rate=23,
        confidence=0.92,
        extracted_text="Centra Ranelagh ... STD23 4.60",
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("INVOICE", DocumentType.SALES_INVOICE),
        ("receipt", DocumentType.SALES_RECEIPT),
        ("credit note", DocumentType.PURCHASE_INVOICE),
        ("PURCHASE_INVOICE", DocumentType.PURCHASE_INVOICE),
        ("bank statement", DocumentType.OTHER),
        (None, DocumentType.OTHER),
    ],
)
def test_map_document_type(value: str | None, expected: DocumentType) -> None:
    assert map_document_type(value) == expected


class TestAdaptEnhancedData:
    def test_maps_onto_common_shape(self, enhanced: EnhancedVATData) -> None:
        result = adapt_enhanced_data(enhanced, processing_time_ms=120)

        assert result.purchase_vat == [4.6]
        assert result.sales_vat == []
        assert result.total_amount == 24.6
        assert result.vat_rate == 23.0
        assert result.confidence == 0.92
        assert result.document_type == DocumentType.SALES_RECEIPT
        assert result.vat_number == "IE6388047V"
        assert result.supplier_name == "Centra Ranelagh"
        assert result.invoice_date == date(2024, 3, 12)
        assert result.extracted_text == ["Centra Ranelagh ... STD23 4.60"]
        assert result.processing_method == ProcessingMethod.AI_VISION
        assert result.processing_time_ms == 120
        assert result.irish_vat_compliant is True

    def test_defaults_and_flags(self) -> None:
        data = EnhancedVATData(sales_vat=[-5, 10.0], validation_flags=["BLURRY_SCAN"])

        result = adapt_enhanced_data(data)

        assert result.sales_vat == [10.0]
        assert result.vat_rate == 23.0
        assert result.total_amount == 0.0
        assert result.document_type == DocumentType.OTHER
        assert result.validation_flags == {
            "BLURRY_SCAN",
            ValidationFlag.MISSING_VAT_NUMBER.value,
            ValidationFlag.MISSING_DATE.value,
        }


class TestAIVisionMethod:
    def test_accepts_every_document_kind(self, method: AIVisionMethod) -> None:
        assert method.accepted_kinds == frozenset(DocumentKind)
        assert method.weight == 1.0

    @pytest.mark.asyncio
    async def test_successful_extraction(
        self,
        method: AIVisionMethod,
        ai_service: MagicMock,
        error_tracker: AsyncMock,
        document: DocumentInput,
        enhanced: EnhancedVATData,
    ) -> None:
        ai_service.process_document.return_value = AIProcessingResult(
            success=True, extracted_data=enhanced, provider="mock"
        )

        result = await method.extract(document)

        assert result is not None
        assert result.purchase_vat == [4.6]
        ai_service.process_document.assert_called_once_with(
            b"\x89PNG", "image/png", "receipt.png", "PURCHASE"
        )
        error_tracker.track_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_service_failure_tracked(
        self,
        method: AIVisionMethod,
        ai_service: MagicMock,
        error_tracker: AsyncMock,
        document: DocumentInput,
    ) -> None:
        ai_service.process_document.return_value = AIProcessingResult(
            success=False, error="AI extraction failed: upstream error", provider="mock"
        )

        assert await method.extract(document) is None

        error_tracker.track_failure.assert_awaited_once()
        kwargs = error_tracker.track_failure.call_args.kwargs
        assert kwargs["error_type"] == AIErrorType.API_ERROR
        assert kwargs["document_id"] == "doc-1"
        assert kwargs["user_id"] == "user-1"
        assert kwargs["processing_method"] == "AI_VISION"

    @pytest.mark.asyncio
    async def test_rate_limit_message_classified(
        self,
        method: AIVisionMethod,
        ai_service: MagicMock,
        error_tracker: AsyncMock,
        document: DocumentInput,
    ) -> None:
        ai_service.process_document.return_value = AIProcessingResult(
            success=False, error="Rate limit reached for gpt-4o-mini", provider="mock"
        )

        assert await method.extract(document) is None

        kwargs = error_tracker.track_failure.call_args.kwargs
        assert kwargs["error_type"] == AIErrorType.RATE_LIMIT_ERROR

    @pytest.mark.asyncio
    async def test_service_exception_tracked(
        self,
        method: AIVisionMethod,
        ai_service: MagicMock,
        error_tracker: AsyncMock,
        document: DocumentInput,
    ) -> None:
        ai_service.process_document.side_effect = ConnectionError("network down")

        assert await method.extract(document) is None

        error = error_tracker.track_failure.call_args.args[0]
        assert isinstance(error, ConnectionError)

    @pytest.mark.asyncio
    async def test_timeout_tracked(
        self, ai_service: MagicMock, error_tracker: AsyncMock, document: DocumentInput
    ) -> None:
        method = AIVisionMethod(Settings(method_timeout_seconds=0.05), ai_service, error_tracker)
        ai_service.process_document.side_effect = lambda *args: time.sleep(0.3)

        assert await method.extract(document) is None

        kwargs = error_tracker.track_failure.call_args.kwargs
        assert kwargs["error_type"] == AIErrorType.TIMEOUT_ERROR

    @pytest.mark.asyncio
    async def test_works_without_tracker(
        self, ai_service: MagicMock, document: DocumentInput
    ) -> None:
        method = AIVisionMethod(Settings(), ai_service)
        ai_service.process_document.return_value = AIProcessingResult(
            success=False, error="boom", provider="mock"
        )

        assert await method.extract(document) is None
