"""Unit tests for the OCR / pattern extraction method."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from services.extraction.base import ExtractionError
from services.extraction.ocr_patterns import (
    OCRPatternMethod,
    extract_from_text,
    find_total_amount,
)
from services.extraction.schema import DocumentInput, ProcessingMethod, ValidationFlag
from services.ocr.service import OCRResult, OCRService
from services.shared.config import Settings

RECEIPT_TEXT = """SuperValu Rathmines
VAT No: IE6388047V
Date: 12/03/2024
STD23 €4.60
TOTAL €24.60
"""


@pytest.fixture
def ocr_service() -> MagicMock:
    return MagicMock(spec=OCRService)


@pytest.fixture
def method(ocr_service: MagicMock) -> OCRPatternMethod:
    return OCRPatternMethod(Settings(ai_enabled=False), ocr_service=ocr_service)


class TestFindTotalAmount:
    def test_skips_subtotal_and_total_vat(self) -> None:
        found = find_total_amount("Subtotal 100.00\nTotal VAT 23.00\nTotal: €123.00")

        assert found is not None
        assert found[0] == 123.0

    def test_last_total_wins(self) -> None:
        found = find_total_amount("Total 10.00\nGrand Total EUR 1,230.00")

        assert found is not None
        assert found[0] == 1230.0

    def test_no_total(self) -> None:
        assert find_total_amount("VAT 23.00") is None


class TestExtractFromText:
    def test_irish_receipt(self) -> None:
        result = extract_from_text(RECEIPT_TEXT, "scan.jpg", "PURCHASE")

        assert result is not None
        assert result.purchase_vat == [4.6]
        assert result.sales_vat == []
        assert result.total_amount == 24.6
        assert result.vat_number == "IE6388047V"
        assert result.invoice_date == date(2024, 3, 12)
        assert result.supplier_name == "SuperValu Rathmines"
        assert result.confidence == 0.95
        assert result.processing_method == ProcessingMethod.OCR_TEXT
        assert result.validation_flags == set()

    def test_duplicate_pattern_hits_counted_once(self) -> None:
        result = extract_from_text("VAT: €115.00\nSTD23: €115.00")

        assert result is not None
        assert result.sales_vat + result.purchase_vat == [115.0]
        assert ValidationFlag.HEURISTIC_CLASSIFICATION.value in result.validation_flags

    def test_printed_rate_line_not_counted_as_vat(self) -> None:
        text = (
            "Acme Hardware Ltd\nSubtotal: 200.00\nVAT: 23%\nVAT amount: €46.00\nTotal: €246.00"
        )

        result = extract_from_text(text, "receipt.txt", "PURCHASE")

        assert result is not None
        assert result.purchase_vat == [46.0]
        assert result.sales_vat == []

    def test_net_and_vat_on_rate_line(self) -> None:
        result = extract_from_text("VAT 23% €200.00 €46.00", "receipt.txt", "PURCHASE")

        assert result is not None
        assert result.purchase_vat == [46.0]

    def test_calculated_vat_from_total_and_rate(self) -> None:
        result = extract_from_text("Corner Shop\nGoods 23% VAT incl.\nTotal: €123.00")

        assert result is not None
        assert result.purchase_vat == [23.0]
        assert result.total_amount == 123.0
        assert result.confidence == 0.5
        assert ValidationFlag.CALCULATED_VAT.value in result.validation_flags
        assert ValidationFlag.HEURISTIC_CLASSIFICATION.value in result.validation_flags
        assert ValidationFlag.MISSING_VAT_NUMBER.value in result.validation_flags

    def test_total_without_printed_rate_is_not_enough(self) -> None:
        assert extract_from_text("Corner Shop\nTotal: €123.00") is None

    @pytest.mark.parametrize("text", ["", "   \n", "Thanks for shopping with us"])
    def test_no_vat(self, text: str) -> None:
        assert extract_from_text(text) is None


class TestOCRPatternMethod:
    def test_accepts_pdf_image_and_text(self, method: OCRPatternMethod) -> None:
        assert method.accepts(
            DocumentInput(file_data=b"", mime_type="application/pdf", file_name="a.pdf")
        )
        assert method.accepts(DocumentInput(file_data=b"", mime_type="image/jpeg", file_name="a"))
        assert method.accepts(DocumentInput(file_data=b"", mime_type="text/plain", file_name="a"))
        assert not method.accepts(
            DocumentInput(file_data=b"", mime_type="text/csv", file_name="a.csv")
        )

    @pytest.mark.asyncio
    async def test_extract(self, method: OCRPatternMethod, ocr_service: MagicMock) -> None:
        ocr_service.extract_text.return_value = OCRResult(
            text=RECEIPT_TEXT, success=True, source="ocr"
        )
        document = DocumentInput(
            file_data=b"jpeg", mime_type="image/jpeg", file_name="scan.jpg", category="PURCHASE"
        )

        result = await method.extract(document)

        assert result is not None
        assert result.purchase_vat == [4.6]
        ocr_service.extract_text.assert_called_once_with(document)

    @pytest.mark.asyncio
    async def test_ocr_failure_raises(
        self, method: OCRPatternMethod, ocr_service: MagicMock
    ) -> None:
        ocr_service.extract_text.return_value = OCRResult(
            text="", success=False, error="OCR processing failed: bad image"
        )
        document = DocumentInput(file_data=b"x", mime_type="image/png", file_name="scan.png")

        with pytest.raises(ExtractionError, match="bad image"):
            await method.extract(document)

    @pytest.mark.asyncio
    async def test_no_vat_in_text(self, method: OCRPatternMethod, ocr_service: MagicMock) -> None:
        ocr_service.extract_text.return_value = OCRResult(
            text="Thanks for shopping", success=True, source="ocr"
        )
        document = DocumentInput(file_data=b"x", mime_type="image/png", file_name="scan.png")

        assert await method.extract(document) is None
