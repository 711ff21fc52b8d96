"""Unit tests for OCR service.

Tests cover:
- Text extraction from images
- PDF text layer and scanned-PDF fallback
- Error handling for invalid files
"""

import io
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from services.extraction.schema import DocumentInput
from services.ocr.service import OCRResult, OCRService
from services.shared.config import Settings


@pytest.fixture
def test_image_bytes() -> bytes:
    """Create a simple white PNG."""
    img = Image.new("RGB", (200, 50), color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def ocr_service() -> OCRService:
    """Create OCR service instance."""
    return OCRService(Settings())


def _pdf_mock(page_texts: list[str]) -> MagicMock:
    pages = []
    for text in page_texts:
        page = MagicMock()
        page.extract_text.return_value = text
        pages.append(page)
    pdf = MagicMock()
    pdf.pages = pages
    opened = MagicMock()
    opened.__enter__.return_value = pdf
    return opened


def test_ocr_service_initialization(ocr_service: OCRService) -> None:
    """Test that OCR service initializes correctly."""
    assert isinstance(ocr_service.settings, Settings)


@patch("services.ocr.service.pytesseract.image_to_string")
def test_extract_image_text_success(
    mock_ocr: MagicMock, ocr_service: OCRService, test_image_bytes: bytes
) -> None:
    """Test successful text extraction from image."""
    mock_ocr.return_value = "STD23 €4.60"
    document = DocumentInput(file_data=test_image_bytes, mime_type="image/png", file_name="r.png")

    result = ocr_service.extract_text(document)

    assert isinstance(result, OCRResult)
    assert result.text == "STD23 €4.60"
    assert result.success is True
    assert result.source == "ocr"
    assert mock_ocr.call_args.kwargs["lang"] == "eng"


def test_extract_image_text_invalid_image(ocr_service: OCRService) -> None:
    """Test error handling for bytes that are not an image."""
    document = DocumentInput(file_data=b"not an image", mime_type="image/png", file_name="r.png")

    result = ocr_service.extract_text(document)

    assert result.success is False
    assert result.text == ""
    assert result.error is not None


def test_plain_text_passthrough(ocr_service: OCRService) -> None:
    document = DocumentInput(file_data=b"VAT: 23.00", mime_type="text/plain", file_name="a.txt")

    result = ocr_service.extract_text(document)

    assert result.success is True
    assert result.text == "VAT: 23.00"
    assert result.source == "plain_text"


def test_unsupported_document(ocr_service: OCRService) -> None:
    document = DocumentInput(
        file_data=b"\x00\x01", mime_type="application/octet-stream", file_name="blob.bin"
    )

    result = ocr_service.extract_text(document)

    assert result.success is False
    assert "Unsupported" in (result.error or "")


@patch("services.ocr.service.pdfplumber.open")
def test_pdf_text_layer(mock_open: MagicMock, ocr_service: OCRService) -> None:
    """A PDF with a text layer is read without OCR."""
    mock_open.return_value = _pdf_mock(["Invoice 42", "VAT @ 23%: €46.00 Total: €246.00"])
    document = DocumentInput(file_data=b"%PDF-1.4", mime_type="application/pdf", file_name="i.pdf")

    with patch("services.ocr.service.pytesseract.image_to_string") as mock_ocr:
        result = ocr_service.extract_text(document)

    assert result.success is True
    assert result.source == "text_layer"
    assert "VAT @ 23%" in result.text
    mock_ocr.assert_not_called()


@patch("services.ocr.service.pytesseract.image_to_string")
@patch("services.ocr.service.pdfplumber.open")
def test_scanned_pdf_falls_back_to_ocr(
    mock_open: MagicMock, mock_ocr: MagicMock, ocr_service: OCRService
) -> None:
    """A PDF without a usable text layer is rendered and OCR'd page by page."""
    mock_open.return_value = _pdf_mock(["", ""])
    mock_ocr.side_effect = ["page one", "page two"]

    result = ocr_service.extract_pdf_text(b"%PDF-1.4")

    assert result.success is True
    assert result.source == "ocr"
    assert result.text == "page one\npage two"
    assert mock_ocr.call_count == 2


def test_invalid_pdf(ocr_service: OCRService) -> None:
    result = ocr_service.extract_pdf_text(b"definitely not a pdf")

    assert result.success is False
    assert result.error is not None
    assert result.error.startswith("PDF text extraction failed")
