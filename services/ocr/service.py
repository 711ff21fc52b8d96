"""Text extraction for PDFs and images.

PDFs are read through their text layer with pdfplumber; scanned PDFs (no
usable text layer) and images go through Tesseract.

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
and pdfplumber documentation:
https://github.com/jsvine/pdfplumber
"""

import io
import logging
import os

import pdfplumber
import pytesseract
from PIL import Image
from pydantic import BaseModel

from services.extraction.schema import DocumentInput, DocumentKind
from services.shared.config import Settings

logger = logging.getLogger(__name__)

# Below this many characters a PDF text layer is treated as missing (scanned PDF)
MIN_TEXT_LAYER_CHARS = 20
PDF_RENDER_RESOLUTION = 300


class OCRResult(BaseModel):
    """Result of text extraction.

    Attributes:
        text: Extracted text content
        success: Whether operation succeeded
        error: Error message if operation failed
        source: Where the text came from (text_layer, ocr, plain_text)
    """

    text: str
    success: bool
    error: str | None = None
    source: str | None = None


class OCRService:
    """Text extraction service using pdfplumber and the Tesseract engine."""

    def __init__(self, settings: Settings) -> None:
        """Initialize OCR service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def extract_text(self, document: DocumentInput) -> OCRResult:
        """Extract plain text from an uploaded document.

        Args:
            document: Uploaded document

        Returns:
            OCRResult with extracted text or error information
        """
        kind = document.kind
        if kind == DocumentKind.PDF:
            return self.extract_pdf_text(document.file_data)
        if kind == DocumentKind.IMAGE:
            return self.extract_image_text(document.file_data)
        if kind == DocumentKind.TEXT:
            return OCRResult(text=document.decode_text(), success=True, source="plain_text")
        return OCRResult(
            text="", success=False, error=f"Unsupported document type: {document.mime_type}"
        )

    def extract_image_text(self, data: bytes) -> OCRResult:
        try:
            image = Image.open(io.BytesIO(data))
            text = pytesseract.image_to_string(image, lang=self.settings.ocr_language)
            return OCRResult(text=text, success=True, source="ocr")
        except Exception as e:
            return OCRResult(text="", success=False, error=f"OCR processing failed: {str(e)}")

    def extract_pdf_text(self, data: bytes) -> OCRResult:
        """Read the PDF text layer, falling back to OCR of rendered pages."""
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
                text = "\n".join(pages)
                if len(text.strip()) >= MIN_TEXT_LAYER_CHARS:
                    return OCRResult(text=text, success=True, source="text_layer")

                logger.info(f"PDF has no usable text layer, running OCR on {len(pdf.pages)} pages")
                ocr_pages = []
                for page in pdf.pages:
                    image = page.to_image(resolution=PDF_RENDER_RESOLUTION).original
                    ocr_pages.append(
                        pytesseract.image_to_string(image, lang=self.settings.ocr_language)
                    )
                return OCRResult(text="\n".join(ocr_pages), success=True, source="ocr")
        except Exception as e:
            return OCRResult(text="", success=False, error=f"PDF text extraction failed: {str(e)}")
