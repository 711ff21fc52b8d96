"""OCR / pattern extraction method.

Runs the Irish VAT pattern library over plain text taken from a PDF text
layer, Tesseract OCR of an image, or a text upload.
"""

import asyncio
import logging
import re
import time

from services.extraction.amounts import (
    build_validation_flags,
    detect_document_type,
    detect_vat_rate,
    explicit_vat_rate,
    extract_business_name,
    extract_vat_number,
    parse_amount,
    parse_date,
)
from services.extraction.base import ExtractionError, ExtractionMethod
from services.extraction.patterns import (
    CONTEXT_WINDOW,
    VATBucket,
    classify_match,
    deduplicate_matches,
    find_matches,
    route_amount,
    score_matches,
)
from services.extraction.schema import (
    DocumentInput,
    DocumentKind,
    ExtractedVATData,
    MethodTag,
    ProcessingMethod,
    ValidationFlag,
)
from services.ocr.service import OCRService
from services.shared.config import Settings

logger = logging.getLogger(__name__)

# "Total: €123.00", "Grand Total EUR 1,230.00", "Total due 45.10"; not "Total VAT" or "Subtotal"
TOTAL_RE = re.compile(
    r"\b(?:grand\s+)?total(?!\s+(?:vat|tax))(?:\s+(?:due|amount|payable|to\s+pay))?"
    r"\s*(?:\(?(?:incl\.?|inc\.?)[^)\n:]*\)?)?\s*[:\-]?\s*(?:€|EUR)?\s*"
    r"([0-9]{1,3}(?:,[0-9]{3})+(?:\.[0-9]{1,2})?|[0-9]+(?:\.[0-9]{1,2})?)",
    re.IGNORECASE,
)
CALCULATED_VAT_CONFIDENCE = 0.5


def find_total_amount(text: str) -> tuple[float, int] | None:
    """Last printed total on the document and its position."""
    found = None
    for match in TOTAL_RE.finditer(text):
        amount = parse_amount(match.group(1))
        if amount is not None and amount > 0:
            found = (amount, match.start())
    return found


def extract_from_text(text: str, file_name: str = "", category: str = "") -> ExtractedVATData | None:
    """Extract VAT data from plain document text.

    Args:
        text: Text obtained from OCR or a text layer
        file_name: Original filename (used for document type detection)
        category: Caller-supplied SALES/PURCHASE category hint

    Returns:
        ExtractedVATData, or None if no VAT amount could be found
    """
    if not text.strip():
        return None

    found = find_matches(text)
    kept = deduplicate_matches(found)
    total = find_total_amount(text)

    sales: list[float] = []
    purchases: list[float] = []
    flags: set[str] = set()
    heuristic = False

    if kept:
        for match in kept:
            bucket, guessed = classify_match(match, category)
            heuristic = heuristic or guessed
            (sales if bucket == VATBucket.SALES else purchases).append(match.amount)
        confidence = score_matches(found, kept, text)
    else:
        rate = explicit_vat_rate(text)
        if total is None or rate is None:
            logger.debug(f"No VAT patterns matched in {file_name or 'text'}")
            return None
        amount, position = total
        vat = round(amount * rate / (100 + rate), 2)
        context = text[max(0, position - CONTEXT_WINDOW) : position + CONTEXT_WINDOW]
        bucket, heuristic = route_amount(vat, context, category)
        (sales if bucket == VATBucket.SALES else purchases).append(vat)
        confidence = CALCULATED_VAT_CONFIDENCE
        flags.add(ValidationFlag.CALCULATED_VAT.value)
        logger.info(f"Calculated VAT {vat:.2f} from total {amount:.2f} at {rate}%")

    if heuristic:
        flags.add(ValidationFlag.HEURISTIC_CLASSIFICATION.value)

    vat_number = extract_vat_number(text)
    invoice_date = parse_date(text)
    flags |= build_validation_flags(vat_number, invoice_date, vat_found=True)

    return ExtractedVATData(
        sales_vat=sales,
        purchase_vat=purchases,
        total_amount=total[0] if total else 0.0,
        vat_rate=detect_vat_rate(text),
        confidence=confidence,
        extracted_text=[line for line in text.splitlines() if line.strip()],
        document_type=detect_document_type(text, file_name),
        vat_number=vat_number,
        invoice_date=invoice_date,
        supplier_name=extract_business_name(text.splitlines()),
        processing_method=ProcessingMethod.OCR_TEXT,
        validation_flags=flags,
    )


class OCRPatternMethod(ExtractionMethod):
    """Regex extraction over OCR or text-layer output."""

    tag = MethodTag.OCR_PATTERNS
    accepted_kinds = frozenset({DocumentKind.PDF, DocumentKind.IMAGE, DocumentKind.TEXT})

    def __init__(self, settings: Settings, ocr_service: OCRService | None = None) -> None:
        super().__init__(settings)
        self.ocr_service = ocr_service or OCRService(settings)

    async def extract(self, document: DocumentInput) -> ExtractedVATData | None:
        return await asyncio.to_thread(self._extract_sync, document)

    def _extract_sync(self, document: DocumentInput) -> ExtractedVATData | None:
        start = time.perf_counter()

        ocr_result = self.ocr_service.extract_text(document)
        if not ocr_result.success:
            raise ExtractionError(ocr_result.error or "Text extraction failed")

        result = extract_from_text(ocr_result.text, document.file_name, document.category)
        if result is None:
            return None

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"OCR patterns found {result.vat_count} VAT amounts in {document.file_name} "
            f"from {ocr_result.source} (confidence {result.confidence:.2f})"
        )
        return result.model_copy(update={"processing_time_ms": elapsed_ms})
