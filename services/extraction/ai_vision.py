"""AI vision extraction method.

Adapts the AI document service's EnhancedVATData onto the common
ExtractedVATData shape. Every failure (timeout, service error, malformed
response) is logged, reported to the error tracker and turned into None so
the other methods can still be considered.
"""

import asyncio
import logging
import time

from pydantic import ValidationError

from services.errors.models import AIErrorType
from services.errors.tracker import ErrorTracker, classify_message
from services.extraction.amounts import build_validation_flags, parse_iso_date
from services.extraction.base import AIDocumentService, ExtractionMethod
from services.extraction.schema import (
    DEFAULT_VAT_RATE,
    DocumentInput,
    DocumentKind,
    DocumentType,
    EnhancedVATData,
    ExtractedVATData,
    MethodTag,
    ProcessingMethod,
)
from services.shared.config import Settings

logger = logging.getLogger(__name__)

# Service document types that need translating; valid DocumentType values pass through
DOCUMENT_TYPE_MAP = {
    "INVOICE": DocumentType.SALES_INVOICE,
    "RECEIPT": DocumentType.SALES_RECEIPT,
    "CREDIT_NOTE": DocumentType.PURCHASE_INVOICE,
}


def map_document_type(value: str | None) -> DocumentType:
    normalized = (value or "").strip().upper().replace(" ", "_")
    if normalized in DOCUMENT_TYPE_MAP:
        return DOCUMENT_TYPE_MAP[normalized]
    try:
        return DocumentType(normalized)
    except ValueError:
        return DocumentType.OTHER


def adapt_enhanced_data(data: EnhancedVATData, processing_time_ms: int = 0) -> ExtractedVATData:
    """Map the AI service's output onto ExtractedVATData."""
    vat_number = data.business_details.vat_number
    if vat_number:
        vat_number = "".join(vat_number.split())
        if vat_number[:2].upper() == "IE":
            vat_number = "IE" + vat_number[2:]
    invoice_date = parse_iso_date(data.transaction_data.date)

    if isinstance(data.extracted_text, list):
        extracted_text = data.extracted_text
    else:
        extracted_text = [data.extracted_text] if data.extracted_text else []

    flags = set(data.validation_flags) | build_validation_flags(
        vat_number or None, invoice_date, vat_found=bool(data.sales_vat or data.purchase_vat)
    )

    return ExtractedVATData(
        sales_vat=data.sales_vat,
        purchase_vat=data.purchase_vat,
        total_amount=max(0.0, data.total_amount or 0.0),
        vat_rate=data.vat_rate if data.vat_rate is not None else DEFAULT_VAT_RATE,
        confidence=data.confidence,
        extracted_text=extracted_text,
        document_type=map_document_type(data.document_type),
        vat_number=vat_number or None,
        invoice_date=invoice_date,
        supplier_name=data.business_details.business_name or None,
        processing_method=ProcessingMethod.AI_VISION,
        processing_time_ms=processing_time_ms,
        validation_flags=flags,
    )


class AIVisionMethod(ExtractionMethod):
    """Delegates document understanding to an AIDocumentService."""

    tag = MethodTag.AI_VISION
    accepted_kinds = frozenset(DocumentKind)

    def __init__(
        self,
        settings: Settings,
        service: AIDocumentService,
        error_tracker: ErrorTracker | None = None,
    ) -> None:
        super().__init__(settings)
        self.service = service
        self.error_tracker = error_tracker

    async def extract(self, document: DocumentInput) -> ExtractedVATData | None:
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    self.service.process_document,
                    document.file_data,
                    document.mime_type,
                    document.file_name,
                    document.category,
                ),
                timeout=self.settings.method_timeout_seconds,
            )
        except TimeoutError:
            message = (
                f"AI service {self.service.provider_name} timed out after "
                f"{self.settings.method_timeout_seconds}s"
            )
            logger.warning(f"{message} for {document.file_name}")
            await self._report(document, message, AIErrorType.TIMEOUT_ERROR)
            return None
        except Exception as e:
            logger.warning(f"AI service call failed for {document.file_name}: {e}")
            await self._report(document, e)
            return None

        if not result.success or result.extracted_data is None:
            message = result.error or "AI service returned no data"
            logger.warning(f"AI vision failed for {document.file_name}: {message}")
            await self._report(document, message, default_type=AIErrorType.API_ERROR)
            return None

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        try:
            extracted = adapt_enhanced_data(result.extracted_data, elapsed_ms)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Malformed AI response for {document.file_name}: {e}")
            await self._report(document, e, AIErrorType.PARSING_ERROR)
            return None

        logger.info(
            f"AI vision ({result.provider}) found {extracted.vat_count} VAT amounts in "
            f"{document.file_name} (confidence {extracted.confidence:.2f})"
        )
        return extracted

    async def _report(
        self,
        document: DocumentInput,
        error: BaseException | str,
        error_type: AIErrorType | None = None,
        default_type: AIErrorType | None = None,
    ) -> None:
        if self.error_tracker is None:
            return
        if error_type is None and default_type is not None and isinstance(error, str):
            error_type = classify_message(error, default=default_type)
        await self.error_tracker.track_failure(
            error,
            error_type=error_type,
            document_id=document.document_id,
            user_id=document.user_id,
            processing_method=self.tag.value,
            context={"file_name": document.file_name, "provider": self.service.provider_name},
        )
