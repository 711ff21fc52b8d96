"""VAT data models shared by every extraction method.

Every method produces an ExtractedVATData; the AI document service produces the
richer EnhancedVATData which is adapted down to the common shape.
"""

import math
from datetime import date
from enum import Enum
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator

DEFAULT_VAT_RATE = 23.0


class DocumentType(str, Enum):
    """Document classification used for VAT return routing."""

    SALES_INVOICE = "SALES_INVOICE"
    PURCHASE_INVOICE = "PURCHASE_INVOICE"
    SALES_RECEIPT = "SALES_RECEIPT"
    PURCHASE_RECEIPT = "PURCHASE_RECEIPT"
    OTHER = "OTHER"


class ProcessingMethod(str, Enum):
    """Tag recorded on a result to show which extractor produced it."""

    AI_VISION = "AI_VISION"
    EXCEL_PARSER = "EXCEL_PARSER"
    OCR_TEXT = "OCR_TEXT"


class MethodTag(str, Enum):
    """Extraction strategies known to the multi-method validator."""

    AI_VISION = "AI_VISION"
    STRUCTURED_PARSER = "STRUCTURED_PARSER"
    OCR_PATTERNS = "OCR_PATTERNS"


class ValidationFlag(str, Enum):
    """Flags attached to a result; AI providers may add free-form flags too."""

    MISSING_VAT_NUMBER = "MISSING_VAT_NUMBER"
    NON_IRISH_VAT = "NON_IRISH_VAT"
    NO_VAT_FOUND = "NO_VAT_FOUND"
    MISSING_DATE = "MISSING_DATE"
    HEURISTIC_CLASSIFICATION = "HEURISTIC_CLASSIFICATION"
    CALCULATED_VAT = "CALCULATED_VAT"


class DocumentKind(str, Enum):
    """Input shape of an uploaded document, used for method selection."""

    SPREADSHEET = "SPREADSHEET"
    PDF = "PDF"
    IMAGE = "IMAGE"
    TEXT = "TEXT"
    OTHER = "OTHER"


SPREADSHEET_EXTENSIONS = {".csv", ".tsv", ".xlsx", ".xls"}
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".tif", ".tiff", ".webp"}


class DocumentInput(BaseModel):
    """An uploaded document as handed to the validator."""

    file_data: bytes
    mime_type: str
    file_name: str
    category: str = ""
    document_id: str | None = None
    user_id: str | None = None

    @property
    def kind(self) -> DocumentKind:
        mime = self.mime_type.lower()
        suffix = PurePath(self.file_name).suffix.lower()

        if (
            "spreadsheet" in mime
            or "excel" in mime
            or "csv" in mime
            or "tab-separated" in mime
            or suffix in SPREADSHEET_EXTENSIONS
        ):
            return DocumentKind.SPREADSHEET
        if "pdf" in mime or suffix == ".pdf":
            return DocumentKind.PDF
        if mime.startswith("image/") or suffix in IMAGE_EXTENSIONS:
            return DocumentKind.IMAGE
        if mime.startswith("text/") or mime == "application/json" or suffix in {".txt", ".json"}:
            return DocumentKind.TEXT
        return DocumentKind.OTHER

    def decode_text(self) -> str:
        """Decode the raw bytes as text (UTF-8 with BOM tolerance, latin-1 fallback)."""
        try:
            return self.file_data.decode("utf-8-sig")
        except UnicodeDecodeError:
            return self.file_data.decode("latin-1")


def _clean_amounts(value: Any) -> list[float]:
    """Keep only finite, non-negative amounts rounded to cents."""
    if value is None:
        return []
    if not isinstance(value, list | tuple):
        value = [value]

    cleaned: list[float] = []
    for item in value:
        try:
            amount = float(item)
        except (TypeError, ValueError):
            continue
        if math.isnan(amount) or math.isinf(amount) or amount < 0:
            continue
        cleaned.append(round(amount, 2))
    return cleaned


class ExtractedVATData(BaseModel):
    """Common result shape produced by every extraction method."""

    sales_vat: list[float] = Field(
        default_factory=list, description="VAT charged on sales (always >= 0)"
    )
    purchase_vat: list[float] = Field(
        default_factory=list, description="VAT paid on purchases (always >= 0)"
    )
    total_amount: float = Field(0.0, ge=0, description="Gross invoice or report value")
    vat_rate: float = Field(DEFAULT_VAT_RATE, description="Dominant VAT rate in percent")
    confidence: float = Field(0.0, ge=0, le=1, description="Method self-assessed reliability")
    extracted_text: list[str] = Field(default_factory=list, description="Raw text for audit")
    document_type: DocumentType = DocumentType.OTHER
    vat_number: str | None = Field(None, description="VAT registration number")
    invoice_date: date | None = None
    supplier_name: str | None = None
    processing_method: ProcessingMethod
    processing_time_ms: int = Field(0, ge=0)
    validation_flags: set[str] = Field(default_factory=set)

    @field_validator("sales_vat", "purchase_vat", mode="before")
    @classmethod
    def _drop_invalid_amounts(cls, value: Any) -> list[float]:
        return _clean_amounts(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def irish_vat_compliant(self) -> bool:
        """Irish VAT number present and at least one VAT amount extracted."""
        has_irish_number = bool(self.vat_number) and self.vat_number.upper().startswith("IE")
        return has_irish_number and bool(self.sales_vat or self.purchase_vat)

    @property
    def total_vat(self) -> float:
        return sum(self.sales_vat) + sum(self.purchase_vat)

    @property
    def vat_count(self) -> int:
        return len(self.sales_vat) + len(self.purchase_vat)


class BusinessDetails(BaseModel):
    """Business identity reported by the AI document service."""

    business_name: str | None = None
    vat_number: str | None = None
    address: str | None = None


class TransactionData(BaseModel):
    """Transaction metadata reported by the AI document service."""

    date: str | None = None  # YYYY-MM-DD
    invoice_number: str | None = None
    currency: str = "EUR"


class EnhancedVATData(BaseModel):
    """Richer structured output of the AI document-understanding service."""

    document_type: str = "OTHER"
    business_details: BusinessDetails = Field(default_factory=BusinessDetails)
    transaction_data: TransactionData = Field(default_factory=TransactionData)
    sales_vat: list[float] = Field(default_factory=list)
    purchase_vat: list[float] = Field(default_factory=list)
    total_amount: float | None = None
    vat_rate: float | None = None
    confidence: float = Field(0.0, ge=0, le=1)
    extracted_text: str | list[str] = ""
    validation_flags: list[str] = Field(default_factory=list)

    @field_validator("sales_vat", "purchase_vat", mode="before")
    @classmethod
    def _drop_invalid_amounts(cls, value: Any) -> list[float]:
        return _clean_amounts(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            return min(1.0, max(0.0, float(value)))
        except (TypeError, ValueError):
            return 0.0


class AIProcessingResult(BaseModel):
    """Result of a call to the AI document-understanding service.

    Attributes:
        success: Whether the service produced usable data
        extracted_data: Structured VAT data when successful
        error: Error message if the call failed
        provider: Name of the provider that served the call
    """

    success: bool
    extracted_data: EnhancedVATData | None = None
    error: str | None = None
    provider: str
