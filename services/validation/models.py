"""Multi-method validation result models."""

from enum import Enum

from pydantic import BaseModel, Field

from services.extraction.schema import ExtractedVATData, MethodTag

MAX_FINAL_CONFIDENCE = 0.99


class NoExtractionResultError(RuntimeError):
    """Every attempted extraction method failed or found nothing."""


class ValidationCancelledError(RuntimeError):
    """The caller cancelled the validation while methods were running."""


class RecommendedAction(str, Enum):
    ACCEPT = "ACCEPT"
    REVIEW = "REVIEW"
    REJECT = "REJECT"


class MethodResult(BaseModel):
    """One method's run.

    Attributes:
        method: Method that produced the result
        result: Extracted VAT data
        confidence: Method self-assessed confidence
        weight: Static priority of the method in consensus
        processing_time_ms: Wall time of the method call
        quality: Heuristic richness score (0-100)
    """

    method: MethodTag
    result: ExtractedVATData
    confidence: float = Field(ge=0, le=1)
    weight: float
    processing_time_ms: int = Field(0, ge=0)
    quality: float = Field(ge=0, le=100)


class ValidationSummary(BaseModel):
    total_methods: int
    agreeing_methods: int
    conflicting_fields: list[str] = Field(default_factory=list)
    recommended_action: RecommendedAction


class ValidationResult(BaseModel):
    """Consensus verdict over all methods that produced a result."""

    final_result: ExtractedVATData
    confidence: float = Field(ge=0, le=MAX_FINAL_CONFIDENCE)
    consensus_reached: bool
    agreement_score: float = Field(ge=0, le=1)
    method_results: list[MethodResult]
    validation_summary: ValidationSummary


class ExtractionValidation(BaseModel):
    """Sanity notes on one extraction, shown next to the figures."""

    is_valid: bool
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class VATAggregate(BaseModel):
    """VAT totals across many documents (e.g. one VAT return period)."""

    total_sales_vat: float = 0.0
    total_purchase_vat: float = 0.0
    net_vat: float = 0.0
    document_count: int = 0
    average_confidence: float = 0.0
    documents_with_issues: int = 0
