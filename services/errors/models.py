"""Error tracking data models."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class AIErrorType(str, Enum):
    API_ERROR = "API_ERROR"  # AI service returned an error
    EXTRACTION_ERROR = "EXTRACTION_ERROR"  # Failed to extract VAT data
    VALIDATION_ERROR = "VALIDATION_ERROR"  # Data validation failed
    TEMPLATE_ERROR = "TEMPLATE_ERROR"  # Template matching issues
    CONFIDENCE_ERROR = "CONFIDENCE_ERROR"  # Low confidence scores
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    PARSING_ERROR = "PARSING_ERROR"  # Document or response parsing failures
    LEARNING_ERROR = "LEARNING_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class AIErrorEntry(BaseModel):
    """A structured error reported by the extraction pipeline.

    Attributes:
        error_type: Error category
        error_code: Stable code; derived from the message when empty
        message: Human-readable description
        document_id: Document being processed, if known
        user_id: Owner of the document, if known
        context: Free-form diagnostic data (method, file name, ...)
        processing_method: Extraction method that failed
        confidence: Confidence of the result involved, if any
        retry_count: Attempts already made for this operation
    """

    error_type: AIErrorType
    error_code: str = ""
    message: str
    document_id: str | None = None
    user_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    processing_method: str | None = None
    confidence: float | None = None
    retry_count: int = Field(0, ge=0)
    stack: str | None = None


class AIErrorRecord(AIErrorEntry):
    """A stored error."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    resolved: bool = False
    resolution: str | None = None


class ProcessingRecord(BaseModel):
    """One completed validation, used for error-rate analytics."""

    document_id: str | None = None
    processing_method: str | None = None
    confidence: float = 0.0
    had_errors: bool = False
    error_type: AIErrorType | None = None
    processed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class TopError(BaseModel):
    error_code: str
    count: int
    message: str
    last_occurrence: datetime


class ErrorAnalytics(BaseModel):
    """Error statistics over a trailing window.

    Rates are percentages (0-100).
    """

    time_range: Literal["day", "week", "month"] = "week"
    total_errors: int = 0
    errors_by_type: dict[str, int] = Field(default_factory=dict)
    error_rate: float = 0.0
    top_errors: list[TopError] = Field(default_factory=list)
    resolution_rate: float = 0.0
    average_retry_count: float = 0.0
    critical_errors: list[AIErrorRecord] = Field(default_factory=list)


class ErrorPattern(BaseModel):
    """A recurring failure category with a remediation hint."""

    pattern: str
    frequency: int
    suggested_fix: str
    impact: Literal["low", "medium", "high"]
