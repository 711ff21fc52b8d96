"""Error tracking for the VAT extraction pipeline.

Records structured errors, flags critical ones, decides auto-recovery
eligibility and aggregates analytics for the admin surface. The tracker must
never break document processing: every public operation catches its own
failures and logs them instead of raising.
"""

import logging
import re
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from prometheus_client import Counter as PrometheusCounter

from services.errors.models import (
    AIErrorEntry,
    AIErrorRecord,
    AIErrorType,
    ErrorAnalytics,
    ErrorPattern,
    ProcessingRecord,
    TopError,
)
from services.errors.store import ErrorStore, InMemoryErrorStore
from services.extraction.base import ExtractionError

logger = logging.getLogger(__name__)

TimeRange = Literal["day", "week", "month"]

TIME_RANGE_DAYS: dict[str, int] = {"day": 1, "week": 7, "month": 30}
PATTERN_WINDOW_DAYS = 7
MAX_RETRIES = 3
LOW_CONFIDENCE_THRESHOLD = 0.5
TOP_ERRORS_LIMIT = 10
CRITICAL_ERRORS_LIMIT = 20

CRITICAL_TYPES = {AIErrorType.API_ERROR, AIErrorType.SYSTEM_ERROR, AIErrorType.RATE_LIMIT_ERROR}
RECOVERABLE_TYPES = {AIErrorType.TIMEOUT_ERROR, AIErrorType.RATE_LIMIT_ERROR, AIErrorType.API_ERROR}

ai_errors_total = PrometheusCounter(
    "ai_errors_total",
    "Errors tracked in the VAT extraction pipeline",
    ["error_type", "severity"],
)


def generate_error_code(message: str) -> str:
    """Derive a stable code from an error message.

    Example:
        >>> generate_error_code("Request timed out after 30s")
        'REQUEST_TIMED_OUT'
    """
    cleaned = re.sub(r"[^A-Z0-9\s]", "", message.upper())
    words = cleaned.split()
    return "_".join(words[:3]) or "UNKNOWN_ERROR"


def classify_message(message: str, default: AIErrorType = AIErrorType.SYSTEM_ERROR) -> AIErrorType:
    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        return AIErrorType.TIMEOUT_ERROR
    if "rate limit" in lowered or "ratelimit" in lowered:
        return AIErrorType.RATE_LIMIT_ERROR
    if re.search(r"\bAPI\b", message):
        return AIErrorType.API_ERROR
    return default


def classify_exception(error: BaseException) -> AIErrorType:
    """Map an exception raised by an extraction method to an error type."""
    if isinstance(error, TimeoutError):
        return AIErrorType.TIMEOUT_ERROR
    by_message = classify_message(f"{type(error).__name__} {error}", default=AIErrorType.SYSTEM_ERROR)
    if by_message != AIErrorType.SYSTEM_ERROR:
        return by_message
    if isinstance(error, ExtractionError):
        return AIErrorType.EXTRACTION_ERROR
    if isinstance(error, ValueError):
        # Includes json.JSONDecodeError and pydantic ValidationError
        return AIErrorType.PARSING_ERROR
    return AIErrorType.SYSTEM_ERROR


def is_critical(entry: AIErrorEntry) -> bool:
    return (
        entry.error_type in CRITICAL_TYPES
        or "CRITICAL" in entry.error_code
        or entry.retry_count >= MAX_RETRIES
    )


def can_auto_recover(entry: AIErrorEntry) -> bool:
    return entry.error_type in RECOVERABLE_TYPES and entry.retry_count < MAX_RETRIES


class ErrorTracker:
    """Structured error tracking and analytics.

    Args:
        store: Backend for error and processing records (in-memory by default)
    """

    def __init__(self, store: ErrorStore | None = None) -> None:
        self.store: ErrorStore = store or InMemoryErrorStore()

    async def log_error(self, entry: AIErrorEntry) -> AIErrorRecord | None:
        """Record an error; returns the stored record, or None if tracking failed."""
        try:
            record = AIErrorRecord(
                **entry.model_dump(exclude={"error_code"}),
                error_code=entry.error_code or generate_error_code(entry.message),
            )
            critical = is_critical(record)

            logger.error(
                f"AI processing error [{record.error_type.value}/{record.error_code}] "
                f"{record.message} (document={record.document_id}, context={record.context})"
            )
            await self.store.add_error(record)
            ai_errors_total.labels(
                error_type=record.error_type.value,
                severity="critical" if critical else "normal",
            ).inc()

            if critical:
                self._handle_critical_error(record)
            if can_auto_recover(record):
                self._attempt_auto_recovery(record)
            return record
        except Exception as e:
            logger.error(f"Failed to track AI error: {e} (original error: {entry.message})")
            return None

    async def track_failure(
        self,
        error: BaseException | str,
        *,
        error_type: AIErrorType | None = None,
        document_id: str | None = None,
        user_id: str | None = None,
        processing_method: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> AIErrorRecord | None:
        """Classify and record a failure given as an exception or message."""
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            resolved_type = error_type or classify_exception(error)
        else:
            message = error
            resolved_type = error_type or classify_message(error)

        return await self.log_error(
            AIErrorEntry(
                error_type=resolved_type,
                message=message,
                document_id=document_id,
                user_id=user_id,
                processing_method=processing_method,
                context=context or {},
            )
        )

    async def record_processing(
        self,
        document_id: str | None,
        processing_method: str | None,
        confidence: float,
        had_errors: bool = False,
        error_type: AIErrorType | None = None,
    ) -> None:
        """Record a completed validation for error-rate analytics."""
        try:
            await self.store.add_processing_record(
                ProcessingRecord(
                    document_id=document_id,
                    processing_method=processing_method,
                    confidence=confidence,
                    had_errors=had_errors,
                    error_type=error_type,
                )
            )
        except Exception as e:
            logger.error(f"Failed to record processing for {document_id}: {e}")

    async def resolve_error(self, error_id: str, resolution: str) -> bool:
        try:
            resolved = await self.store.mark_resolved(error_id, resolution)
            if resolved:
                logger.info(f"AI error {error_id} resolved: {resolution}")
            else:
                logger.warning(f"Cannot resolve unknown AI error {error_id}")
            return resolved
        except Exception as e:
            logger.error(f"Failed to resolve error {error_id}: {e}")
            return False

    async def get_error_analytics(self, time_range: TimeRange = "week") -> ErrorAnalytics:
        """Aggregate errors over a trailing day/week/month window."""
        try:
            start = _window_start(TIME_RANGE_DAYS.get(time_range, 7))
            errors = await self.store.errors_since(start)
            processed = await self.store.processing_records_since(start)

            docs_with_errors = sum(1 for r in processed if r.had_errors)
            error_rate = docs_with_errors / len(processed) * 100 if processed else 0.0
            resolved = sum(1 for e in errors if e.resolved)
            resolution_rate = resolved / len(errors) * 100 if errors else 0.0
            average_retry = sum(e.retry_count for e in errors) / len(errors) if errors else 0.0

            critical = sorted(
                (e for e in errors if is_critical(e)), key=lambda e: e.timestamp, reverse=True
            )

            return ErrorAnalytics(
                time_range=time_range,
                total_errors=len(errors),
                errors_by_type=dict(Counter(e.error_type.value for e in errors)),
                error_rate=round(error_rate, 2),
                top_errors=_top_errors(errors),
                resolution_rate=round(resolution_rate, 2),
                average_retry_count=round(average_retry, 2),
                critical_errors=critical[:CRITICAL_ERRORS_LIMIT],
            )
        except Exception as e:
            logger.error(f"Failed to get error analytics: {e}")
            return ErrorAnalytics(time_range=time_range)

    async def get_error_patterns(self) -> list[ErrorPattern]:
        """Recurring failure categories over the past week with suggested fixes."""
        try:
            start = _window_start(PATTERN_WINDOW_DAYS)
            errors = await self.store.errors_since(start)
            processed = await self.store.processing_records_since(start)
            by_type = Counter(e.error_type for e in errors)

            low_confidence = sum(
                1 for r in processed if r.confidence < LOW_CONFIDENCE_THRESHOLD
            ) + by_type[AIErrorType.CONFIDENCE_ERROR]

            patterns = [
                ErrorPattern(
                    pattern="Low confidence extraction (<50%)",
                    frequency=low_confidence,
                    suggested_fix="Improve prompts or add more training data",
                    impact="high",
                ),
                ErrorPattern(
                    pattern="API timeout errors",
                    frequency=by_type[AIErrorType.TIMEOUT_ERROR],
                    suggested_fix="Implement exponential backoff retry logic",
                    impact="medium",
                ),
                ErrorPattern(
                    pattern="Template matching failures",
                    frequency=by_type[AIErrorType.TEMPLATE_ERROR],
                    suggested_fix="Expand template library or improve matching algorithm",
                    impact="medium",
                ),
                ErrorPattern(
                    pattern="Validation errors",
                    frequency=by_type[AIErrorType.VALIDATION_ERROR],
                    suggested_fix="Review and improve validation rules",
                    impact="low",
                ),
            ]
            return [p for p in patterns if p.frequency > 0]
        except Exception as e:
            logger.error(f"Failed to get error patterns: {e}")
            return []

    def _handle_critical_error(self, record: AIErrorRecord) -> None:
        # Alert line picked up by log-based alerting
        logger.critical(
            f"CRITICAL AI ERROR [{record.error_type.value}/{record.error_code}]: "
            f"{record.message} (document={record.document_id})"
        )

    def _attempt_auto_recovery(self, record: AIErrorRecord) -> None:
        logger.info(
            f"Auto-recovery eligible for {record.error_type.value}/{record.error_code} "
            f"(retry {record.retry_count}/{MAX_RETRIES})"
        )


def _window_start(days: int) -> datetime:
    return datetime.now(UTC) - timedelta(days=days)


def _top_errors(errors: list[AIErrorRecord]) -> list[TopError]:
    grouped: dict[str, list[AIErrorRecord]] = {}
    for error in errors:
        grouped.setdefault(error.error_code, []).append(error)

    top = []
    for code, records in grouped.items():
        latest = max(records, key=lambda r: r.timestamp)
        top.append(
            TopError(
                error_code=code,
                count=len(records),
                message=latest.message,
                last_occurrence=latest.timestamp,
            )
        )
    top.sort(key=lambda t: (-t.count, t.error_code))
    return top[:TOP_ERRORS_LIMIT]
