"""Multi-method VAT validator.

Fans a document out to every extraction method that accepts it, waits for all
of them (no early exit: lower-confidence methods still count towards
agreement) and reconciles the results into one ValidationResult.
"""

import asyncio
import contextlib
import logging
import time

from prometheus_client import Counter, Histogram

from services.errors.models import AIErrorType
from services.errors.tracker import ErrorTracker
from services.extraction.base import ExtractionMethod
from services.extraction.factory import create_extraction_methods
from services.extraction.schema import DocumentInput
from services.shared.config import Settings
from services.validation.consensus import assess_method_quality, reach_consensus
from services.validation.models import (
    MethodResult,
    NoExtractionResultError,
    ValidationCancelledError,
    ValidationResult,
)

logger = logging.getLogger(__name__)

vat_validations_total = Counter(
    "vat_validations_total",
    "Total number of document validations",
    ["status"],  # success, no_result, cancelled
)

vat_validation_duration_seconds = Histogram(
    "vat_validation_duration_seconds",
    "Time spent validating a document across all methods",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

vat_method_results_total = Counter(
    "vat_method_results_total",
    "Extraction method outcomes",
    ["method", "status"],  # success, empty, error
)

vat_recommendations_total = Counter(
    "vat_recommendations_total",
    "Recommended actions issued by the validator",
    ["action"],
)


class MultiModelValidator:
    """Runs extraction methods concurrently and reaches consensus.

    Args:
        settings: Application settings
        methods: Extraction methods (defaults to create_extraction_methods)
        error_tracker: Tracker for method failures and processing analytics
    """

    def __init__(
        self,
        settings: Settings,
        methods: list[ExtractionMethod] | None = None,
        error_tracker: ErrorTracker | None = None,
    ) -> None:
        self.settings = settings
        self.error_tracker = error_tracker or ErrorTracker()
        self.methods = (
            methods if methods is not None else create_extraction_methods(settings, self.error_tracker)
        )

    async def validate(
        self,
        file_data: bytes,
        mime_type: str,
        file_name: str,
        category: str = "",
        *,
        document_id: str | None = None,
        user_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ValidationResult:
        """Validate a document with every applicable method.

        Args:
            file_data: Raw document bytes
            mime_type: MIME type reported by the upload
            file_name: Original filename
            category: Caller-supplied SALES/PURCHASE category hint
            document_id: Document identifier for error tracking
            user_id: Document owner for error tracking
            cancel_event: Set by the caller to abandon the validation

        Returns:
            ValidationResult with the consensus verdict

        Raises:
            NoExtractionResultError: If no method produced a result
            ValidationCancelledError: If cancel_event was set before completion
        """
        document = DocumentInput(
            file_data=file_data,
            mime_type=mime_type,
            file_name=file_name,
            category=category,
            document_id=document_id,
            user_id=user_id,
        )
        applicable = [method for method in self.methods if method.accepts(document)]
        logger.info(
            f"Validating {file_name} ({document.kind.value}) with "
            f"{[m.tag.value for m in applicable]}"
        )

        start = time.perf_counter()
        outcomes = await self._run_all(applicable, document, cancel_event)
        vat_validation_duration_seconds.observe(time.perf_counter() - start)

        method_results = [result for result, _ in outcomes if result is not None]
        had_errors = any(failed for _, failed in outcomes)

        if not method_results:
            vat_validations_total.labels(status="no_result").inc()
            logger.error(f"No extraction method produced a result for {file_name}")
            await self.error_tracker.record_processing(
                document_id, None, 0.0, had_errors=True, error_type=AIErrorType.EXTRACTION_ERROR
            )
            raise NoExtractionResultError(
                "Could not extract VAT data from this document - please enter VAT manually"
            )

        validation = reach_consensus(method_results)
        action = validation.validation_summary.recommended_action

        vat_validations_total.labels(status="success").inc()
        vat_recommendations_total.labels(action=action.value).inc()
        await self.error_tracker.record_processing(
            document_id,
            validation.final_result.processing_method.value,
            validation.confidence,
            had_errors=had_errors,
        )

        logger.info(
            f"Validation complete for {file_name}: confidence {validation.confidence:.0%}, "
            f"agreement {validation.agreement_score:.0%}, recommendation {action.value}"
        )
        return validation

    async def _run_all(
        self,
        methods: list[ExtractionMethod],
        document: DocumentInput,
        cancel_event: asyncio.Event | None,
    ) -> list[tuple[MethodResult | None, bool]]:
        if cancel_event is not None and cancel_event.is_set():
            vat_validations_total.labels(status="cancelled").inc()
            raise ValidationCancelledError(f"Validation of {document.file_name} was cancelled")

        gathered = asyncio.gather(*(self._run_method(method, document) for method in methods))
        if cancel_event is None:
            return await gathered

        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({gathered, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            gathered.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if cancel_event.is_set():
            gathered.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await gathered
            vat_validations_total.labels(status="cancelled").inc()
            logger.info(f"Validation of {document.file_name} cancelled, discarding partial results")
            raise ValidationCancelledError(f"Validation of {document.file_name} was cancelled")

        return gathered.result()

    async def _run_method(
        self, method: ExtractionMethod, document: DocumentInput
    ) -> tuple[MethodResult | None, bool]:
        """Run one method; failures become (None, True) and never propagate."""
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                method.extract(document), timeout=self.settings.method_timeout_seconds
            )
        except TimeoutError:
            message = f"{method.tag.value} timed out after {self.settings.method_timeout_seconds}s"
            logger.warning(f"{message} for {document.file_name}")
            vat_method_results_total.labels(method=method.tag.value, status="error").inc()
            await self._track(method, document, message, AIErrorType.TIMEOUT_ERROR)
            return None, True
        except Exception as e:
            logger.warning(f"{method.tag.value} failed for {document.file_name}: {e}")
            vat_method_results_total.labels(method=method.tag.value, status="error").inc()
            await self._track(method, document, e)
            return None, True

        if result is None:
            logger.info(f"{method.tag.value} found no VAT data in {document.file_name}")
            vat_method_results_total.labels(method=method.tag.value, status="empty").inc()
            return None, False

        vat_method_results_total.labels(method=method.tag.value, status="success").inc()
        elapsed_ms = result.processing_time_ms or int((time.perf_counter() - start) * 1000)
        return (
            MethodResult(
                method=method.tag,
                result=result,
                confidence=result.confidence,
                weight=method.weight,
                processing_time_ms=elapsed_ms,
                quality=assess_method_quality(result, method.tag),
            ),
            False,
        )

    async def _track(
        self,
        method: ExtractionMethod,
        document: DocumentInput,
        error: BaseException | str,
        error_type: AIErrorType | None = None,
    ) -> None:
        await self.error_tracker.track_failure(
            error,
            error_type=error_type,
            document_id=document.document_id,
            user_id=document.user_id,
            processing_method=method.tag.value,
            context={"file_name": document.file_name, "mime_type": document.mime_type},
        )
