"""FastAPI application for Irish VAT document validation.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Upload validation (size and type checked before extraction)
- Multi-method VAT extraction with consensus scoring
- Background validation jobs via arq
- Error analytics for the admin surface
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
import uuid
from typing import Any, Literal

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from fastapi import FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile, status
from pydantic import BaseModel

from services.api import metrics
from services.errors.models import ErrorAnalytics, ErrorPattern
from services.errors.store import InMemoryErrorStore
from services.errors.tracker import ErrorTracker
from services.queue.tasks import JobResult
from services.shared.config import get_settings
from services.validation.consensus import validate_extracted_vat
from services.validation.models import (
    ExtractionValidation,
    NoExtractionResultError,
    RecommendedAction,
    ValidationResult,
)
from services.validation.validator import MultiModelValidator

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Irish VAT Extraction Service",
    description="Multi-method VAT extraction and consensus validation for Irish businesses",
    version=settings.service_version,
)

error_tracker = ErrorTracker(InMemoryErrorStore(settings.error_store_max_entries))
validator = MultiModelValidator(settings, error_tracker=error_tracker)

SUPPORTED_MIME_TYPES = {
    "application/pdf",
    "text/csv",
    "text/plain",
    "text/tab-separated-values",
    "application/json",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
}
EXTRACTION_FAILED_MESSAGE = "Could not extract VAT data from this document - please enter VAT manually"

_arq_pool: ArqRedis | None = None


async def get_arq_pool() -> ArqRedis:
    """Lazily create the arq Redis pool used for background jobs."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    return _arq_pool


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class ValidateResponse(BaseModel):
    """Document validation response.

    status is "processed" when the figures can be used as-is and
    "needs_review" when a person should confirm them.
    """

    document_id: str
    status: Literal["processed", "needs_review"]
    validation: ValidationResult
    validation_notes: ExtractionValidation
    message: str


class JobQueuedResponse(BaseModel):
    job_id: str
    document_id: str
    status: str


def _is_supported(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.startswith("image/") or content_type in SUPPORTED_MIME_TYPES


async def _read_upload(file: UploadFile) -> bytes:
    """Read and check an upload; all failures are 400s raised before extraction."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    if not _is_supported(file.content_type):
        metrics.documents_uploaded_total.labels(status="rejected").inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Invalid file type: {file.content_type}. "
                "Supported: images, PDF, CSV, TSV, XLSX, JSON and plain text."
            ),
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    if len(content) > settings.max_upload_bytes:
        metrics.documents_uploaded_total.labels(status="rejected").inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large: {len(content)} bytes (max {settings.max_upload_bytes})",
        )

    metrics.document_upload_size_bytes.observe(len(content))
    return content


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe."""
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/documents/validate", response_model=ValidateResponse, tags=["Documents"])
async def validate_document(
    file: UploadFile = File(..., description="Invoice, receipt or tax report"),  # noqa: B008
    category: str = Form("", description="SALES or PURCHASE flavoured category hint"),
) -> ValidateResponse:
    """Extract VAT figures from a document and score them across methods.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/documents/validate" \\
      -F "file=@receipt.png" -F "category=PURCHASE"
    ```

    ## Error Handling

    - Returns 400 if the file is empty, unnamed, too large or of an unsupported type
    - Returns 422 if no extraction method could read any VAT data
    - Low-confidence or conflicting results are returned with status `needs_review`
    """
    content = await _read_upload(file)
    document_id = str(uuid.uuid4())

    try:
        validation = await validator.validate(
            content,
            file.content_type or "application/octet-stream",
            file.filename or "",
            category,
            document_id=document_id,
        )
    except NoExtractionResultError:
        metrics.documents_uploaded_total.labels(status="failed").inc()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=EXTRACTION_FAILED_MESSAGE
        ) from None

    action = validation.validation_summary.recommended_action
    if action == RecommendedAction.ACCEPT:
        doc_status: Literal["processed", "needs_review"] = "processed"
        message = "VAT data extracted"
    else:
        doc_status = "needs_review"
        message = (
            "VAT data extracted with low confidence - please review the figures"
            if action == RecommendedAction.REJECT
            else "VAT data extracted - please review before filing"
        )
    metrics.documents_uploaded_total.labels(status=doc_status).inc()

    return ValidateResponse(
        document_id=document_id,
        status=doc_status,
        validation=validation,
        validation_notes=validate_extracted_vat(validation.final_result),
        message=message,
    )


@app.post(
    "/api/v1/documents/validate/async", response_model=JobQueuedResponse, tags=["Documents"]
)
async def validate_document_async(
    file: UploadFile = File(..., description="Invoice, receipt or tax report"),  # noqa: B008
    category: str = Form(""),
) -> JobQueuedResponse:
    """Queue a document for background validation.

    Returns 503 when the queue is disabled. Poll /api/v1/jobs/{job_id} for the result.
    """
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Background processing is not enabled",
        )

    content = await _read_upload(file)
    job_id = str(uuid.uuid4())
    document_id = str(uuid.uuid4())

    pool = await get_arq_pool()
    await pool.enqueue_job(
        "process_document",
        job_id=job_id,
        document_id=document_id,
        file_content=content,
        filename=file.filename,
        content_type=file.content_type,
        category=category,
        _job_id=job_id,
    )
    metrics.documents_uploaded_total.labels(status="queued").inc()
    logger.info(f"Queued validation job {job_id} for {file.filename}")

    return JobQueuedResponse(job_id=job_id, document_id=document_id, status="pending")


@app.get("/api/v1/jobs/{job_id}", response_model=JobResult, tags=["Documents"])
async def get_job(job_id: str) -> JobResult:
    """Read the stored result of a background validation job."""
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Background processing is not enabled",
        )

    pool = await get_arq_pool()
    raw = await pool.get(f"job:{job_id}")
    if raw is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobResult.model_validate_json(raw)


@app.get("/api/v1/errors/analytics", response_model=ErrorAnalytics, tags=["Errors"])
async def error_analytics(
    time_range: Literal["day", "week", "month"] = Query("week"),
) -> ErrorAnalytics:
    """Error counts, rates and critical errors over a trailing window."""
    return await error_tracker.get_error_analytics(time_range)


@app.get("/api/v1/errors/patterns", response_model=list[ErrorPattern], tags=["Errors"])
async def error_patterns() -> list[dict[str, Any]]:
    """Recurring failure categories with suggested fixes."""
    return [p.model_dump() for p in await error_tracker.get_error_patterns()]
