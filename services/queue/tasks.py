"""Async task definitions for document validation.

Uses arq (async Redis queue) for background task processing.
Runs multi-method VAT validation as a background job and keeps the
result in Redis for 24 hours.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from datetime import UTC, datetime
from typing import Any

from arq.connections import RedisSettings
from pydantic import BaseModel

from services.errors.store import RedisErrorStore
from services.errors.tracker import ErrorTracker
from services.shared.config import Settings, get_settings
from services.validation.models import NoExtractionResultError
from services.validation.validator import MultiModelValidator

logger = logging.getLogger(__name__)

JOB_RESULT_TTL_SECONDS = 86400


class JobResult(BaseModel):
    """Result of a background validation job.

    Attributes:
        job_id: Unique job identifier
        status: Job status (pending, processing, completed, failed)
        document_id: Document ID being validated
        recommendation: ACCEPT, REVIEW or REJECT (if completed)
        confidence: Final consensus confidence (if completed)
        validation: Full ValidationResult as a dict (if completed)
        error: Error message (if failed)
        created_at: Job creation timestamp
        completed_at: Job completion timestamp
    """

    job_id: str
    status: str
    document_id: str
    recommendation: str | None = None
    confidence: float | None = None
    validation: dict[str, Any] | None = None
    error: str | None = None
    created_at: str
    completed_at: str | None = None


def _now() -> str:
    return datetime.now(UTC).isoformat()


async def process_document(
    ctx: dict[str, Any],
    job_id: str,
    document_id: str,
    file_content: bytes,
    filename: str,
    content_type: str,
    category: str = "",
    user_id: str | None = None,
) -> dict[str, Any]:
    """Validate a document in the background worker.

    Args:
        ctx: arq context (contains redis connection)
        job_id: Unique job identifier
        document_id: Document ID
        file_content: Raw file bytes
        filename: Original filename
        content_type: MIME type
        category: SALES/PURCHASE category hint
        user_id: Document owner, for error tracking

    Returns:
        JobResult as dict
    """
    logger.info(f"Processing validation job {job_id} for document {document_id}")

    settings: Settings = ctx.get("settings") or get_settings()
    validator: MultiModelValidator = ctx.get("validator") or MultiModelValidator(settings)
    redis = ctx["redis"]

    result = JobResult(
        job_id=job_id,
        status="processing",
        document_id=document_id,
        created_at=_now(),
    )
    await redis.set(f"job:{job_id}", result.model_dump_json(), ex=JOB_RESULT_TTL_SECONDS)

    try:
        validation = await validator.validate(
            file_content,
            content_type,
            filename,
            category,
            document_id=document_id,
            user_id=user_id,
        )
        result.status = "completed"
        result.recommendation = validation.validation_summary.recommended_action.value
        result.confidence = validation.confidence
        result.validation = validation.model_dump(mode="json")
    except NoExtractionResultError as e:
        logger.warning(f"Job {job_id}: {e}")
        result.status = "failed"
        result.error = str(e)
    except Exception as e:
        logger.exception(f"Job {job_id} failed with error: {e}")
        result.status = "failed"
        result.error = str(e)

    result.completed_at = _now()
    await redis.set(f"job:{job_id}", result.model_dump_json(), ex=JOB_RESULT_TTL_SECONDS)
    logger.info(f"Job {job_id} completed with status: {result.status}")

    return result.model_dump()


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services.

    Errors from every job land in Redis so the API's analytics see
    failures from all worker processes.
    """
    logger.info("Initializing worker services...")
    settings = get_settings()
    ctx["settings"] = settings
    ctx["error_tracker"] = ErrorTracker(
        RedisErrorStore(ctx["redis"], max_entries=settings.error_store_max_entries)
    )
    ctx["validator"] = MultiModelValidator(settings, error_tracker=ctx["error_tracker"])
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Redis connection settings
    - Job timeout and retry settings
    """

    functions = [process_document]
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300

    @classmethod
    def get_redis_settings(cls) -> RedisSettings:
        """Get Redis settings from configuration."""
        return RedisSettings.from_dsn(get_settings().redis_url)
