# =============================================================================
# Knowledge API — Operator Endpoints for the Ingestion Pipeline
# =============================================================================
#
# Thin HTTP surface over the Celery tasks in app/workers/tasks.py, plus a
# read-only status view.
#
# ENDPOINTS:
#   POST /knowledge/scan              — Scan the folder, queue changes
#   POST /knowledge/process           — Run one processing batch
#   POST /knowledge/cleanup           — Repair stuck queue entries
#   GET  /knowledge/tasks/{task_id}   — Poll a dispatched task
#   GET  /knowledge/status            — Sources and queue counts
#
# DESIGN DECISION: Every mutating endpoint dispatches a task and returns
# 202. OCR of a single page takes seconds and a batch can run for many
# minutes, so nothing here waits for the pipeline.
# =============================================================================

import logging

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.engine import get_async_session
from app.models.requests import ProcessQueueRequest
from app.models.responses import (
    KnowledgeSourceResponse,
    KnowledgeStatusResponse,
    TaskDispatchResponse,
    TaskStatusResponse,
)
from app.services.queue import knowledge_status
from app.workers.celery_app import celery_app
from app.workers.tasks import (
    cleanup_knowledge_queue,
    process_knowledge_queue,
    scan_knowledge_base,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/knowledge", tags=["Knowledge"])


# ---------------------------------------------------------------------------
# POST /knowledge/scan
# ---------------------------------------------------------------------------


@router.post(
    "/scan",
    response_model=TaskDispatchResponse,
    status_code=202,
    summary="Scan the knowledge folder for new or changed PDFs",
)
async def scan_endpoint(
    process: bool = Query(
        default=False,
        description="Run a processing batch after the scan if anything was queued",
    ),
) -> TaskDispatchResponse:
    task = scan_knowledge_base.delay(process=process)
    logger.info("Dispatched knowledge scan: task_id=%s process=%s", task.id, process)
    return TaskDispatchResponse(
        task_id=task.id,
        message="Knowledge folder scan dispatched.",
    )


# ---------------------------------------------------------------------------
# POST /knowledge/process
# ---------------------------------------------------------------------------


@router.post(
    "/process",
    response_model=TaskDispatchResponse,
    status_code=202,
    summary="Process queued documents",
)
async def process_endpoint(
    request: ProcessQueueRequest | None = None,
) -> TaskDispatchResponse:
    limit = request.limit if request else None
    task = process_knowledge_queue.delay(limit=limit)
    logger.info("Dispatched queue batch: task_id=%s limit=%s", task.id, limit)
    return TaskDispatchResponse(
        task_id=task.id,
        message="Queue processing batch dispatched.",
    )


# ---------------------------------------------------------------------------
# POST /knowledge/cleanup
# ---------------------------------------------------------------------------


@router.post(
    "/cleanup",
    response_model=TaskDispatchResponse,
    status_code=202,
    summary="Repair queue entries stuck in PROCESSING",
)
async def cleanup_endpoint() -> TaskDispatchResponse:
    task = cleanup_knowledge_queue.delay()
    logger.info("Dispatched queue cleanup: task_id=%s", task.id)
    return TaskDispatchResponse(
        task_id=task.id,
        message="Queue cleanup dispatched.",
    )


# ---------------------------------------------------------------------------
# GET /knowledge/tasks/{task_id}
# ---------------------------------------------------------------------------


@router.get(
    "/tasks/{task_id}",
    response_model=TaskStatusResponse,
    summary="Check the status of a dispatched knowledge task",
)
async def task_status_endpoint(task_id: str) -> TaskStatusResponse:
    """
    Celery task states:
    - PENDING: Not yet picked up (or unknown task_id)
    - STARTED: Worker has begun
    - SUCCESS: `result` holds the task summary
    - FAILURE: `error` holds the exception message
    - RETRY: Infrastructure error, retrying with backoff
    """
    result = AsyncResult(task_id, app=celery_app)
    status = result.status

    summary: dict | None = None
    error: str | None = None
    if status == "SUCCESS" and isinstance(result.result, dict):
        summary = result.result
    elif status == "FAILURE":
        error = str(result.result) if result.result else "Unknown error"

    return TaskStatusResponse(task_id=task_id, status=status, result=summary, error=error)


# ---------------------------------------------------------------------------
# GET /knowledge/status
# ---------------------------------------------------------------------------


@router.get(
    "/status",
    response_model=KnowledgeStatusResponse,
    summary="Knowledge sources and queue counts",
)
async def status_endpoint(
    session: AsyncSession = Depends(get_async_session),
) -> KnowledgeStatusResponse:
    # The status query is shared with the CLI, which is synchronous
    snapshot = await session.run_sync(knowledge_status)
    return KnowledgeStatusResponse(
        sources=[KnowledgeSourceResponse.model_validate(s) for s in snapshot.sources],
        queue=snapshot.queue_counts,
    )
