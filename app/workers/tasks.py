# =============================================================================
# Celery Task Definitions — Knowledge Base Ingestion
# =============================================================================
#
#   scan_knowledge_base      scan the folder, queue changed documents,
#                            optionally run a processing batch right after
#   process_knowledge_queue  run one processing batch over the queue table
#   cleanup_knowledge_queue  repair PROCESSING entries left behind by
#                            killed workers
#
# IMPORTANT: Celery workers are SYNCHRONOUS and use get_sync_session().
#
# RETRY STRATEGY:
# Document and page failures are NOT task failures: they are reconciled
# into the queue/source rows and the task returns normally. A task only
# raises (and retries with backoff) when the infrastructure itself fails,
# e.g. the database is unreachable.
# =============================================================================

import logging
from dataclasses import asdict

from app.db.engine import get_sync_session
from app.services.pipeline import initialize_knowledge_base
from app.services.processor import process_queue
from app.services.queue import cleanup_stuck_entries
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="scan_knowledge_base",
    max_retries=3,
    default_retry_delay=60,
)
def scan_knowledge_base(self, process: bool = False) -> dict:
    """
    Scan the knowledge folder and queue new / updated / failed documents.

    Args:
        process: Run a processing batch afterwards if anything was queued.

    Returns:
        dict with scan counts and, if a batch ran, its counts.
    """
    task_id = self.request.id
    logger.info("[%s] Knowledge scan started (process=%s)", task_id, process)

    try:
        report = initialize_knowledge_base(
            get_sync_session, scan=True, process=process,
        )
    except Exception as exc:
        logger.exception("[%s] Knowledge scan failed", task_id)
        raise self.retry(exc=exc)

    if report.scan is None:
        # initialize_knowledge_base already logged the cause
        raise self.retry(exc=RuntimeError("knowledge scan did not complete"))

    summary = {
        "new": report.scan.new_count,
        "updated": report.scan.updated_count,
        "skipped": report.scan.skipped_count,
        "batch": asdict(report.batch) if report.batch else None,
    }
    logger.info("[%s] Knowledge scan complete: %s", task_id, summary)
    return summary


@celery_app.task(
    bind=True,
    name="process_knowledge_queue",
    max_retries=3,
    default_retry_delay=60,
)
def process_knowledge_queue(self, limit: int | None = None) -> dict:
    """
    Run one processing batch.

    Returns:
        dict with processed / failed / partial counts.
    """
    task_id = self.request.id
    logger.info("[%s] Queue batch started (limit=%s)", task_id, limit)

    try:
        with get_sync_session() as session:
            result = process_queue(session, limit=limit)
    except Exception as exc:
        logger.exception("[%s] Queue batch aborted", task_id)
        raise self.retry(exc=exc)

    summary = asdict(result)
    logger.info("[%s] Queue batch complete: %s", task_id, summary)
    return summary


@celery_app.task(name="cleanup_knowledge_queue")
def cleanup_knowledge_queue() -> dict:
    """Reconcile stuck PROCESSING entries with their sources."""
    with get_sync_session() as session:
        result = cleanup_stuck_entries(session)
    return {"fixed": result.fixed, "unchanged": result.unchanged}
