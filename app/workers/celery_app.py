# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# ARCHITECTURE:
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌────────────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│────▶│ PostgreSQL │
# │ / beat   │     │(broker)│    │ (pipeline)   │     │ (queue +   │
# └──────────┘     └───────┘     └──────────────┘     │  chunks)   │
#                                                     └────────────┘
#
# Run a worker with a single process; the pipeline assumes one logical
# worker per queue and vision-model rate limits, not CPU, bound it:
#   celery -A app.workers.celery_app worker --concurrency=1
#   celery -A app.workers.celery_app beat
# =============================================================================

from celery import Celery

from app.config import settings

celery_app = Celery(
    "app.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON (not pickle): pickle can execute arbitrary code on load.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Ack after the task finishes so a crashed worker's batch is redelivered.
    # Redelivery is safe: already-processed pages are skipped.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # One long task at a time per worker process.
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # A batch of large documents on free-tier OCR can take a long time.
    # Progress is committed per page, so hitting the hard limit loses at
    # most the page in flight.
    task_soft_time_limit=3300,
    task_time_limit=3600,

    # --- Results ---
    result_expires=3600,

    include=["app.workers.tasks"],
)

# ---------------------------------------------------------------------------
# Beat Schedule
# ---------------------------------------------------------------------------
# Partial documents (quota ran out mid-document) only advance when another
# batch runs, so processing is scheduled periodically. Cleanup runs less
# often; it only repairs entries a killed worker left behind.
# ---------------------------------------------------------------------------
if settings.queue_beat_interval_seconds > 0:
    celery_app.conf.beat_schedule = {
        "process-knowledge-queue": {
            "task": "process_knowledge_queue",
            "schedule": float(settings.queue_beat_interval_seconds),
        },
        "cleanup-knowledge-queue": {
            "task": "cleanup_knowledge_queue",
            "schedule": float(settings.queue_beat_interval_seconds * 4),
        },
    }
