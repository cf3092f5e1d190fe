# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
# Handles the long-running ingestion operations:
#   - celery_app.py: Celery application configuration and beat schedule
#   - tasks.py: scan, process-batch, and queue-cleanup tasks
#
# WHY CELERY?
# A processing batch OCRs documents page by page through rate-limited
# vision APIs and can run for a long time. Running it inside the API
# process would tie up a server worker and die with every deploy.
#
# Celery only decides WHEN a batch runs. WHAT it runs lives in the
# knowledge_processing_queue table, so a lost Celery message never loses
# ingestion work: the next batch finds the entry again.
# =============================================================================
