# =============================================================================
# Pipeline Entry Point — Startup Trigger
# =============================================================================
#
# Ties scanning and processing together for the two ways the pipeline is
# started outside of explicit operator calls:
#
#   RAG_AUTO_SCAN=true     scan the knowledge folder and queue changes
#   RAG_AUTO_PROCESS=true  also run a processing batch when the scan
#                          queued something
#
# The flags are independent: scanning only reads files and writes a few
# rows, processing spends OCR quota. A typical deployment scans on every
# boot and leaves processing to the Celery beat schedule.
#
# Failures are logged and swallowed here so a broken knowledge folder or
# database never prevents the API from starting.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.services.processor import BatchResult, process_queue
from app.services.queue import scan_and_enqueue
from app.services.scanner import ScanResult

logger = logging.getLogger(__name__)


@dataclass
class StartupReport:
    scan: ScanResult | None = None
    batch: BatchResult | None = None


def initialize_knowledge_base(
    session_scope: Callable[[], AbstractContextManager[Session]],
    config: Settings = settings,
    scan: bool | None = None,
    process: bool | None = None,
    **process_kwargs,
) -> StartupReport:
    """
    Run the startup scan and, optionally, one processing batch.

    Args:
        session_scope: Factory returning a session context manager,
            e.g. app.db.engine.get_sync_session.
        config: Settings; `rag_auto_scan` / `rag_auto_process` are used
            when `scan` / `process` are not given explicitly.
        scan: Override for the scan toggle.
        process: Override for the process toggle.
        **process_kwargs: Passed through to process_queue().

    Returns:
        StartupReport with whatever ran (None for skipped steps).
    """
    do_scan = config.rag_auto_scan if scan is None else scan
    do_process = config.rag_auto_process if process is None else process
    report = StartupReport()

    if not do_scan:
        logger.info("Knowledge auto-scan disabled (set RAG_AUTO_SCAN=true to enable)")
        return report

    try:
        with session_scope() as session:
            report.scan = scan_and_enqueue(session, config=config)
    except Exception:
        logger.exception("Knowledge base scan failed")
        return report

    logger.info(
        "Scanned: %d new, %d updated, %d unchanged",
        report.scan.new_count, report.scan.updated_count, report.scan.skipped_count,
    )

    if not do_process:
        logger.info("Auto-processing disabled (set RAG_AUTO_PROCESS=true to enable)")
        return report
    if not report.scan.has_work:
        return report

    try:
        with session_scope() as session:
            report.batch = process_queue(session, config=config, **process_kwargs)
    except Exception:
        logger.exception("Knowledge base processing failed")
        return report

    logger.info(
        "Processing complete: %d succeeded, %d failed, %d partial",
        report.batch.processed, report.batch.failed, report.batch.partial,
    )
    return report
