# =============================================================================
# Queue Processor — Claim, Extract, Reconcile
# =============================================================================
#
# Runs one batch over the processing queue. For every claimed entry the
# page extractor runs, then the entry and its source are reconciled:
#
#   ┌──────────────────────────────┬────────────────┬─────────────┬──────────┐
#   │ Extraction outcome           │ Source status  │ Queue entry │ Counted  │
#   ├──────────────────────────────┼────────────────┼─────────────┼──────────┤
#   │ returned, all pages covered  │ COMPLETED      │ COMPLETED   │ processed│
#   │ returned, pages missing      │ PENDING        │ PROCESSING  │ partial  │
#   │ raised, some chunks exist    │ PENDING        │ PROCESSING  │ partial  │
#   │ raised, no chunks at all     │ FAILED         │ FAILED      │ failed   │
#   └──────────────────────────────┴────────────────┴─────────────┴──────────┘
#
# An entry left in PROCESSING with a PENDING source is picked up again by
# the next batch, so a quota-limited document advances a little every run
# and is never reported as a failure while it still makes progress.
#
# CLAIMING:
# An entry is eligible when it is QUEUED, or PROCESSING and either its
# started_at is older than the staleness window (the worker that claimed it
# vanished) or its source is still PENDING (deliberate partial completion).
# This is a heuristic lease, not a lock: two workers racing past the
# staleness window can both claim an entry. The page-level "already has
# chunks" check keeps that from duplicating rows in the common case.
#
# A file can have more than one active entry (an UPDATED enqueue while an
# older partial entry is still PROCESSING). Only the first one in a batch
# runs; when it reaches a final status the other entries are closed with it.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.db.models import (
    KnowledgeSource,
    ProcessingStatus,
    QueueEntry,
    QueueStatus,
    utcnow,
)
from app.services.extractor import count_chunks, extract_document
from app.services.ocr import OCRFallbackChain, build_ocr_chain
from app.services.rasterizer import PyMuPDFRasterizer, Rasterizer

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Counts for one batch run. Partial documents are neither processed nor failed."""

    processed: int = 0
    failed: int = 0
    partial: int = 0

    @property
    def claimed(self) -> int:
        return self.processed + self.failed + self.partial


def select_claimable(
    session: Session,
    limit: int,
    config: Settings = settings,
    now: datetime | None = None,
) -> list[tuple[QueueEntry, KnowledgeSource]]:
    """Queue entries eligible for this batch, highest priority then oldest first."""
    now = now or utcnow()
    stale_before = now - timedelta(seconds=config.queue_stale_seconds)

    rows = session.execute(
        select(QueueEntry, KnowledgeSource)
        .join(KnowledgeSource, KnowledgeSource.filename == QueueEntry.filename)
        .where(
            or_(
                QueueEntry.status == QueueStatus.QUEUED,
                and_(
                    QueueEntry.status == QueueStatus.PROCESSING,
                    QueueEntry.started_at < stale_before,
                ),
                and_(
                    QueueEntry.status == QueueStatus.PROCESSING,
                    KnowledgeSource.processing_status == ProcessingStatus.PENDING,
                ),
            )
        )
        .order_by(
            QueueEntry.priority.desc(),
            QueueEntry.queued_at.asc(),
            QueueEntry.id.asc(),
        )
        .limit(limit)
    ).all()
    return [(entry, source) for entry, source in rows]


def _claim(session: Session, entry: QueueEntry) -> None:
    # Refresh started_at even when resuming, so the staleness window
    # measures time since the last worker touched the entry.
    entry.status = QueueStatus.PROCESSING
    entry.started_at = utcnow()
    session.commit()


def _close_siblings(session: Session, entry: QueueEntry, status: QueueStatus) -> None:
    """Give other active entries for the same file the final status of `entry`."""
    siblings = session.scalars(
        select(QueueEntry).where(
            QueueEntry.filename == entry.filename,
            QueueEntry.id != entry.id,
            QueueEntry.status.in_([QueueStatus.QUEUED, QueueStatus.PROCESSING]),
        )
    ).all()
    for sibling in siblings:
        sibling.status = status
        sibling.completed_at = entry.completed_at
    if siblings:
        logger.info(
            "%s: closed %d duplicate queue entries as %s",
            entry.filename, len(siblings), status.value,
        )


def _reconcile_success(
    session: Session,
    entry: QueueEntry,
    source: KnowledgeSource,
    total_pages: int,
    complete: bool,
) -> None:
    source.total_chunks = count_chunks(session, source.id)
    source.total_pages = total_pages

    if complete:
        source.processing_status = ProcessingStatus.COMPLETED
        entry.status = QueueStatus.COMPLETED
        entry.completed_at = utcnow()
        _close_siblings(session, entry, QueueStatus.COMPLETED)
    else:
        source.processing_status = ProcessingStatus.PENDING
        entry.status = QueueStatus.PROCESSING
    session.commit()


def _reconcile_failure(
    session: Session,
    entry: QueueEntry,
    source: KnowledgeSource,
    exc: Exception,
) -> bool:
    """Record a document-level failure. Returns True if it counts as failed."""
    session.rollback()

    chunks = count_chunks(session, source.id)
    if chunks > 0:
        # Some pages made it; keep the source resumable
        source.total_chunks = chunks
        entry.status = QueueStatus.PROCESSING
        session.commit()
        return False

    source.processing_status = ProcessingStatus.FAILED
    source.error_message = str(exc)[:1000]
    entry.status = QueueStatus.FAILED
    entry.completed_at = utcnow()
    _close_siblings(session, entry, QueueStatus.FAILED)
    session.commit()
    return True


def process_queue(
    session: Session,
    limit: int | None = None,
    ocr: OCRFallbackChain | None = None,
    rasterizer: Rasterizer | None = None,
    config: Settings = settings,
    **extract_kwargs,
) -> BatchResult:
    """
    Process up to `limit` queue entries, one document at a time.

    Args:
        session: Sync DB session; committed after every state transition.
        limit: Maximum entries to claim (default `config.queue_batch_limit`).
        ocr: OCR chain. Built from `config.ocr_models` when omitted and
            there is work to do.
        rasterizer: Page renderer (default PyMuPDF at `config.raster_dpi`).
        config: Settings for staleness, page budget, and chunking.
        **extract_kwargs: Passed through to extract_document().

    Returns:
        BatchResult with processed / failed / partial counts. A failing
        document never aborts the batch.
    """
    limit = config.queue_batch_limit if limit is None else limit
    if limit <= 0:
        return BatchResult()

    batch = select_claimable(session, limit, config=config)
    result = BatchResult()

    logger.info("Processing %d document(s) from queue", len(batch))
    if not batch:
        return result

    ocr = ocr or build_ocr_chain(config)
    rasterizer = rasterizer or PyMuPDFRasterizer(dpi=config.raster_dpi)
    extract_kwargs.setdefault("max_new_pages", config.max_new_pages_per_run)

    handled: set[str] = set()
    for entry, source in batch:
        filename = entry.filename
        if filename in handled:
            # Another active entry for this file already ran in this batch
            logger.info("Skipping duplicate queue entry %d for %s", entry.id, filename)
            continue
        handled.add(filename)

        resuming = entry.status == QueueStatus.PROCESSING
        logger.info("%s: %s", "Resuming" if resuming else "Processing", filename)

        _claim(session, entry)

        try:
            extraction = extract_document(
                session,
                source.id,
                entry.file_path,
                ocr=ocr,
                rasterizer=rasterizer,
                config=config,
                **extract_kwargs,
            )
        except Exception as exc:
            logger.exception("Extraction failed for %s", filename)
            if _reconcile_failure(session, entry, source, exc):
                result.failed += 1
                logger.info("Failed: %s", filename)
            else:
                result.partial += 1
                logger.info("Saved partial progress: %s (will resume later)", filename)
            continue

        _reconcile_success(
            session, entry, source, extraction.total_pages, extraction.is_complete,
        )
        if extraction.is_complete:
            result.processed += 1
            logger.info("Completed: %s (%d chunks)", filename, source.total_chunks)
        else:
            result.partial += 1
            logger.info(
                "Partially complete: %s (%d/%d pages, will resume later)",
                filename, extraction.pages_covered, extraction.total_pages,
            )

    logger.info(
        "Batch done: %d processed, %d partial, %d failed",
        result.processed, result.partial, result.failed,
    )
    return result
