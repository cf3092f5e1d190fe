# =============================================================================
# Ingestion Queue — Enqueue, Cleanup, and Status
# =============================================================================
#
# The queue is a table (knowledge_processing_queue), not a broker: work
# items must survive worker crashes and be inspectable with plain SQL.
# Celery only schedules *when* a batch runs; *what* it runs is read from
# this table by the queue processor (app/services/processor.py).
#
# ENQUEUE PATH:
#   1. Upsert the knowledge_sources row by filename (status → PENDING)
#   2. Append a QUEUED entry carrying the source's numeric priority
#
# DESIGN DECISION: Entries are appended, never merged. A filename only gets
# a new entry when the scanner classified it as NEW / UPDATED / RETRY, so
# an unchanged folder never grows the queue.
#
# DESIGN DECISION: When a document's content changed (UPDATED), chunks
# from the previous content are deleted before it is queued. Otherwise the
# resume checkpoint ("pages that already have chunks") would skip every
# page and the new content would never be read. RETRY keeps its chunks so
# the retry resumes where the failed run stopped.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.db.models import (
    KnowledgeChunk,
    KnowledgeSource,
    ProcessingStatus,
    QueueEntry,
    QueueStatus,
    SourcePriority,
    utcnow,
)
from app.services.scanner import DocumentChange, ScannedDocument, ScanResult, scan_directory

logger = logging.getLogger(__name__)

PRIORITY_WEIGHTS: dict[SourcePriority, int] = {
    SourcePriority.HIGH: 80,
    SourcePriority.NORMAL: 50,
    SourcePriority.LOW: 30,
}


def priority_weight(priority: SourcePriority | str | None) -> int:
    """Map a source priority to its queue weight (high 80, low 30, else 50)."""
    try:
        return PRIORITY_WEIGHTS[SourcePriority(priority)]
    except ValueError:
        return PRIORITY_WEIGHTS[SourcePriority.NORMAL]


def _upsert_source(
    session: Session,
    doc: ScannedDocument,
    reset_chunks_on_update: bool,
) -> KnowledgeSource:
    """Insert or refresh the knowledge_sources row for a scanned document."""
    meta = doc.metadata
    source = session.scalars(
        select(KnowledgeSource).where(KnowledgeSource.filename == doc.filename)
    ).one_or_none()

    if source is None:
        source = KnowledgeSource(filename=doc.filename, total_chunks=0)
        session.add(source)
    elif doc.change is DocumentChange.UPDATED and reset_chunks_on_update:
        removed = session.execute(
            delete(KnowledgeChunk).where(KnowledgeChunk.source_id == source.id)
        ).rowcount
        if removed:
            logger.info(
                "%s: discarded %d chunks from previous content",
                doc.filename, removed,
            )
        source.total_chunks = 0
        source.total_pages = None

    source.file_path = doc.file_path
    source.file_hash = doc.file_hash
    source.title = meta.title or doc.filename
    source.author = meta.author
    source.publication_year = meta.year
    source.isbn = meta.isbn
    source.topics = meta.topics
    source.priority = meta.priority
    source.processing_status = ProcessingStatus.PENDING
    source.error_message = None
    return source


def enqueue_documents(
    session: Session,
    documents: list[ScannedDocument],
    config: Settings = settings,
) -> list[QueueEntry]:
    """
    Record scanned documents as sources and queue them for processing.

    Args:
        session: Sync DB session. Committed before returning.
        documents: Documents classified as NEW, UPDATED, or RETRY.
        config: Settings providing `reset_chunks_on_update`.

    Returns:
        The QueueEntry rows created, one per document.
    """
    entries: list[QueueEntry] = []

    for doc in documents:
        _upsert_source(session, doc, config.reset_chunks_on_update)

        entry = QueueEntry(
            filename=doc.filename,
            file_path=doc.file_path,
            file_hash=doc.file_hash,
            priority=priority_weight(doc.metadata.priority),
            status=QueueStatus.QUEUED,
        )
        session.add(entry)
        entries.append(entry)

        logger.info("Queued: %s (priority: %d)", doc.filename, entry.priority)

    session.commit()
    return entries


def scan_and_enqueue(
    session: Session,
    directory: str | Path | None = None,
    config: Settings = settings,
) -> ScanResult:
    """Scan the knowledge folder and queue everything that changed."""
    result = scan_directory(session, directory, config=config)

    if not result.has_work:
        logger.info("Knowledge base is up to date")
        return result

    logger.info("Queueing %d documents for processing", len(result.documents))
    enqueue_documents(session, result.documents, config=config)
    return result


# =============================================================================
# Cleanup — Reconcile Stuck PROCESSING Entries
# =============================================================================
#
# An entry can be left in PROCESSING for good reasons (a partially done
# document waiting for quota) or bad ones (a worker killed mid-batch after
# the source already completed). The cleanup job syncs every PROCESSING
# entry with its source:
#
#   source COMPLETED                         → entry COMPLETED
#   source FAILED                            → entry FAILED
#   source PENDING, queued > stuck_pending   → entry FAILED, source FAILED
#   no source,      queued > stuck_orphan    → entry FAILED
#   otherwise                                → unchanged
#
# Age is measured from queued_at. Every batch re-claims a partial entry and
# refreshes started_at, so started_at never ages past the threshold while
# the processor keeps picking the entry up. Failing the source as well lets
# the next scan classify the file as RETRY; its chunks are kept and the
# retry resumes from the checkpoint.
# =============================================================================


@dataclass
class CleanupResult:
    fixed: int = 0
    unchanged: int = 0
    transitions: list[tuple[str, QueueStatus, str]] = field(default_factory=list)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; they were written in UTC
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def cleanup_stuck_entries(
    session: Session,
    config: Settings = settings,
    now: datetime | None = None,
) -> CleanupResult:
    """
    Sync PROCESSING queue entries with their sources' final status.

    Returns:
        CleanupResult with counts and a (filename, new_status, reason)
        record for every entry that changed.
    """
    now = now or utcnow()
    result = CleanupResult()

    rows = session.execute(
        select(QueueEntry, KnowledgeSource)
        .outerjoin(KnowledgeSource, KnowledgeSource.filename == QueueEntry.filename)
        .where(QueueEntry.status == QueueStatus.PROCESSING)
    ).all()

    logger.info("Found %d queue entries in 'processing' state", len(rows))

    for entry, source in rows:
        source_status = source.processing_status if source is not None else None
        elapsed = (now - _as_utc(entry.queued_at)).total_seconds()

        if source_status == ProcessingStatus.COMPLETED:
            new_status, reason = QueueStatus.COMPLETED, "source is completed"
        elif source_status == ProcessingStatus.FAILED:
            new_status, reason = QueueStatus.FAILED, "source failed"
        elif (
            source_status == ProcessingStatus.PENDING
            and elapsed > config.queue_stuck_pending_seconds
        ):
            new_status, reason = QueueStatus.FAILED, "stuck while pending"
            source.processing_status = ProcessingStatus.FAILED
            source.error_message = (
                f"Processing stalled: still pending {int(elapsed // 60)} minutes after queueing"
            )
        elif source_status is None and elapsed > config.queue_stuck_orphan_seconds:
            new_status, reason = QueueStatus.FAILED, "no source record"
        else:
            result.unchanged += 1
            continue

        entry.status = new_status
        entry.completed_at = now
        result.fixed += 1
        result.transitions.append((entry.filename, new_status, reason))
        logger.info(
            "Queue cleanup: %s processing → %s (%s)",
            entry.filename, new_status.value, reason,
        )

    session.commit()
    logger.info(
        "Queue cleanup complete: %d fixed, %d unchanged",
        result.fixed, result.unchanged,
    )
    return result


# =============================================================================
# Status Report
# =============================================================================


@dataclass
class SourceStatus:
    filename: str
    title: str
    processing_status: ProcessingStatus
    total_pages: int | None
    total_chunks: int
    created_at: datetime | None


@dataclass
class KnowledgeStatus:
    sources: list[SourceStatus] = field(default_factory=list)
    queue_counts: dict[str, int] = field(default_factory=dict)


def knowledge_status(session: Session) -> KnowledgeStatus:
    """Snapshot of every source and the queue's entry counts by status."""
    sources = session.scalars(
        select(KnowledgeSource).order_by(KnowledgeSource.created_at.desc(), KnowledgeSource.id.desc())
    ).all()

    counts = session.execute(
        select(QueueEntry.status, func.count(QueueEntry.id)).group_by(QueueEntry.status)
    ).all()

    return KnowledgeStatus(
        sources=[
            SourceStatus(
                filename=s.filename,
                title=s.title,
                processing_status=s.processing_status,
                total_pages=s.total_pages,
                total_chunks=s.total_chunks,
                created_at=s.created_at,
            )
            for s in sources
        ],
        queue_counts={status.value: count for status, count in counts},
    )
