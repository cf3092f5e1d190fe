# =============================================================================
# Unit Tests — Queue Processor (Claim, Extract, Reconcile)
# =============================================================================
#
# Drives process_queue() end to end against SQLite with fake page rendering
# and OCR, checking the status reconciliation for each outcome.
# =============================================================================

from datetime import timedelta

import pytest
from sqlalchemy import select

from app.db.models import (
    KnowledgeChunk,
    KnowledgeSource,
    ProcessingStatus,
    QueueEntry,
    QueueStatus,
    utcnow,
)
from app.services.processor import BatchResult, process_queue, select_claimable
from app.services.queue import scan_and_enqueue
from app.services.rasterizer import PageCountError
from fakes import FakeOCR, FakeRasterizer, word_count, write_document


class _PerFileRasterizer(FakeRasterizer):
    """Page counts per filename; a missing entry means the page count fails."""

    def __init__(self, pages_by_name: dict[str, int]) -> None:
        super().__init__(pages=0)
        self.pages_by_name = pages_by_name

    def page_count(self, file_path: str) -> int:
        name = file_path.rsplit("/", 1)[-1]
        if name not in self.pages_by_name:
            raise PageCountError(f"Could not determine number of pages in '{name}'")
        return self.pages_by_name[name]


def _run(session, config, rasterizer, ocr, **kwargs) -> BatchResult:
    return process_queue(
        session,
        ocr=ocr,
        rasterizer=rasterizer,
        config=config,
        token_counter=word_count,
        **kwargs,
    )


def _queue(session, config, knowledge_dir, *names, sidecars=None):
    sidecars = sidecars or {}
    for name in names:
        write_document(knowledge_dir, name, name.encode(), sidecar=sidecars.get(name))
    scan_and_enqueue(session, config=config)


def _source(session, filename) -> KnowledgeSource:
    return session.scalars(select(KnowledgeSource).where(KnowledgeSource.filename == filename)).one()


def _entry(session, filename) -> QueueEntry:
    return session.scalars(select(QueueEntry).where(QueueEntry.filename == filename)).one()


class TestProcessQueue:
    def test_empty_queue(self, session, config):
        ocr = FakeOCR()
        result = _run(session, config, FakeRasterizer(pages=1), ocr)
        assert result == BatchResult()
        assert ocr.calls == []

    def test_complete_document(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf")

        result = _run(session, config, FakeRasterizer(pages=3), FakeOCR())

        assert result == BatchResult(processed=1)
        source = _source(session, "a.pdf")
        assert source.processing_status == ProcessingStatus.COMPLETED
        assert source.total_pages == 3
        assert source.total_chunks == 3
        entry = _entry(session, "a.pdf")
        assert entry.status == QueueStatus.COMPLETED
        assert entry.started_at is not None
        assert entry.completed_at is not None

    def test_partial_document_stays_processing(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf")

        result = _run(session, config, FakeRasterizer(pages=3), FakeOCR(errors={3: RuntimeError("quota")}))

        assert result == BatchResult(partial=1)
        source = _source(session, "a.pdf")
        assert source.processing_status == ProcessingStatus.PENDING
        assert source.total_chunks == 2
        entry = _entry(session, "a.pdf")
        assert entry.status == QueueStatus.PROCESSING
        assert entry.completed_at is None

    def test_partial_document_completes_on_next_batch(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf")
        _run(session, config, FakeRasterizer(pages=3), FakeOCR(errors={3: RuntimeError("quota")}))

        ocr = FakeOCR()
        result = _run(session, config, FakeRasterizer(pages=3), ocr)

        assert ocr.calls == [3]
        assert result == BatchResult(processed=1)
        assert _source(session, "a.pdf").processing_status == ProcessingStatus.COMPLETED
        assert _entry(session, "a.pdf").status == QueueStatus.COMPLETED

    def test_page_budget_makes_document_partial(self, session, config, knowledge_dir):
        config.max_new_pages_per_run = 2
        _queue(session, config, knowledge_dir, "a.pdf")

        first = _run(session, config, FakeRasterizer(pages=3), FakeOCR())
        second = _run(session, config, FakeRasterizer(pages=3), FakeOCR())

        assert first == BatchResult(partial=1)
        assert second == BatchResult(processed=1)
        assert session.query(KnowledgeChunk).count() == 3

    def test_unreadable_document_fails(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "broken.pdf")

        result = _run(session, config, _PerFileRasterizer({}), FakeOCR())

        assert result == BatchResult(failed=1)
        source = _source(session, "broken.pdf")
        assert source.processing_status == ProcessingStatus.FAILED
        assert "broken.pdf" in source.error_message
        entry = _entry(session, "broken.pdf")
        assert entry.status == QueueStatus.FAILED
        assert entry.completed_at is not None

    def test_failure_after_progress_is_partial(self, session, config, knowledge_dir):
        """A document-level error with chunks already saved keeps the source resumable."""
        _queue(session, config, knowledge_dir, "a.pdf")
        _run(session, config, FakeRasterizer(pages=3), FakeOCR(errors={3: RuntimeError("quota")}))

        result = _run(session, config, _PerFileRasterizer({}), FakeOCR())

        assert result == BatchResult(partial=1)
        source = _source(session, "a.pdf")
        assert source.processing_status == ProcessingStatus.PENDING
        assert source.error_message is None
        assert _entry(session, "a.pdf").status == QueueStatus.PROCESSING

    def test_failure_does_not_abort_batch(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf", "b.pdf")

        result = _run(session, config, _PerFileRasterizer({"b.pdf": 1}), FakeOCR())

        assert result == BatchResult(processed=1, failed=1)
        assert _source(session, "a.pdf").processing_status == ProcessingStatus.FAILED
        assert _source(session, "b.pdf").processing_status == ProcessingStatus.COMPLETED

    def test_no_text_at_all_stays_partial(self, session, config, knowledge_dir):
        """Every page OCR'd to nothing: no exception, so the source waits for a retry."""
        _queue(session, config, knowledge_dir, "blank.pdf")

        result = _run(session, config, FakeRasterizer(pages=2), FakeOCR(text_for=lambda n: ""))

        assert result == BatchResult(partial=1)
        assert _source(session, "blank.pdf").processing_status == ProcessingStatus.PENDING

    def test_limit_caps_claimed_entries(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf", "b.pdf", "c.pdf")

        result = _run(session, config, FakeRasterizer(pages=1), FakeOCR(), limit=2)

        assert result.claimed == 2
        statuses = sorted(e.status.value for e in session.scalars(select(QueueEntry)))
        assert statuses == ["completed", "completed", "queued"]

    def test_zero_limit_claims_nothing(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf")
        ocr = FakeOCR()

        result = _run(session, config, FakeRasterizer(pages=1), ocr, limit=0)

        assert result == BatchResult()
        assert ocr.calls == []
        assert _entry(session, "a.pdf").status == QueueStatus.QUEUED

    def test_duplicate_entries_for_one_file_run_once(self, session, config, knowledge_dir):
        """A re-queued file with an older entry still active is counted once per batch."""
        _queue(session, config, knowledge_dir, "a.pdf")
        _run(session, config, FakeRasterizer(pages=3), FakeOCR(errors={3: RuntimeError("quota")}))
        write_document(knowledge_dir, "a.pdf", b"a.pdf, second edition")
        scan_and_enqueue(session, config=config)

        ocr = FakeOCR()
        result = _run(session, config, FakeRasterizer(pages=3), ocr)

        assert result == BatchResult(processed=1)
        assert ocr.calls == [1, 2, 3]
        entries = session.scalars(select(QueueEntry).where(QueueEntry.filename == "a.pdf")).all()
        assert [e.status for e in entries] == [QueueStatus.COMPLETED, QueueStatus.COMPLETED]
        assert all(e.completed_at is not None for e in entries)

        assert _run(session, config, FakeRasterizer(pages=3), FakeOCR()).claimed == 0

    def test_completed_entries_are_not_reprocessed(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf")
        _run(session, config, FakeRasterizer(pages=1), FakeOCR())

        ocr = FakeOCR()
        result = _run(session, config, FakeRasterizer(pages=1), ocr)

        assert result.claimed == 0
        assert ocr.calls == []


class TestSelectClaimable:
    def test_priority_then_age(self, session, config, knowledge_dir):
        _queue(
            session, config, knowledge_dir, "low.pdf", "normal.pdf", "high.pdf",
            sidecars={"low.pdf": {"priority": "low"}, "high.pdf": {"priority": "high"}},
        )
        write_document(knowledge_dir, "normal2.pdf", b"normal2")
        scan_and_enqueue(session, config=config)

        claimable = select_claimable(session, 10, config=config)

        assert [e.filename for e, _ in claimable] == ["high.pdf", "normal.pdf", "normal2.pdf", "low.pdf"]

    def test_stale_processing_entry_is_reclaimed(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf")
        source = _source(session, "a.pdf")
        source.processing_status = ProcessingStatus.COMPLETED
        entry = _entry(session, "a.pdf")
        entry.status = QueueStatus.PROCESSING
        entry.started_at = utcnow() - timedelta(seconds=config.queue_stale_seconds + 60)
        session.commit()

        claimable = select_claimable(session, 10, config=config)

        assert [e.filename for e, _ in claimable] == ["a.pdf"]

    def test_fresh_processing_entry_of_finished_source_is_not_claimed(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf")
        source = _source(session, "a.pdf")
        source.processing_status = ProcessingStatus.COMPLETED
        entry = _entry(session, "a.pdf")
        entry.status = QueueStatus.PROCESSING
        entry.started_at = utcnow()
        session.commit()

        assert select_claimable(session, 10, config=config) == []

    def test_processing_entry_of_pending_source_is_claimed(self, session, config, knowledge_dir):
        _queue(session, config, knowledge_dir, "a.pdf")
        entry = _entry(session, "a.pdf")
        entry.status = QueueStatus.PROCESSING
        entry.started_at = utcnow()
        session.commit()

        assert len(select_claimable(session, 10, config=config)) == 1

    def test_entry_without_source_is_skipped(self, session, config):
        session.add(QueueEntry(filename="ghost.pdf", file_path="/kb/ghost.pdf", file_hash="h"))
        session.commit()
        assert select_claimable(session, 10, config=config) == []

    @pytest.mark.parametrize("status", [QueueStatus.COMPLETED, QueueStatus.FAILED])
    def test_terminal_entries_are_not_claimed(self, session, config, knowledge_dir, status):
        _queue(session, config, knowledge_dir, "a.pdf")
        _entry(session, "a.pdf").status = status
        session.commit()
        assert select_claimable(session, 10, config=config) == []
