# =============================================================================
# Unit Tests — Source Scanner
# =============================================================================
#
# Scans a temporary knowledge folder against an in-memory database.
# =============================================================================

from app.db.models import KnowledgeSource, ProcessingStatus, SourcePriority
from app.services.queue import enqueue_documents
from app.services.scanner import DocumentChange, classify, scan_directory
from fakes import write_document


def _source(filename: str, file_hash: str, status: ProcessingStatus) -> KnowledgeSource:
    return KnowledgeSource(
        filename=filename,
        file_path=f"/kb/{filename}",
        file_hash=file_hash,
        title=filename,
        processing_status=status,
    )


class TestClassify:
    def test_no_source_is_new(self):
        assert classify(None, "abc") is DocumentChange.NEW

    def test_hash_change_is_updated(self):
        assert classify(_source("a.pdf", "old", ProcessingStatus.COMPLETED), "new") is DocumentChange.UPDATED

    def test_failed_same_hash_is_retry(self):
        assert classify(_source("a.pdf", "h", ProcessingStatus.FAILED), "h") is DocumentChange.RETRY

    def test_completed_same_hash_is_unchanged(self):
        assert classify(_source("a.pdf", "h", ProcessingStatus.COMPLETED), "h") is DocumentChange.UNCHANGED

    def test_pending_same_hash_is_unchanged(self):
        """Partially processed documents resume through the queue, not the scanner."""
        assert classify(_source("a.pdf", "h", ProcessingStatus.PENDING), "h") is DocumentChange.UNCHANGED


class TestScanDirectory:
    def test_empty_folder(self, session, config, knowledge_dir):
        result = scan_directory(session, knowledge_dir, config=config)
        assert result.documents == []
        assert not result.has_work

    def test_new_documents_are_detected(self, session, config, knowledge_dir):
        write_document(knowledge_dir, "b.pdf", b"bbb")
        write_document(knowledge_dir, "a.pdf", b"aaa", sidecar={"title": "Alpha", "priority": "high"})

        result = scan_directory(session, knowledge_dir, config=config)

        assert result.new_count == 2
        assert result.updated_count == 0
        assert [d.filename for d in result.documents] == ["a.pdf", "b.pdf"]
        alpha = result.documents[0]
        assert alpha.change is DocumentChange.NEW
        assert alpha.metadata.title == "Alpha"
        assert alpha.metadata.priority == SourcePriority.HIGH
        assert alpha.file_path == str(knowledge_dir / "a.pdf")
        assert len(alpha.file_hash) == 64

    def test_ignores_unsupported_files_and_sidecars(self, session, config, knowledge_dir):
        write_document(knowledge_dir, "notes.txt", b"text")
        write_document(knowledge_dir, "guide.pdf", b"pdf", sidecar={"title": "Guide"})
        (knowledge_dir / "subdir.pdf").mkdir()

        result = scan_directory(session, knowledge_dir, config=config)

        assert [d.filename for d in result.documents] == ["guide.pdf"]

    def test_extension_match_is_case_insensitive(self, session, config, knowledge_dir):
        write_document(knowledge_dir, "SCAN.PDF", b"pdf")
        result = scan_directory(session, knowledge_dir, config=config)
        assert result.new_count == 1

    def test_scan_does_not_write(self, session, config, knowledge_dir):
        write_document(knowledge_dir, "a.pdf", b"aaa")
        scan_directory(session, knowledge_dir, config=config)
        assert session.query(KnowledgeSource).count() == 0

    def test_rescan_after_enqueue_is_idempotent(self, session, config, knowledge_dir):
        write_document(knowledge_dir, "a.pdf", b"aaa")
        first = scan_directory(session, knowledge_dir, config=config)
        enqueue_documents(session, first.documents, config=config)

        # Queued but not yet processed: pending sources are not re-queued
        second = scan_directory(session, knowledge_dir, config=config)
        assert second.documents == []
        assert second.skipped_count == 1

    def test_changed_content_is_updated(self, session, config, knowledge_dir):
        path = write_document(knowledge_dir, "a.pdf", b"version one")
        enqueue_documents(session, scan_directory(session, knowledge_dir, config=config).documents, config=config)

        path.write_bytes(b"version two")
        result = scan_directory(session, knowledge_dir, config=config)

        assert result.updated_count == 1
        assert result.documents[0].change is DocumentChange.UPDATED
        assert result.updated_docs == result.documents

    def test_failed_source_is_retried(self, session, config, knowledge_dir):
        write_document(knowledge_dir, "a.pdf", b"aaa")
        enqueue_documents(session, scan_directory(session, knowledge_dir, config=config).documents, config=config)
        source = session.query(KnowledgeSource).one()
        source.processing_status = ProcessingStatus.FAILED
        session.commit()

        result = scan_directory(session, knowledge_dir, config=config)

        assert result.updated_count == 1
        assert result.documents[0].change is DocumentChange.RETRY

    def test_malformed_sidecar_skips_only_that_file(self, session, config, knowledge_dir):
        write_document(knowledge_dir, "bad.pdf", b"bad", sidecar="{oops")
        write_document(knowledge_dir, "good.pdf", b"good")

        result = scan_directory(session, knowledge_dir, config=config)

        assert [d.filename for d in result.documents] == ["good.pdf"]

    def test_missing_folder_is_created_and_empty(self, session, config, tmp_path):
        missing = tmp_path / "not-there-yet"
        result = scan_directory(session, missing, config=config)
        assert result.documents == []
        assert missing.is_dir()

    def test_uncreatable_folder_returns_empty_result(self, session, config, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        result = scan_directory(session, blocker / "knowledge", config=config)
        assert result.documents == []

    def test_defaults_to_configured_folder(self, session, config, knowledge_dir):
        write_document(knowledge_dir, "a.pdf", b"aaa")
        result = scan_directory(session, config=config)
        assert result.new_count == 1
