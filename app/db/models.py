# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────────┐       ┌───────────────────────────────────────┐
# │  knowledge_sources   │       │  knowledge_chunks                     │
# ├──────────────────────┤       ├───────────────────────────────────────┤
# │ id (PK)              │──1:N─▶│ id (PK)                               │
# │ filename (unique)    │       │ source_id (FK → knowledge_sources.id) │
# │ file_path            │       │ chunk_index (int, per source)         │
# │ file_hash            │       │ page_number (int)                     │
# │ title, author, ...   │       │ chunk_text (text)                     │
# │ priority             │       │ chunk_hash (sha-256)                  │
# │ processing_status    │       │ token_count (int)                     │
# │ total_pages          │       │ metadata_ (json)                      │
# │ total_chunks         │       │ created_at                            │
# └──────────┬───────────┘       └───────────────────────────────────────┘
#            │ joined by filename
# ┌──────────▼─────────────────┐
# │ knowledge_processing_queue │
# ├────────────────────────────┤
# │ id (PK)                    │
# │ filename, file_path        │
# │ file_hash, priority        │
# │ status                     │
# │ queued_at, started_at,     │
# │ completed_at               │
# └────────────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. Queue entries reference sources by filename, not by FK. A document is
#    re-enqueued every time its content changes, so several historical
#    entries can exist for one source.
#
# 2. Chunks are written page by page. The set of distinct page_numbers
#    with at least one chunk IS the resume checkpoint: there is no separate
#    "pages done" column to keep in sync.
#
# 3. Generic JSON columns (not JSONB) so the schema also runs on SQLite,
#    which the test suite uses.
# =============================================================================

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Timezone-aware current time; used for all queue timestamps."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all ORM models."""

    pass


class SourcePriority(str, enum.Enum):
    """Priority declared in a document's sidecar metadata."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class ProcessingStatus(str, enum.Enum):
    """
    Ingestion state of a knowledge source.

    State machine:
        PENDING → COMPLETED           (every page has chunks)
        PENDING → PENDING             (partial: some pages still missing)
        PENDING → FAILED              (nothing could be extracted)
        COMPLETED/FAILED → PENDING    (re-enqueued after a scan)
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueStatus(str, enum.Enum):
    """
    State of a processing queue entry.

    State machine:
        QUEUED → PROCESSING → COMPLETED
                            → FAILED
                            → PROCESSING   (left here while partially done;
                                            the next batch resumes it)
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class KnowledgeSource(Base):
    """
    One reference document in the knowledge folder.

    Created or updated when the scanner queues the file; its status and
    counts are reconciled by the queue processor after each extraction run.
    """

    __tablename__ = "knowledge_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Bare filename inside the knowledge folder (e.g., "soil_biology.pdf")
    filename: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)

    # SHA-256 of the file bytes; a different hash means different content
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Sidecar metadata (title falls back to one derived from the filename)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[str | None] = mapped_column(String(500), nullable=True)
    publication_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    isbn: Mapped[str | None] = mapped_column(String(32), nullable=True)
    topics: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    priority: Mapped[SourcePriority] = mapped_column(
        Enum(SourcePriority),
        nullable=False,
        default=SourcePriority.NORMAL,
    )

    processing_status: Mapped[ProcessingStatus] = mapped_column(
        Enum(ProcessingStatus),
        nullable=False,
        default=ProcessingStatus.PENDING,
    )
    total_pages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_chunks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Last document-level failure (null unless processing_status == FAILED)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # passive_deletes: chunks are removed by the FK's ON DELETE CASCADE,
    # the ORM never loads them just to delete them.
    chunks: Mapped[list["KnowledgeChunk"]] = relationship(
        "KnowledgeChunk",
        back_populates="source",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    def __repr__(self) -> str:
        return (
            f"<KnowledgeSource(id={self.id}, filename='{self.filename}', "
            f"status={self.processing_status})>"
        )


class KnowledgeChunk(Base):
    """
    A chunk of OCR'd page text.

    Written immediately after the page's OCR succeeds and never updated
    afterwards. The downstream embedding layer reads these rows.
    """

    __tablename__ = "knowledge_chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("knowledge_sources.id", ondelete="CASCADE"),
        nullable=False,
    )

    # 0-indexed, strictly increasing across the whole document in page order
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # 1-indexed PDF page this chunk was extracted from
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)

    chunk_text: Mapped[str] = mapped_column(Text, nullable=False)

    # SHA-256 of chunk_text, kept for future de-duplication
    chunk_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # tiktoken cl100k_base count, so downstream embedding can batch without re-encoding
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # start_char / end_char / word_count within the normalized page text
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    source: Mapped["KnowledgeSource"] = relationship(
        "KnowledgeSource", back_populates="chunks"
    )

    def __repr__(self) -> str:
        return (
            f"<KnowledgeChunk(id={self.id}, source_id={self.source_id}, "
            f"page={self.page_number}, index={self.chunk_index})>"
        )


class QueueEntry(Base):
    """A unit of ingestion work: process (or resume) one document."""

    __tablename__ = "knowledge_processing_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # 80 = high, 50 = normal, 30 = low (higher runs first)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=50)

    status: Mapped[QueueStatus] = mapped_column(
        Enum(QueueStatus),
        nullable=False,
        default=QueueStatus.QUEUED,
    )

    # Python-side default: microsecond precision keeps FIFO order stable
    # for documents queued within the same second.
    queued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<QueueEntry(id={self.id}, filename='{self.filename}', "
            f"status={self.status}, priority={self.priority})>"
        )


# =============================================================================
# Database Indexes
# =============================================================================

# Resume checkpoint lookup: DISTINCT page_number WHERE source_id = ?
chunk_source_page_idx = Index(
    "idx_knowledge_chunk_source_page",
    KnowledgeChunk.source_id,
    KnowledgeChunk.page_number,
)

# Batch selection filters on status and orders by priority / queued_at
queue_status_idx = Index(
    "idx_knowledge_queue_status_priority",
    QueueEntry.status,
    QueueEntry.priority,
    QueueEntry.queued_at,
)

queue_filename_idx = Index(
    "idx_knowledge_queue_filename",
    QueueEntry.filename,
)
