# =============================================================================
# Source Scanner — Knowledge Folder Change Detection
# =============================================================================
#
# Walks the knowledge folder, fingerprints every supported file, and
# classifies each one against the knowledge_sources table:
#
#   ┌───────────────────────────────┬──────────────┬──────────┐
#   │ Stored source                 │ Change       │ Queued?  │
#   ├───────────────────────────────┼──────────────┼──────────┤
#   │ none                          │ NEW          │ yes      │
#   │ different file_hash           │ UPDATED      │ yes      │
#   │ same hash, status FAILED      │ RETRY        │ yes      │
#   │ same hash, any other status   │ UNCHANGED    │ no       │
#   └───────────────────────────────┴──────────────┴──────────┘
#
# Scanning only reads: nothing is written until the caller passes the
# result to enqueue_documents() (app/services/queue.py). Running the scan
# twice without touching the folder therefore yields the same answer.
#
# ERROR HANDLING:
# - A file that cannot be hashed, or whose sidecar is malformed, is logged
#   and skipped; the rest of the folder is still scanned.
# - A knowledge folder that does not exist and cannot be created (e.g. a
#   read-only deployment) produces an empty result, not an error.
# =============================================================================

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.db.models import KnowledgeSource, ProcessingStatus
from app.services.hashing import hash_file
from app.services.metadata import SIDECAR_SUFFIX, DocumentMetadata, MetadataError, load_metadata

logger = logging.getLogger(__name__)


class DocumentChange(str, enum.Enum):
    """How a scanned file differs from what is already ingested."""

    NEW = "new"
    UPDATED = "updated"
    RETRY = "retry"
    UNCHANGED = "unchanged"

    @property
    def needs_processing(self) -> bool:
        return self is not DocumentChange.UNCHANGED


@dataclass
class ScannedDocument:
    """A file found in the knowledge folder that needs (re)processing."""

    filename: str
    file_path: str
    file_hash: str
    metadata: DocumentMetadata
    change: DocumentChange


@dataclass
class ScanResult:
    """Outcome of one folder scan. `updated_count` includes retries."""

    documents: list[ScannedDocument] = field(default_factory=list)
    new_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0

    @property
    def new_docs(self) -> list[ScannedDocument]:
        return [d for d in self.documents if d.change is DocumentChange.NEW]

    @property
    def updated_docs(self) -> list[ScannedDocument]:
        return [
            d for d in self.documents
            if d.change in (DocumentChange.UPDATED, DocumentChange.RETRY)
        ]

    @property
    def has_work(self) -> bool:
        return bool(self.documents)


def classify(
    existing: KnowledgeSource | None,
    file_hash: str,
) -> DocumentChange:
    """Compare a file's fingerprint with its stored source record."""
    if existing is None:
        return DocumentChange.NEW
    if existing.file_hash != file_hash:
        return DocumentChange.UPDATED
    if existing.processing_status == ProcessingStatus.FAILED:
        return DocumentChange.RETRY
    return DocumentChange.UNCHANGED


def _candidate_files(directory: Path, extensions: list[str]) -> list[Path]:
    """Regular files with a supported extension, sidecars excluded, sorted by name."""
    wanted = {ext.lower() for ext in extensions}
    candidates = []
    for path in sorted(directory.iterdir()):
        if path.name.endswith(SIDECAR_SUFFIX):
            continue
        if path.suffix.lower() not in wanted:
            continue
        if not path.is_file():
            continue
        candidates.append(path)
    return candidates


def _ensure_directory(directory: Path) -> bool:
    """Create the knowledge folder if missing. False if it cannot exist."""
    if directory.is_dir():
        return True
    try:
        logger.info("Creating knowledge folder: %s", directory)
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.info(
            "Knowledge folder %s does not exist and cannot be created (%s); "
            "skipping scan",
            directory, exc,
        )
    # A freshly created folder has nothing to scan either way
    return False


def scan_directory(
    session: Session,
    directory: str | Path | None = None,
    config: Settings = settings,
) -> ScanResult:
    """
    Scan the knowledge folder and classify every supported document.

    Args:
        session: Sync DB session used to look up existing sources.
        directory: Folder to scan. Defaults to `config.knowledge_dir`.
        config: Settings providing the supported extensions.

    Returns:
        ScanResult listing every document that needs processing, plus
        counts of new, updated (including retries), and skipped files.
    """
    root = Path(directory or config.knowledge_dir)
    logger.info("Scanning knowledge folder: %s", root)

    result = ScanResult()
    if not _ensure_directory(root):
        return result

    try:
        candidates = _candidate_files(root, config.supported_extensions)
    except OSError as exc:
        logger.error("Cannot list knowledge folder %s: %s", root, exc)
        return result

    for path in candidates:
        try:
            file_hash = hash_file(path)
            metadata = load_metadata(path)
            existing = session.scalars(
                select(KnowledgeSource).where(KnowledgeSource.filename == path.name)
            ).one_or_none()
        except (OSError, MetadataError) as exc:
            logger.error("Error scanning %s, skipping: %s", path.name, exc)
            continue

        change = classify(existing, file_hash)

        if change is DocumentChange.UNCHANGED:
            logger.debug("%s: already processed, skipping", path.name)
            result.skipped_count += 1
            continue

        if change is DocumentChange.NEW:
            result.new_count += 1
            logger.info("%s: new document detected", path.name)
        elif change is DocumentChange.UPDATED:
            result.updated_count += 1
            logger.info("%s: document updated (hash changed)", path.name)
        else:
            result.updated_count += 1
            logger.info("%s: retrying previously failed document", path.name)

        result.documents.append(ScannedDocument(
            filename=path.name,
            file_path=str(path),
            file_hash=file_hash,
            metadata=metadata,
            change=change,
        ))

    logger.info(
        "Scan summary: %d new, %d updated, %d skipped",
        result.new_count, result.updated_count, result.skipped_count,
    )
    return result
