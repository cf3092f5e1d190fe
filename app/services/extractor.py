# =============================================================================
# Page Extractor — Resumable, Page-Granular OCR Ingestion
# =============================================================================
#
# Extracts one document page by page and persists each page's chunks the
# moment its OCR succeeds:
#
#   page_count ─▶ for page 1..N:
#                   already has chunks? ─▶ skip
#                   render ─▶ OCR (fallback chain) ─▶ chunk ─▶ INSERT + COMMIT
#
# RESUME CHECKPOINT:
# The set of page numbers that already have at least one chunk row. A crash
# or quota exhaustion after page k leaves pages 1..k in that set, so the
# next run starts OCR at page k+1 and continues chunk_index from where the
# last run stopped. Nothing else is stored about progress.
#
# FAILURE SCOPE:
# - Page count undeterminable → PageCountError, the only document-fatal case
# - Render failure, OCR failure (including every tier rate limited), empty
#   text, or a failed insert → logged, the page gets no chunks and is
#   retried on the next run; the remaining pages are still processed
#
# This module does not decide whether the document is finished; it reports
# counts and the queue processor reconciles statuses.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.db.models import KnowledgeChunk
from app.services.chunker import chunk_text, count_tokens
from app.services.hashing import hash_text
from app.services.ocr import OCRFallbackChain
from app.services.rasterizer import Rasterizer

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Outcome of one extraction run over a document."""

    total_pages: int
    new_pages_processed: int = 0
    skipped_pages: int = 0
    failed_pages: list[int] = field(default_factory=list)
    chunks_written: int = 0

    @property
    def pages_covered(self) -> int:
        return self.new_pages_processed + self.skipped_pages

    @property
    def is_complete(self) -> bool:
        return self.pages_covered >= self.total_pages


def get_processed_pages(session: Session, source_id: int) -> set[int]:
    """Page numbers that already have at least one persisted chunk."""
    rows = session.scalars(
        select(KnowledgeChunk.page_number)
        .where(KnowledgeChunk.source_id == source_id)
        .distinct()
    )
    return set(rows)


def next_chunk_index(session: Session, source_id: int) -> int:
    """One past the highest chunk_index stored for the source (0 if none)."""
    highest = session.scalar(
        select(func.max(KnowledgeChunk.chunk_index))
        .where(KnowledgeChunk.source_id == source_id)
    )
    return 0 if highest is None else highest + 1


def count_chunks(session: Session, source_id: int) -> int:
    return session.scalar(
        select(func.count(KnowledgeChunk.id))
        .where(KnowledgeChunk.source_id == source_id)
    ) or 0


def save_page_chunks(
    session: Session,
    source_id: int,
    page_number: int,
    page_text: str,
    starting_chunk_index: int,
    config: Settings = settings,
    token_counter: Callable[[str], int] = count_tokens,
) -> int:
    """
    Chunk one page's text and commit its rows in a single transaction.

    Returns:
        Number of chunks written (0 if the text produced no chunks).

    Raises:
        SQLAlchemyError: If the insert or commit fails; the page's rows are
            rolled back so a retry writes the page from scratch.
    """
    drafts = chunk_text(
        page_text,
        page_number,
        target_size=config.chunk_target_size,
        overlap=config.chunk_overlap,
        min_size=config.chunk_min_size,
    )
    if not drafts:
        return 0

    try:
        for offset, draft in enumerate(drafts):
            session.add(KnowledgeChunk(
                source_id=source_id,
                chunk_index=starting_chunk_index + offset,
                page_number=page_number,
                chunk_text=draft.text,
                chunk_hash=hash_text(draft.text),
                token_count=token_counter(draft.text),
                metadata_={
                    "start_char": draft.start_char,
                    "end_char": draft.end_char,
                    "word_count": draft.word_count,
                },
            ))
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    return len(drafts)


def extract_document(
    session: Session,
    source_id: int,
    file_path: str,
    ocr: OCRFallbackChain,
    rasterizer: Rasterizer,
    config: Settings = settings,
    max_new_pages: int | None = None,
    token_counter: Callable[[str], int] = count_tokens,
) -> ExtractionResult:
    """
    OCR every page of a document that has no chunks yet.

    Args:
        session: Sync DB session; committed after every successful page.
        source_id: KnowledgeSource the chunks belong to.
        file_path: Path to the PDF.
        ocr: Fallback chain used for every page.
        rasterizer: Page counter / renderer.
        config: Chunking settings.
        max_new_pages: Stop after OCR'ing this many new pages (None = all).
        token_counter: Token counter stored on each chunk.

    Returns:
        ExtractionResult with total, new, skipped, and failed page counts.

    Raises:
        PageCountError: If the number of pages cannot be determined.
    """
    total_pages = rasterizer.page_count(file_path)
    result = ExtractionResult(total_pages=total_pages)

    processed_pages = get_processed_pages(session, source_id)
    chunk_index = next_chunk_index(session, source_id)

    logger.info("%s: %d page(s)", file_path, total_pages)
    if processed_pages:
        logger.info(
            "%s: %d page(s) already processed, resuming",
            file_path, len(processed_pages),
        )

    for page_number in range(1, total_pages + 1):
        if page_number in processed_pages:
            logger.debug("Page %d/%d already processed, skipping", page_number, total_pages)
            result.skipped_pages += 1
            continue

        if max_new_pages is not None and result.new_pages_processed >= max_new_pages:
            logger.info(
                "%s: page budget of %d reached at page %d, leaving the rest for the next run",
                file_path, max_new_pages, page_number,
            )
            break

        try:
            image = rasterizer.render_page(file_path, page_number)
            logger.info("OCR processing page %d/%d", page_number, total_pages)
            page_text = ocr.ocr(image)

            if not page_text.strip():
                logger.warning("No text extracted from page %d", page_number)
                result.failed_pages.append(page_number)
                continue

            written = save_page_chunks(
                session,
                source_id,
                page_number,
                page_text,
                chunk_index,
                config=config,
                token_counter=token_counter,
            )
        except Exception:
            logger.exception("Error processing page %d of %s", page_number, file_path)
            result.failed_pages.append(page_number)
            continue

        if written == 0:
            logger.warning("Page %d produced no chunks", page_number)
            result.failed_pages.append(page_number)
            continue

        chunk_index += written
        result.chunks_written += written
        result.new_pages_processed += 1
        logger.info(
            "Page %d: extracted %d characters, saved %d chunk(s)",
            page_number, len(page_text), written,
        )

    logger.info(
        "%s: %d new page(s), %d skipped, %d failed",
        file_path,
        result.new_pages_processed,
        result.skipped_pages,
        len(result.failed_pages),
    )
    return result
