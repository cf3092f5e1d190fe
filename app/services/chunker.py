# =============================================================================
# Boundary-Aware Text Chunker
# =============================================================================
#
# Splits one page of OCR text into overlapping chunks for retrieval.
#
# DESIGN DECISION: Character windows with boundary snapping, applied per
# page. OCR output arrives one page at a time and is persisted before the
# next page is read, so a chunk never spans pages and a page's chunks can
# be written (or skipped on resume) as a unit.
#
# ALGORITHM:
# 1. Collapse whitespace runs to single spaces and trim
# 2. Take a window of up to `target_size` characters from `start`
# 3. If the window does not reach the end of the text, cut at the last
#    sentence end (". ", "! ", "? ") past `start + min_size`; else at the
#    last space past that offset; else hard-cut at the window edge
# 4. Keep the chunk if it is at least `min_size` long or is the final
#    fragment (short trailing text is not dropped)
# 5. Next window starts `overlap` characters before the cut. If that does
#    not move past the current window's start, start at the cut instead.
#    Step 5 is what guarantees termination on text with no spaces.
#
# Token counts for storage are computed separately (count_tokens), so the
# chunking itself stays a pure function with no tokenizer dependency.
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass

import tiktoken

from app.config import settings

_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_ENDINGS = (". ", "! ", "? ", ".\n", "!\n", "?\n")


@dataclass(frozen=True)
class ChunkDraft:
    """A chunk of one page's text, before it is assigned a document-wide index."""

    text: str
    page_number: int
    chunk_index: int  # 0-indexed within the page
    start_char: int  # offsets into the normalized page text
    end_char: int
    word_count: int


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _find_last_sentence_end(text: str, start: int, end: int) -> int:
    """Absolute position just after the last sentence ending in text[start:end], or -1."""
    window = text[start:end]
    best = -1
    for ending in _SENTENCE_ENDINGS:
        pos = window.rfind(ending)
        if pos != -1:
            best = max(best, pos + len(ending))
    return start + best if best > 0 else -1


def chunk_text(
    text: str,
    page_number: int,
    target_size: int = settings.chunk_target_size,
    overlap: int = settings.chunk_overlap,
    min_size: int = settings.chunk_min_size,
) -> list[ChunkDraft]:
    """
    Split page text into overlapping, boundary-aware chunks.

    Args:
        text: Raw OCR text of a single page.
        page_number: 1-indexed page the text came from.
        target_size: Maximum characters per chunk.
        overlap: Characters shared between consecutive chunks.
        min_size: Chunks shorter than this are dropped unless they end
            the text; boundaries closer than this to the window start are
            not used.

    Returns:
        Chunks in text order with strictly increasing chunk_index.
        Empty list for empty or whitespace-only text.

    Raises:
        ValueError: If overlap is not smaller than target_size.
    """
    if target_size <= 0:
        raise ValueError(f"target_size must be positive, got {target_size}")
    if not 0 <= overlap < target_size:
        raise ValueError(
            f"overlap ({overlap}) must be in [0, target_size={target_size})"
        )

    normalized = normalize_whitespace(text)
    length = len(normalized)
    chunks: list[ChunkDraft] = []
    start = 0

    while start < length:
        end = min(start + target_size, length)

        if end < length:
            sentence_end = _find_last_sentence_end(normalized, start, end)
            if sentence_end > start + min_size:
                end = sentence_end
            else:
                # Include `end` itself: a space right at the window edge is a clean cut
                word_end = normalized.rfind(" ", start, end + 1)
                if word_end > start + min_size:
                    end = word_end

        piece = normalized[start:end].strip()

        if piece and (len(piece) >= min_size or end >= length):
            chunks.append(ChunkDraft(
                text=piece,
                page_number=page_number,
                chunk_index=len(chunks),
                start_char=start,
                end_char=end,
                word_count=len(piece.split()),
            ))

        if end >= length:
            break

        next_start = end - overlap
        if next_start <= start:
            next_start = end
        start = next_start

    return chunks


# ---------------------------------------------------------------------------
# Token Counting — Cached tiktoken Encoder
# ---------------------------------------------------------------------------
# cl100k_base is the encoding used by OpenAI's embedding models, which is
# what the downstream retrieval layer feeds these chunks to. Loading the
# encoder reads a ~1.7MB BPE file, so it is created once per process.
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    """Number of cl100k_base tokens in `text`."""
    return len(_get_encoder().encode(text))
