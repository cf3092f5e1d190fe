# =============================================================================
# Content Hasher — SHA-256 Fingerprints
# =============================================================================
#
# Fingerprints drive change detection: a source whose file hash differs
# from the stored one is re-ingested. Chunk text is fingerprinted with the
# same function so duplicate chunks can be found later.
#
# Files are hashed in fixed-size blocks so a several-hundred-megabyte scan
# never has to be held in memory at once.
# =============================================================================

from __future__ import annotations

import hashlib
from pathlib import Path

_READ_BLOCK_SIZE = 1024 * 1024


def hash_bytes(data: bytes) -> str:
    """Return the hex SHA-256 digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_text(text: str) -> str:
    """Return the hex SHA-256 digest of UTF-8 encoded text."""
    return hash_bytes(text.encode("utf-8"))


def hash_file(path: str | Path) -> str:
    """
    Return the hex SHA-256 digest of a file's contents.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(_READ_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()
