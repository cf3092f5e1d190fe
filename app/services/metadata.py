# =============================================================================
# Metadata Loader — Optional Sidecar Descriptors
# =============================================================================
#
# Each source document may ship with a sidecar next to it, named by
# replacing the document's extension with `.meta.json`:
#
#   data/knowledge/soil_food_web.pdf
#   data/knowledge/soil_food_web.meta.json
#
#   {
#     "title": "The Soil Food Web",
#     "author": "E. Ingham",
#     "year": 2000,
#     "isbn": "978-...",
#     "topics": ["soil", "microbiology"],
#     "priority": "high"
#   }
#
# All keys are optional. Without a sidecar, the title is derived from the
# filename ("soil_food-web.pdf" → "Soil Food Web").
#
# DESIGN DECISION: A sidecar that exists but cannot be parsed raises
# MetadataError instead of silently falling back. The scanner skips that
# file for this scan, so a typo in a sidecar is visible in the logs rather
# than quietly ingesting the document under the wrong title and priority.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.db.models import SourcePriority

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".meta.json"


class MetadataError(Exception):
    """Raised when a sidecar file exists but is not valid metadata."""


class DocumentMetadata(BaseModel):
    """Descriptive metadata for one knowledge source."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    author: str | None = None
    year: int | None = Field(default=None, description="Publication year")
    isbn: str | None = None
    topics: list[str] | None = None
    priority: SourcePriority = SourcePriority.NORMAL

    @field_validator("priority", mode="before")
    @classmethod
    def _unknown_priority_is_normal(cls, value):
        # Anything other than high/low weighs the same as normal in the queue
        if value is None:
            return SourcePriority.NORMAL
        try:
            return SourcePriority(str(value).lower())
        except ValueError:
            logger.warning("Unknown priority %r in sidecar, using 'normal'", value)
            return SourcePriority.NORMAL


def sidecar_path(document_path: str | Path) -> Path:
    """Return the sidecar path for a document (extension → .meta.json)."""
    path = Path(document_path)
    return path.with_name(path.stem + SIDECAR_SUFFIX)


def title_from_filename(document_path: str | Path) -> str:
    """Derive a human-readable title: separators become spaces, words are capitalised."""
    stem = Path(document_path).stem
    spaced = re.sub(r"[-_]", " ", stem)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)


def load_metadata(document_path: str | Path) -> DocumentMetadata:
    """
    Load the sidecar metadata for a document, or derive a default.

    The returned metadata always has a title: the sidecar's if it provides
    one, otherwise one derived from the filename.

    Raises:
        MetadataError: If the sidecar exists but is unreadable, is not
            valid JSON, or does not match the expected shape.
    """
    meta_path = sidecar_path(document_path)

    if not meta_path.is_file():
        return DocumentMetadata(title=title_from_filename(document_path))

    try:
        raw = json.loads(meta_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MetadataError(f"Cannot read sidecar {meta_path.name}: {exc}") from exc

    if not isinstance(raw, dict):
        raise MetadataError(
            f"Sidecar {meta_path.name} must contain a JSON object, "
            f"got {type(raw).__name__}"
        )

    try:
        metadata = DocumentMetadata.model_validate(raw)
    except ValidationError as exc:
        raise MetadataError(f"Invalid sidecar {meta_path.name}: {exc}") from exc

    if not metadata.title:
        metadata.title = title_from_filename(document_path)
    return metadata
