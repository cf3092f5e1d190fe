# =============================================================================
# PDF Rasterizer — PyMuPDF
# =============================================================================
#
# Two black-box operations the page extractor needs:
#   - page_count(path)          → number of pages in the PDF
#   - render_page(path, n, dpi) → PNG bytes for page n (1-indexed)
#
# DESIGN DECISION: Pages are rendered one at a time, on demand, straight
# to memory. Rendering the whole document up front would redo work for
# pages that already have chunks and hold every image in a temp directory
# while OCR (the slow part) trickles through them.
#
# DESIGN DECISION: The extractor receives a Rasterizer object rather than
# importing these functions, so tests can hand it a fake that needs no
# real PDF.
# =============================================================================

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


class PageCountError(Exception):
    """The document's page count cannot be determined (document-fatal)."""


class RasterizationError(Exception):
    """A single page could not be rendered (page-scoped)."""


class Rasterizer(Protocol):
    """Converts PDF pages to images."""

    def page_count(self, file_path: str) -> int:
        ...

    def render_page(self, file_path: str, page_number: int) -> bytes:
        ...


class PyMuPDFRasterizer:
    """Rasterizer backed by PyMuPDF (no external poppler binaries needed)."""

    def __init__(self, dpi: int = 150) -> None:
        self._dpi = dpi

    def page_count(self, file_path: str) -> int:
        """
        Return the number of pages in a PDF.

        Raises:
            PageCountError: If the file is missing, is not a PDF, or
                reports zero pages.
        """
        path = Path(file_path)
        if not path.is_file():
            raise PageCountError(f"PDF not found: {file_path}")

        try:
            with fitz.open(str(path)) as doc:
                count = doc.page_count
        except Exception as exc:
            raise PageCountError(
                f"Could not open '{path.name}' to count pages: {exc}"
            ) from exc

        if count <= 0:
            raise PageCountError(
                f"Could not determine number of pages in '{path.name}'"
            )
        return count

    def render_page(self, file_path: str, page_number: int) -> bytes:
        """
        Render one page (1-indexed) to PNG bytes.

        Raises:
            RasterizationError: If the page cannot be loaded or rendered.
        """
        try:
            with fitz.open(file_path) as doc:
                page = doc.load_page(page_number - 1)
                pixmap = page.get_pixmap(dpi=self._dpi, alpha=False)
                image = pixmap.tobytes("png")
        except Exception as exc:
            raise RasterizationError(
                f"Failed to render page {page_number} of "
                f"'{Path(file_path).name}': {exc}"
            ) from exc

        logger.debug(
            "Rendered page %d of %s (%d bytes at %d dpi)",
            page_number, Path(file_path).name, len(image), self._dpi,
        )
        return image
