# =============================================================================
# Services Package — Business Logic
# =============================================================================
# The ingestion pipeline, separated from API handlers and Celery tasks:
#   - hashing.py: SHA-256 fingerprints for files and chunk text
#   - metadata.py: Optional `.meta.json` sidecars (title, author, priority)
#   - scanner.py: Knowledge folder change detection (new/updated/retry)
#   - queue.py: Persisted processing queue, cleanup, and status
#   - rasterizer.py: PDF page count and page rendering (PyMuPDF)
#   - ocr.py: Vision OCR providers and the rate-limit fallback chain
#   - chunker.py: Boundary-aware character chunking, token counts
#   - extractor.py: Resumable page-by-page OCR with per-page commits
#   - processor.py: Queue batch runner and status reconciliation
#   - pipeline.py: Startup trigger (RAG_AUTO_SCAN / RAG_AUTO_PROCESS)
# =============================================================================
