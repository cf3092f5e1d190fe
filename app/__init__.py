# =============================================================================
# Knowledge Base Ingestion Service
# =============================================================================
# Turns a folder of reference PDFs into chunked, retrievable text. Pages are
# rendered and read by vision models (free tiers first, paid tiers on rate
# limits), and every page is committed as soon as it is read so a crash or
# exhausted quota never costs more than the page in flight.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI operator endpoints (scan, process, status)
#   ├── db/           → Database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Pipeline logic (scanning, queueing, rasterizing,
#   │                    OCR, chunking, extraction, queue processing)
#   └── workers/      → Celery task definitions and configuration
# =============================================================================
