# =============================================================================
# FastAPI Application — Knowledge Base Operator API
# =============================================================================
#
# Run with:
#   uvicorn app.main:app --reload
#
# STARTUP:
# With RAG_AUTO_SCAN=true the lifespan hands a scan to the Celery worker
# (and RAG_AUTO_PROCESS=true asks it to run a batch afterwards). The API
# never runs the pipeline in-process: OCR would block the event loop for
# minutes. If the broker is unreachable the API still starts; an operator
# can trigger POST /knowledge/scan later.
# =============================================================================

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.knowledge import router as knowledge_router
from app.config import settings
from app.models.responses import HealthResponse
from app.workers.tasks import scan_knowledge_base

logger = logging.getLogger(__name__)


def trigger_startup_scan() -> str | None:
    """Dispatch the startup scan if enabled. Returns the task id, if any."""
    if not settings.rag_auto_scan:
        logger.info("Knowledge auto-scan disabled (set RAG_AUTO_SCAN=true to enable)")
        return None

    try:
        task = scan_knowledge_base.delay(process=settings.rag_auto_process)
    except Exception:
        logger.exception("Could not dispatch startup knowledge scan")
        return None

    logger.info(
        "Dispatched startup knowledge scan: task_id=%s process=%s",
        task.id, settings.rag_auto_process,
    )
    return task.id


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    trigger_startup_scan()
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Ingests a folder of PDFs into a chunked knowledge base using "
        "page-level vision OCR with model fallback and resumable progress."
    ),
    lifespan=lifespan,
)

app.include_router(knowledge_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
