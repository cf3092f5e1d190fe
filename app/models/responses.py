# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shapes returned by the operator endpoints. Separate from the ORM models
# so the chunk text of a whole corpus is never serialized by accident: the
# status view only exposes per-source counts.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.db.models import ProcessingStatus


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class TaskDispatchResponse(BaseModel):
    """
    Response for endpoints that hand work to a Celery worker.

    Poll GET /knowledge/tasks/{task_id} for the outcome.
    """

    task_id: str = Field(description="Celery task ID")
    status: str = Field(default="queued", description="Dispatch status")
    message: str = Field(description="Human-readable status message")


class TaskStatusResponse(BaseModel):
    """Response for GET /knowledge/tasks/{task_id}."""

    task_id: str
    status: str = Field(description="Task status: PENDING, STARTED, SUCCESS, FAILURE, RETRY")
    result: dict | None = Field(
        default=None,
        description="Task summary (available when status is SUCCESS)",
    )
    error: str | None = Field(
        default=None,
        description="Error message (available when status is FAILURE)",
    )


class KnowledgeSourceResponse(BaseModel):
    """One knowledge source with its ingestion progress."""

    filename: str
    title: str
    processing_status: ProcessingStatus
    total_pages: int | None
    total_chunks: int
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class KnowledgeStatusResponse(BaseModel):
    """Response for GET /knowledge/status."""

    sources: list[KnowledgeSourceResponse]
    queue: dict[str, int] = Field(
        description="Queue entry counts keyed by status (queued, processing, ...)",
    )
