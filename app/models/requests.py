# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Request bodies for the operator endpoints in app/api/knowledge.py.
# FastAPI validates them and returns 422 on invalid input.
# =============================================================================

from pydantic import BaseModel, Field


class ProcessQueueRequest(BaseModel):
    """
    Request body for POST /knowledge/process.

    Example:
        {"limit": 5}
    """

    limit: int | None = Field(
        default=None,
        ge=1,
        le=500,
        description=(
            "Maximum queue entries to claim in this batch. "
            "Defaults to QUEUE_BATCH_LIMIT (10)."
        ),
        examples=[5],
    )
