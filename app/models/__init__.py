# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the operator API. These are SEPARATE from
# the database models (app/db/models.py).
# =============================================================================
