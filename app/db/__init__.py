# =============================================================================
# Database Package
# =============================================================================
# Provides SQLAlchemy engines, session management, and ORM models.
#
# Key exports:
#   - get_sync_session: context manager used by workers and scripts
#   - get_async_session: FastAPI dependency for the operator API
#   - Base: SQLAlchemy declarative base for ORM models
#   - KnowledgeSource, KnowledgeChunk, QueueEntry: ingestion tables
# =============================================================================
