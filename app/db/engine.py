# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Two engines share one schema:
#
# 1. Async engine (asyncpg) — used by the FastAPI operator endpoints via the
#    `get_async_session` dependency. Auto-commits when the handler returns.
#
# 2. Sync engine (psycopg2) — used by Celery workers and CLI scripts, which
#    run the ingestion pipeline. The pipeline is synchronous end to end:
#    OCR calls are blocking network requests and each page's chunks must be
#    committed before the next page starts.
#
# COMMIT POLICY (sync side):
# `get_sync_session()` commits on exit and rolls back on exception. The
# pipeline additionally commits mid-session (after every page, after every
# queue transition) so a crash never loses completed work.
# =============================================================================

from collections.abc import AsyncGenerator, Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings

# ---------------------------------------------------------------------------
# Async Engine (Lazy Initialization)
# ---------------------------------------------------------------------------
# DESIGN DECISION: Lazy, unlike a module-level engine. Workers and scripts
# import app.db without needing asyncpg; only the API process builds it.
#
# expire_on_commit=False: attribute access after commit would otherwise
# trigger a lazy load, which fails in async context outside of a session.
# ---------------------------------------------------------------------------

_async_engine = None
_async_session_factory = None


def _get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Lazily create and cache the async engine and session factory."""
    global _async_engine, _async_session_factory
    if _async_session_factory is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
        _async_session_factory = async_sessionmaker(
            bind=_async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


# ---------------------------------------------------------------------------
# Sync Engine — For Celery Workers and Scripts (Lazy Initialization)
# ---------------------------------------------------------------------------

_sync_engine = None
_sync_session_factory = None


def get_sync_engine():
    """Lazily create and cache the sync SQLAlchemy engine."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_engine(
            settings.database_url_sync,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )
    return _sync_engine


def _get_sync_session_factory():
    """Lazily create and cache the sync session factory."""
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(
            bind=get_sync_engine(),
            class_=Session,
            expire_on_commit=False,
        )
    return _sync_session_factory


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """
    Context manager that provides a sync database session.

    Usage in Celery tasks and scripts:
        with get_sync_session() as session:
            result = process_queue(session, limit=10)
            # Auto-commits on exit, auto-rollbacks on exception
    """
    factory = _get_sync_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create all tables that do not exist yet (sync engine)."""
    from app.db.models import Base

    Base.metadata.create_all(bind=get_sync_engine())


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    The session is automatically closed when the request completes.
    If an exception occurs, the transaction is rolled back.
    """
    async with _get_async_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
