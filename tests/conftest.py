# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Everything runs against an in-memory SQLite database and fake page
# renderers / OCR providers. No PostgreSQL, Redis, network, or API keys.
#
# StaticPool keeps one connection for the whole engine, so every session
# created in a test sees the same in-memory database.
# =============================================================================

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.db.models import Base


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def session_scope(session_factory):
    """Stand-in for app.db.engine.get_sync_session bound to the test engine."""

    @contextmanager
    def scope():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return scope


@pytest.fixture
def knowledge_dir(tmp_path: Path) -> Path:
    path = tmp_path / "knowledge"
    path.mkdir()
    return path


@pytest.fixture
def config(knowledge_dir: Path) -> Settings:
    return Settings(
        knowledge_dir=str(knowledge_dir),
        ocr_models=["openai_compatible/test/vision-model"],
        ocr_api_key="test-key",
        max_new_pages_per_run=None,
        rag_auto_scan=False,
        rag_auto_process=False,
    )


