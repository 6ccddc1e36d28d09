"""Shared fixtures: SQLite catalog store, temp object store, local locks, API client."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

# Settings are cached on first use, so the environment must be in place before
# anything from media_import is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("JOB_LOCK_BACKEND", "local")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("STORAGE_ROOT", tempfile.mkdtemp(prefix="media-import-tests-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from helpers import InMemoryRedis

from media_import.core.config import Settings, get_settings
from media_import.db.base import Base
from media_import.db.models import CatalogEntity
from media_import.services.access import ADMIN, CONTENT_MANAGER, SUPER_ADMIN, Caller
from media_import.services.coordinator import JobCoordinator
from media_import.services.ingestion import IncomingFile
from media_import.services.job_locks import LocalJobLocks
from media_import.services.progress_tracker import ProgressTracker
from media_import.storage.object_store import LocalObjectStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return get_settings().model_copy(
        update={
            "storage_root": str(tmp_path / "objects"),
            "job_lock_backend": "local",
            "ingest_workers": 3,
        }
    )


@pytest.fixture
def store(settings: Settings) -> LocalObjectStore:
    return LocalObjectStore(settings.storage_root)


@pytest.fixture
def redis_stub() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def progress(redis_stub: InMemoryRedis) -> ProgressTracker:
    return ProgressTracker(redis_stub)


@pytest.fixture
def locks() -> LocalJobLocks:
    return LocalJobLocks()


@pytest.fixture
def coordinator(db_session, store, locks, progress, settings) -> JobCoordinator:
    return JobCoordinator(db_session, store, locks, progress, settings=settings)


@pytest.fixture
def manager() -> Caller:
    return Caller(user_id="cm-1", email="editor@example.org", roles=frozenset({CONTENT_MANAGER}))


@pytest.fixture
def other_manager() -> Caller:
    return Caller(user_id="cm-2", email="other@example.org", roles=frozenset({CONTENT_MANAGER}))


@pytest.fixture
def admin() -> Caller:
    return Caller(user_id="admin-1", email="admin@example.org", roles=frozenset({ADMIN}))


@pytest.fixture
def super_admin() -> Caller:
    return Caller(user_id="root-1", email="root@example.org", roles=frozenset({SUPER_ADMIN}))


@pytest.fixture
def village(db_session) -> CatalogEntity:
    entity = CatalogEntity(kind="village", slug="hill-village", name="Hill Village")
    db_session.add(entity)
    db_session.commit()
    return entity


@pytest.fixture
def staged_job(coordinator: JobCoordinator, manager: Caller) -> Callable[..., str]:
    """Start a job and upload files into it; returns the job id."""

    def _stage(files: list[IncomingFile], mapping: list[dict[str, Any]] | None = None, **settings: Any) -> str:
        job = coordinator.start(manager, settings or None)
        coordinator.upload(job.id, manager, files, mapping)
        return job.id

    return _stage


@pytest.fixture
def api_client(session_factory, store, locks, progress, settings) -> Generator[TestClient, None, None]:
    from media_import.api.dependencies.db import get_session, get_session_factory
    from media_import.api.dependencies.pipeline import get_job_locks, get_progress
    from media_import.main import create_app
    from media_import.storage.object_store import get_object_store

    def _session() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app = create_app()
    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_job_locks] = lambda: locks
    app.dependency_overrides[get_progress] = lambda: progress
    app.dependency_overrides[get_settings] = lambda: settings

    with TestClient(app) as client:
        yield client
