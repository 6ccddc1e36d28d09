"""Wiring for the job coordinator and its collaborators."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from media_import.api.dependencies.db import get_session
from media_import.core.config import Settings, get_settings
from media_import.services.coordinator import JobCoordinator
from media_import.services.job_locks import JobLockManager, build_job_locks
from media_import.services.progress_tracker import ProgressTracker, get_progress_tracker
from media_import.storage.object_store import ObjectStore, get_object_store


@lru_cache
def get_job_locks() -> JobLockManager:
    """One lock manager per process so local locks are shared between requests."""
    return build_job_locks(get_settings())


def get_progress() -> ProgressTracker:
    return get_progress_tracker()


def get_coordinator(
    db: Session = Depends(get_session),
    store: ObjectStore = Depends(get_object_store),
    locks: JobLockManager = Depends(get_job_locks),
    progress: ProgressTracker = Depends(get_progress),
    settings: Settings = Depends(get_settings),
) -> JobCoordinator:
    return JobCoordinator(db, store, locks, progress, settings=settings)
