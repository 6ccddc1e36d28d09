"""Celery tasks that run validate/commit outside the request cycle."""

from __future__ import annotations

import logging
from typing import Any

from media_import.core.config import get_settings
from media_import.core.errors import MediaImportError
from media_import.db.session import get_fresh_session
from media_import.services.access import Caller
from media_import.services.coordinator import JobCoordinator
from media_import.services.job_locks import build_job_locks
from media_import.services.progress_tracker import get_progress_tracker
from media_import.storage.object_store import get_object_store
from media_import.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run(job_id: str, caller_payload: dict[str, Any], operation: str, **kwargs: Any) -> dict[str, Any]:
    settings = get_settings()
    caller = Caller.from_payload(caller_payload)
    session = get_fresh_session()
    progress = get_progress_tracker()
    try:
        coordinator = JobCoordinator(
            session,
            get_object_store(),
            build_job_locks(settings),
            progress,
            settings=settings,
        )
        if operation == "validate":
            return coordinator.validate(job_id, caller).as_dict()
        return coordinator.commit(job_id, caller, **kwargs).as_dict()
    except MediaImportError as exc:
        # Rejected operations leave the job untouched; surface the reason to pollers
        logger.warning(f"Background {operation} of job {job_id} rejected: {exc.message}")
        progress.publish(job_id, 0.0, exc.message, meta={"error": exc.code, "operation": operation})
        return {"job_id": job_id, "error": exc.code, "message": exc.message}
    finally:
        session.close()


@celery_app.task(name="media_import.workers.tasks.validate_job")
def validate_job_task(job_id: str, caller_payload: dict[str, Any]) -> dict[str, Any]:
    """Run a validation pass for a job."""
    return _run(job_id, caller_payload, "validate")


@celery_app.task(name="media_import.workers.tasks.commit_job")
def commit_job_task(
    job_id: str,
    caller_payload: dict[str, Any],
    publish_all: bool = True,
    asset_ids: list[str] | None = None,
) -> dict[str, Any]:
    """Publish a validated job's eligible assets."""
    return _run(job_id, caller_payload, "commit", publish_all=publish_all, asset_ids=asset_ids)
