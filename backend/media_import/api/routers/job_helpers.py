"""Shared helpers for shaping job responses."""
from __future__ import annotations

from media_import.api.schemas.job import AssetRead, ImportErrorRead, JobDetail, JobStatus
from media_import.db.models import ImportJob
from media_import.services.coordinator import JobSnapshot


def serialize_job(job: ImportJob, progress_payload: dict | None) -> JobStatus:
    """Combine DB state + cached progress snapshot into a response schema."""
    progress_payload = progress_payload or {}

    calculated_progress = progress_payload.get("progress")
    if calculated_progress is None and job.total_files:
        calculated_progress = job.processed_files / job.total_files

    message = progress_payload.get("message")
    if not message:
        total_display = job.total_files if job.total_files else "?"
        message = f"Processed {job.processed_files}/{total_display} files"

    return JobStatus(
        id=job.id,
        status=job.status,
        progress=calculated_progress,
        message=message,
        total_files=job.total_files or 0,
        processed_files=job.processed_files or 0,
        success_count=job.success_count or 0,
        warning_count=job.warning_count or 0,
        error_count=job.error_count or 0,
        settings=job.settings,
        created_by=job.created_by,
        created_at=job.created_at,
        started_at=job.started_at or job.created_at,
        completed_at=job.completed_at,
        committed_at=job.committed_at,
        committed_by=job.committed_by,
        meta=progress_payload.get("meta") or {},
    )


def serialize_snapshot(snapshot: JobSnapshot, progress_payload: dict | None) -> JobDetail:
    return JobDetail(
        job=serialize_job(snapshot.job, progress_payload),
        assets=[AssetRead.model_validate(asset) for asset in snapshot.assets],
        errors=[ImportErrorRead.model_validate(error) for error in snapshot.errors],
    )
