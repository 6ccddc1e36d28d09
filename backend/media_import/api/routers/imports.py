"""Media import pipeline endpoints: start, upload, review, validate, commit, rollback."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator

from fastapi import (
    APIRouter,
    Body,
    Depends,
    File,
    Form,
    Query,
    UploadFile,
    status,
)
from fastapi.responses import Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from media_import.api.dependencies.auth import get_caller
from media_import.api.dependencies.db import get_session_factory
from media_import.api.dependencies.pipeline import get_coordinator, get_progress
from media_import.api.routers.job_helpers import serialize_job, serialize_snapshot
from media_import.api.schemas.job import (
    AssetRead,
    BulkUpdateRequest,
    BulkUpdateResponse,
    CommitRequest,
    ImportErrorRead,
    JobDetail,
    JobStatus,
    StartImportRequest,
    TaskAccepted,
    UploadResponse,
)
from media_import.core.errors import ConfigError, MediaImportError
from media_import.db.models import JobState
from media_import.services.access import COMMIT_ROLES, Caller, require_roles
from media_import.services.coordinator import JobCoordinator
from media_import.services.ingestion import IncomingFile
from media_import.services.progress_tracker import ProgressTracker
from media_import.services.report import render_report_csv
from media_import.workers.tasks.pipeline import commit_job_task, validate_job_task

logger = logging.getLogger(__name__)

router = APIRouter()

RESTING_STATES = {JobState.READY, JobState.COMMITTED, JobState.FAILED, JobState.ROLLED_BACK}


def _parse_mapping(raw: str | None) -> list[dict[str, Any]] | None:
    if raw is None or not raw.strip():
        return None
    try:
        rows = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Mapping must be a JSON list of rows: {exc.msg}") from exc
    if not isinstance(rows, list):
        raise ConfigError("Mapping must be a JSON list of rows")
    return rows


@router.get(
    "/",
    summary="List recent import jobs",
    response_model=list[JobStatus],
)
def list_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    status_filter: str | None = Query(None, alias="status", description="Filter by job status"),
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
    progress: ProgressTracker = Depends(get_progress),
) -> list[JobStatus]:
    """Jobs are returned newest first, each with its latest progress snapshot."""
    jobs = coordinator.list_jobs(limit=limit, status=status_filter)
    return [serialize_job(job, progress.fetch(job.id)) for job in jobs]


@router.post(
    "/",
    summary="Start an import job",
    status_code=status.HTTP_201_CREATED,
    response_model=JobStatus,
)
def start_import(
    payload: StartImportRequest | None = Body(None),
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> JobStatus:
    payload = payload or StartImportRequest()
    job = coordinator.start(caller, payload.settings, payload.csv_mapping)
    return serialize_job(job, {"progress": 0.0, "message": "Queued"})


@router.post(
    "/{job_id}/upload",
    summary="Upload a batch of image files into a job",
    response_model=UploadResponse,
)
async def upload_files(
    job_id: str,
    files: list[UploadFile] = File(...),
    mapping: str | None = Form(None, description="JSON list of mapping rows"),
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> UploadResponse:
    """Stage files; rejected and failed files come back as error records, not HTTP errors."""
    mapping_rows = _parse_mapping(mapping)
    incoming = []
    for upload in files:
        data = await upload.read()
        incoming.append(
            IncomingFile(
                filename=upload.filename or "upload",
                content_type=upload.content_type or "application/octet-stream",
                data=data,
            )
        )

    result = await run_in_threadpool(coordinator.upload, job_id, caller, incoming, mapping_rows)
    return UploadResponse(
        job_id=job_id,
        assets=[AssetRead.model_validate(asset) for asset in result.assets],
        rejected=[ImportErrorRead.model_validate(error) for error in result.rejected],
        failed=[ImportErrorRead.model_validate(error) for error in result.failed],
    )


@router.get(
    "/{job_id}",
    summary="Job state with its assets and processing errors",
    response_model=JobDetail,
)
def get_import(
    job_id: str,
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
    progress: ProgressTracker = Depends(get_progress),
) -> JobDetail:
    snapshot = coordinator.status(job_id)
    return serialize_snapshot(snapshot, progress.fetch(job_id))


@router.patch(
    "/assets/{asset_id}",
    summary="Edit a staged asset's metadata",
    response_model=AssetRead,
)
def update_asset(
    asset_id: str,
    patch: dict[str, Any] = Body(...),
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> AssetRead:
    asset = coordinator.update_asset(asset_id, caller, patch)
    return AssetRead.model_validate(asset)


@router.post(
    "/{job_id}/bulk-update",
    summary="Apply metadata patches to several assets",
    response_model=BulkUpdateResponse,
)
def bulk_update(
    job_id: str,
    payload: BulkUpdateRequest,
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> BulkUpdateResponse:
    updated = coordinator.bulk_update(job_id, caller, payload.updates)
    return BulkUpdateResponse(job_id=job_id, updated_count=updated)


@router.post(
    "/{job_id}/validate",
    summary="Run the validation rules over every staged asset",
)
def validate_import(
    job_id: str,
    background: bool = Query(False, description="Queue the run on the Celery imports queue"),
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    if background:
        coordinator.status(job_id)
        task = validate_job_task.apply_async(args=(job_id, caller.to_payload()), queue="imports")
        logger.info(f"Queued validation of job {job_id} as task {task.id}")
        return TaskAccepted(job_id=job_id, task_id=task.id, operation="validate").model_dump()
    return coordinator.validate(job_id, caller).as_dict()


@router.post(
    "/{job_id}/commit",
    summary="Publish eligible assets into the catalog",
)
def commit_import(
    job_id: str,
    payload: CommitRequest | None = Body(None),
    background: bool = Query(False, description="Queue the run on the Celery imports queue"),
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    payload = payload or CommitRequest()
    if background:
        require_roles(caller, COMMIT_ROLES, "commit an import")
        coordinator.status(job_id)
        task = commit_job_task.apply_async(
            args=(job_id, caller.to_payload(), payload.publish_all, payload.asset_ids),
            queue="imports",
        )
        logger.info(f"Queued commit of job {job_id} as task {task.id}")
        return TaskAccepted(job_id=job_id, task_id=task.id, operation="commit").model_dump()
    return coordinator.commit(job_id, caller, payload.publish_all, payload.asset_ids).as_dict()


@router.post(
    "/{job_id}/rollback",
    summary="Delete every object and record of a job",
)
def rollback_import(
    job_id: str,
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    return coordinator.rollback(job_id, caller).as_dict()


@router.get(
    "/{job_id}/report",
    summary="Download the job's diagnostics as CSV",
)
def download_report(
    job_id: str,
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> Response:
    snapshot = coordinator.status(job_id)
    return Response(
        content=render_report_csv(snapshot),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="import-{job_id}-report.csv"'},
    )


@router.get(
    "/{job_id}/stream",
    summary="Server-Sent Events stream for real-time progress",
)
async def stream_job_progress(
    job_id: str,
    caller: Caller = Depends(get_caller),
    coordinator: JobCoordinator = Depends(get_coordinator),
    progress: ProgressTracker = Depends(get_progress),
    session_factory=Depends(get_session_factory),
) -> StreamingResponse:
    """Stream job snapshots as SSE 'data:' events until the job comes to rest.

    Example client usage:
    ```javascript
    const eventSource = new EventSource('/api/imports/{job_id}/stream');
    eventSource.onmessage = (e) => console.log(JSON.parse(e.data).progress);
    ```
    """
    # Verify job exists before starting stream
    await run_in_threadpool(coordinator.status, job_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        last_progress = -1.0
        consecutive_no_change = 0

        # The dependency session closes when the endpoint returns, so poll with our own
        session = session_factory()
        try:
            while True:
                session.expire_all()
                poller = JobCoordinator(session, coordinator.store, coordinator.locks, progress, coordinator.settings)
                try:
                    job = (await run_in_threadpool(poller.status, job_id)).job
                except MediaImportError:
                    yield 'event: error\ndata: {"error": "Job not found"}\n\n'
                    break

                job_status = serialize_job(job, progress.fetch(job_id))
                current_progress = job_status.progress or 0.0
                if abs(current_progress - last_progress) > 0.001:
                    last_progress = current_progress
                    consecutive_no_change = 0
                else:
                    consecutive_no_change += 1

                yield f"data: {job_status.model_dump_json()}\n\n"

                if job_status.status in RESTING_STATES:
                    yield "event: close\ndata: {}\n\n"
                    break

                # 5 minutes at 5s intervals
                if consecutive_no_change > 60:
                    yield "event: timeout\ndata: {}\n\n"
                    break

                await asyncio.sleep(5)
        finally:
            session.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
