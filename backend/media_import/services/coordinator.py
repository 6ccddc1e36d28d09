"""Job coordinator: the single entry point for every import-job operation.

It owns the lifecycle state machine::

    queued -> uploading -> validating -> ready -> committing -> committed | failed
    ready | committed | failed -> rolled_back

Mutating operations run under the per-job lock and move the job with a
conditional UPDATE, so a call from an incompatible state (or racing another
process) fails with ConflictError and leaves the job untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from media_import.core.config import Settings, get_settings
from media_import.core.errors import ConfigError, ConflictError, NotFoundError, PermissionDeniedError
from media_import.db.models import (
    UNLINKED,
    ImportErrorRecord,
    ImportJob,
    JobState,
    StagedAsset,
)
from media_import.services.access import (
    COMMIT_ROLES,
    PIPELINE_ROLES,
    ROLLBACK_ROLES,
    Caller,
    require_roles,
)
from media_import.services.audit import record_audit
from media_import.services.catalog import CatalogLinker, SqlCatalogLinker, parse_entity_ref
from media_import.services.commit import CommitExecutor, CommitResult
from media_import.services.ingestion import IncomingFile, IngestionWorker, UploadResult
from media_import.services.job_counts import recompute_job_counts
from media_import.services.job_locks import JobLockManager
from media_import.services.progress_tracker import ProgressTracker
from media_import.services.rollback import RollbackExecutor, RollbackResult
from media_import.services.validation import ValidationEngine, ValidationReport
from media_import.storage.object_store import ObjectStore
from media_import.utils.validators import build_mapping_index, validate_patch, validate_settings

logger = logging.getLogger(__name__)

UPLOAD_FROM = (JobState.QUEUED, JobState.UPLOADING, JobState.READY)
EDIT_FROM = (JobState.UPLOADING, JobState.READY)
VALIDATE_FROM = (JobState.QUEUED, JobState.UPLOADING, JobState.READY)
COMMIT_FROM = (JobState.READY,)
ROLLBACK_FROM = (JobState.READY, JobState.COMMITTED, JobState.FAILED)


@dataclass
class JobSnapshot:
    job: ImportJob
    assets: list[StagedAsset]
    errors: list[ImportErrorRecord]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobCoordinator:
    def __init__(
        self,
        session: Session,
        store: ObjectStore,
        locks: JobLockManager,
        progress: ProgressTracker,
        settings: Settings | None = None,
        linker: CatalogLinker | None = None,
    ):
        self.session = session
        self.store = store
        self.locks = locks
        self.progress = progress
        self.settings = settings or get_settings()
        self.linker = linker or SqlCatalogLinker(session)

    # -- lookups -------------------------------------------------------

    def _get_job(self, job_id: str) -> ImportJob:
        job = self.session.get(ImportJob, job_id, populate_existing=True)
        if job is None or job.status == JobState.ROLLED_BACK:
            raise NotFoundError(f"Import job {job_id} not found", details={"job_id": job_id})
        return job

    def _get_asset(self, asset_id: str) -> StagedAsset:
        asset = self.session.get(StagedAsset, asset_id)
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} not found", details={"asset_id": asset_id})
        return asset

    def _transition(self, job_id: str, allowed: tuple[str, ...], target: str, operation: str) -> ImportJob:
        """Compare-and-set the job status; commits so readers see the new state."""
        job = self._get_job(job_id)
        if job.status not in allowed:
            raise ConflictError(
                f"Cannot {operation} job {job_id} while it is {job.status}",
                details={"job_id": job_id, "status": job.status, "allowed": list(allowed)},
            )
        result = self.session.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == job.status)
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            raise ConflictError(f"Job {job_id} changed state during {operation}", details={"job_id": job_id})
        self.session.commit()
        return self._get_job(job_id)

    def _restore(self, job_id: str, from_state: str, to_state: str) -> None:
        self.session.rollback()
        self.session.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == from_state)
            .values(status=to_state)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()

    def _published_count(self, job_id: str) -> int:
        """Assets of the job already marked published in the database."""
        return self.session.scalar(
            select(func.count(StagedAsset.id)).where(
                StagedAsset.job_id == job_id, StagedAsset.is_published.is_(True)
            )
        ) or 0

    def _job_options(self, job: ImportJob):
        return validate_settings(job.settings or {})

    # -- operations ------------------------------------------------------

    def start(
        self,
        caller: Caller,
        settings: dict[str, Any] | None = None,
        csv_mapping: list[dict[str, Any]] | None = None,
    ) -> ImportJob:
        require_roles(caller, PIPELINE_ROLES, "start an import")
        options = validate_settings(settings)
        mapping = build_mapping_index(csv_mapping)

        job = ImportJob(
            status=JobState.QUEUED,
            created_by=caller.user_id,
            settings=options.model_dump(exclude_none=True),
            csv_mapping=[row.model_dump() for row in mapping.values()] or None,
        )
        self.session.add(job)
        self.session.flush()
        record_audit(self.session, job.id, "started", caller, {"settings": job.settings, "mapping_rows": len(mapping)})
        self.session.commit()

        self.progress.publish(job.id, 0.0, "Queued", status=JobState.QUEUED)
        logger.info(f"Started import job {job.id} for {caller.user_id}")
        return job

    def status(self, job_id: str) -> JobSnapshot:
        job = self._get_job(job_id)
        assets = self.session.scalars(
            select(StagedAsset).where(StagedAsset.job_id == job_id).order_by(StagedAsset.sequence)
        ).all()
        errors = self.session.scalars(
            select(ImportErrorRecord).where(ImportErrorRecord.job_id == job_id).order_by(ImportErrorRecord.id)
        ).all()
        return JobSnapshot(job=job, assets=list(assets), errors=list(errors))

    def list_jobs(self, limit: int = 50, status: str | None = None) -> list[ImportJob]:
        query = select(ImportJob)
        if status:
            query = query.where(ImportJob.status == status)
        query = query.order_by(ImportJob.created_at.desc()).limit(limit)
        return list(self.session.scalars(query).all())

    def upload(
        self,
        job_id: str,
        caller: Caller,
        files: list[IncomingFile],
        mapping_rows: list[dict[str, Any]] | None = None,
    ) -> UploadResult:
        require_roles(caller, PIPELINE_ROLES, "upload files")
        upload_mapping = build_mapping_index(mapping_rows)

        with self.locks.hold(job_id, "upload"):
            job = self._get_job(job_id)
            previous = job.status
            job = self._transition(job_id, UPLOAD_FROM, JobState.UPLOADING, "upload to")
            try:
                if job.started_at is None:
                    job.started_at = _now()
                mapping = build_mapping_index(job.csv_mapping)
                mapping.update(upload_mapping)
                result = IngestionWorker(self.session, self.store, self.settings, self.progress).ingest(
                    job,
                    files,
                    mapping,
                    caller,
                    default_publish=self._job_options(job).default_publish,
                )
                record_audit(
                    self.session,
                    job.id,
                    "uploaded",
                    caller,
                    {
                        "files": len(files),
                        "staged": len(result.assets),
                        "rejected": len(result.rejected),
                        "failed": len(result.failed),
                    },
                )
                self.session.commit()
            except Exception:
                logger.error(f"Upload to job {job_id} aborted", exc_info=True)
                self._restore(job_id, JobState.UPLOADING, previous)
                raise
        return result

    def _check_edit_rights(self, caller: Caller, asset: StagedAsset) -> None:
        if caller.is_admin:
            return
        if asset.is_published or asset.created_by != caller.user_id:
            raise PermissionDeniedError(
                "Content managers can only edit unpublished assets they uploaded",
                details={"asset_id": asset.id},
            )

    def _apply_patch(self, asset: StagedAsset, patch: dict[str, Any]) -> None:
        if "entity_type" in patch or "entity_id" in patch:
            entity_type = patch.get("entity_type", asset.entity_type)
            entity_id = patch.get("entity_id", asset.entity_id)
            ref = parse_entity_ref(entity_type, entity_id)
            patch = {
                **patch,
                "entity_type": ref.kind if ref else UNLINKED,
                "entity_id": ref.reference if ref else None,
            }
        for name, value in patch.items():
            setattr(asset, name, value)

    def update_asset(self, asset_id: str, caller: Caller, patch: dict[str, Any]) -> StagedAsset:
        require_roles(caller, PIPELINE_ROLES, "edit assets")
        fields = validate_patch(patch)
        asset = self._get_asset(asset_id)
        job_id = asset.job_id

        with self.locks.hold(job_id, "update assets of"):
            job = self._get_job(job_id)
            if job.status not in EDIT_FROM:
                raise ConflictError(f"Cannot edit assets of job {job_id} while it is {job.status}")
            self._check_edit_rights(caller, asset)
            self._apply_patch(asset, fields)
            record_audit(
                self.session, job_id, "metadata_updated", caller, {"asset_id": asset_id, "fields": sorted(fields)}
            )
            self.session.commit()
        return asset

    def bulk_update(self, job_id: str, caller: Caller, updates: list[dict[str, Any]]) -> int:
        """Apply (asset id, patch) pairs; ids outside the job are skipped."""
        require_roles(caller, PIPELINE_ROLES, "edit assets")
        patches: list[tuple[str, dict[str, Any]]] = []
        for item in updates:
            if not isinstance(item, dict) or not item.get("id"):
                raise ConfigError("Every bulk update entry needs an asset id")
            fields = {key: value for key, value in item.items() if key != "id"}
            patches.append((str(item["id"]), validate_patch(fields)))

        with self.locks.hold(job_id, "update assets of"):
            job = self._get_job(job_id)
            if job.status not in EDIT_FROM:
                raise ConflictError(f"Cannot edit assets of job {job_id} while it is {job.status}")
            ids = [asset_id for asset_id, _ in patches]
            assets = {
                asset.id: asset
                for asset in self.session.scalars(
                    select(StagedAsset).where(StagedAsset.job_id == job_id, StagedAsset.id.in_(ids))
                ).all()
            }
            for asset in assets.values():
                self._check_edit_rights(caller, asset)

            updated = 0
            for asset_id, fields in patches:
                asset = assets.get(asset_id)
                if asset is None:
                    continue
                self._apply_patch(asset, fields)
                updated += 1
            record_audit(self.session, job_id, "metadata_updated", caller, {"updated_count": updated})
            self.session.commit()
        return updated

    def validate(self, job_id: str, caller: Caller) -> ValidationReport:
        require_roles(caller, PIPELINE_ROLES, "validate an import")
        with self.locks.hold(job_id, "validate"):
            previous = self._get_job(job_id).status
            job = self._transition(job_id, VALIDATE_FROM, JobState.VALIDATING, "validate")
            try:
                policy = self._job_options(job).duplicate_policy or self.settings.duplicate_policy
                report = ValidationEngine(self.session, self.store, self.settings.staging_bucket).validate(
                    job, duplicate_policy=policy
                )
                job.status = JobState.READY
                record_audit(
                    self.session,
                    job_id,
                    "validated",
                    caller,
                    {
                        "success_count": report.success_count,
                        "warning_count": report.warning_count,
                        "error_count": report.error_count,
                    },
                )
                self.session.commit()
            except Exception:
                logger.error(f"Validation of job {job_id} aborted", exc_info=True)
                self._restore(job_id, JobState.VALIDATING, previous)
                raise

        self.progress.publish(
            job_id,
            1.0,
            f"Validation complete: {report.warning_count} warnings, {report.error_count} errors",
            status=JobState.READY,
            meta={
                "success": report.success_count,
                "warnings": report.warning_count,
                "errors": report.error_count,
            },
        )
        return report

    def commit(
        self,
        job_id: str,
        caller: Caller,
        publish_all: bool = True,
        asset_ids: list[str] | None = None,
    ) -> CommitResult:
        require_roles(caller, COMMIT_ROLES, "commit an import")
        with self.locks.hold(job_id, "commit"):
            job = self._get_job(job_id)
            if job.status not in COMMIT_FROM:
                raise ConflictError(
                    f"Cannot commit job {job_id} while it is {job.status}",
                    details={"job_id": job_id, "status": job.status},
                )
            executor = CommitExecutor(self.session, self.store, self.linker, self.settings, self.progress)
            assets = executor.select_assets(job, publish_all, asset_ids)
            job = self._transition(job_id, COMMIT_FROM, JobState.COMMITTING, "commit")

            result = CommitResult(job_id=job_id, attempted=len(assets))
            try:
                result = executor.commit(job, assets)
            except Exception:
                logger.error(f"Commit of job {job_id} aborted", exc_info=True)
                self.session.rollback()
                raise
            finally:
                job = self._get_job(job_id)
                published = self._published_count(job_id)
                recompute_job_counts(self.session, job)
                job.completed_at = _now()
                if published > 0:
                    job.status = JobState.COMMITTED
                    job.committed_at = job.completed_at
                    job.committed_by = caller.user_id
                else:
                    job.status = JobState.FAILED
                record_audit(
                    self.session,
                    job_id,
                    "committed" if published > 0 else "commit_failed",
                    caller,
                    {"published_count": published, "selected": len(assets), "explicit": bool(asset_ids)},
                )
                self.session.commit()

        result.status = job.status
        self.progress.publish(
            job_id,
            1.0,
            f"Import committed: {result.published_count} assets published",
            status=job.status,
            meta={"published": result.published_count, "failed": len(result.failures)},
        )
        return result

    def rollback(self, job_id: str, caller: Caller) -> RollbackResult:
        require_roles(caller, ROLLBACK_ROLES, "roll back an import")
        with self.locks.hold(job_id, "roll back"):
            job = self._get_job(job_id)
            if job.status not in ROLLBACK_FROM:
                raise ConflictError(
                    f"Cannot roll back job {job_id} while it is {job.status}",
                    details={"job_id": job_id, "status": job.status},
                )
            prior = job.status
            try:
                result = RollbackExecutor(self.session, self.store, self.linker, self.settings).rollback(job, caller)
                record_audit(
                    self.session,
                    job_id,
                    "rolled_back",
                    caller,
                    {
                        "previous_status": prior,
                        "deleted_assets": result.deleted_assets,
                        "deleted_files": result.deleted_files,
                    },
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                logger.error(f"Rollback of job {job_id} aborted", exc_info=True)
                raise

        self.progress.clear(job_id)
        return result
