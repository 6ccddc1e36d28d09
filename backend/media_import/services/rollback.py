"""Rollback executor: delete every object and record belonging to a job."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from media_import.core.config import Settings
from media_import.db.models import ImportErrorRecord, ImportJob, JobState, StagedAsset
from media_import.services.access import Caller
from media_import.services.catalog import CatalogLinker
from media_import.services.job_counts import recompute_job_counts
from media_import.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    job_id: str
    deleted_assets: int
    deleted_files: int
    deleted_errors: int

    def as_dict(self) -> dict[str, int | str]:
        return {
            "job_id": self.job_id,
            "deleted_assets": self.deleted_assets,
            "deleted_files": self.deleted_files,
            "deleted_errors": self.deleted_errors,
        }


def asset_object_paths(asset: StagedAsset) -> list[str]:
    paths = [asset.storage_path]
    if asset.thumbnail_path:
        paths.append(asset.thumbnail_path)
    paths.extend(path for path in (asset.optimized_paths or {}).values() if path)
    return paths


class RollbackExecutor:
    def __init__(self, session: Session, store: ObjectStore, linker: CatalogLinker, settings: Settings):
        self.session = session
        self.store = store
        self.linker = linker
        self.settings = settings

    def _delete_objects(self, job: ImportJob, assets: list[StagedAsset]) -> int:
        paths = [path for asset in assets for path in asset_object_paths(asset)]
        deleted = 0
        for bucket in (self.settings.staging_bucket, self.settings.public_bucket):
            deleted += self.store.delete(bucket, paths)
            # Files whose record insert never happened still live under the job prefix
            deleted += self.store.delete_prefix(bucket, job.id)
        return deleted

    def rollback(self, job: ImportJob, caller: Caller) -> RollbackResult:
        """Objects go first: a storage failure leaves the records intact for a retry."""
        assets = list(
            self.session.scalars(select(StagedAsset).where(StagedAsset.job_id == job.id)).all()
        )
        asset_ids = [asset.id for asset in assets]

        deleted_files = self._delete_objects(job, assets)

        self.linker.detach_assets(asset_ids)
        deleted_errors = self.session.execute(
            delete(ImportErrorRecord).where(ImportErrorRecord.job_id == job.id)
        ).rowcount or 0
        deleted_assets = self.session.execute(
            delete(StagedAsset).where(StagedAsset.job_id == job.id)
        ).rowcount or 0
        self.session.expire(job, ["assets", "errors"])

        now = datetime.now(timezone.utc)
        job.status = JobState.ROLLED_BACK
        job.rolled_back_at = now
        job.rolled_back_by = caller.user_id
        recompute_job_counts(self.session, job)

        logger.info(
            f"Rolled back job {job.id}: {deleted_assets} asset(s), {deleted_files} file(s), "
            f"{deleted_errors} error record(s)"
        )
        return RollbackResult(
            job_id=job.id,
            deleted_assets=deleted_assets,
            deleted_files=deleted_files,
            deleted_errors=deleted_errors,
        )
