"""Commit executor: promote staged assets into the public catalog.

Every asset is published independently and committed on its own, so one bad
file leaves a recoverable ImportErrorRecord behind without blocking the rest
of the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from media_import.core.config import Settings
from media_import.core.errors import CommitError, ConfigError, NotFoundError, StorageError
from media_import.db.models import (
    ImportErrorRecord,
    ImportJob,
    PublishState,
    StagedAsset,
    ValidationState,
)
from media_import.services.catalog import CatalogLinker, asset_entity_ref
from media_import.services.progress_tracker import ProgressTracker
from media_import.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    job_id: str
    published_count: int = 0
    attempted: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)
    status: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "published_count": self.published_count,
            "attempted": self.attempted,
            "failures": self.failures,
        }


class CommitExecutor:
    def __init__(
        self,
        session: Session,
        store: ObjectStore,
        linker: CatalogLinker,
        settings: Settings,
        progress: ProgressTracker,
    ):
        self.session = session
        self.store = store
        self.linker = linker
        self.settings = settings
        self.progress = progress

    def select_assets(
        self,
        job: ImportJob,
        publish_all: bool,
        asset_ids: list[str] | None = None,
    ) -> list[StagedAsset]:
        """Explicit ids win regardless of status; otherwise every non-error asset.

        With ``publish_all`` off, only assets whose publish flag is set qualify.
        """
        query = select(StagedAsset).where(StagedAsset.job_id == job.id).order_by(StagedAsset.sequence)
        if asset_ids:
            wanted = list(dict.fromkeys(asset_ids))
            assets = self.session.scalars(query.where(StagedAsset.id.in_(wanted))).all()
            missing = sorted(set(wanted) - {asset.id for asset in assets})
            if missing:
                raise NotFoundError(
                    f"Asset(s) not found in job {job.id}: {', '.join(missing)}",
                    details={"asset_ids": missing},
                )
            return list(assets)

        query = query.where(StagedAsset.validation_status != ValidationState.ERROR)
        if not publish_all:
            query = query.where(StagedAsset.publish_requested.is_(True))
        return list(self.session.scalars(query).all())

    def _promote(self, asset: StagedAsset) -> None:
        staging = self.settings.staging_bucket
        public = self.settings.public_bucket
        asset.public_path = self.store.promote(asset.storage_path, staging, public)
        if asset.thumbnail_path:
            self.store.promote(asset.thumbnail_path, staging, public)
        for path in (asset.optimized_paths or {}).values():
            if path:
                self.store.promote(path, staging, public)

    def publish_one(self, asset: StagedAsset) -> None:
        ref = asset_entity_ref(asset)
        if ref is not None and self.linker.resolve(ref) is None:
            raise CommitError(f"{ref.kind} '{ref.reference}' does not exist in the catalog")
        self._promote(asset)
        if ref is not None:
            self.linker.attach(ref, asset)
        asset.publish_status = PublishState.PUBLISHED
        asset.is_published = True
        asset.published_at = datetime.now(timezone.utc)

    def _record_failure(self, job: ImportJob, asset_id: str, filename: str, exc: Exception) -> dict[str, Any]:
        code = getattr(exc, "code", "commit_error")
        message = getattr(exc, "message", None) or str(exc)
        self.session.add(
            ImportErrorRecord(
                job_id=job.id,
                asset_id=asset_id,
                filename=filename,
                error_type="commit",
                error_code=code,
                error_message=message,
                error_details=getattr(exc, "details", None) or {},
                is_recoverable=True,
            )
        )
        self.session.commit()
        return {"asset_id": asset_id, "filename": filename, "code": code, "message": message}

    def commit(self, job: ImportJob, assets: list[StagedAsset]) -> CommitResult:
        result = CommitResult(job_id=job.id, attempted=len(assets))
        targets = [(asset.id, asset.original_filename) for asset in assets]

        for position, (asset_id, filename) in enumerate(targets, start=1):
            asset = self.session.get(StagedAsset, asset_id)
            try:
                self.publish_one(asset)
                self.session.commit()
                result.published_count += 1
            except (StorageError, CommitError, ConfigError) as exc:
                self.session.rollback()
                logger.warning(f"Commit of asset {asset_id} ({filename}) in job {job.id} failed: {exc}")
                result.failures.append(self._record_failure(job, asset_id, filename, exc))
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.error(f"Database error publishing asset {asset_id}: {exc}", exc_info=True)
                result.failures.append(
                    self._record_failure(job, asset_id, filename, CommitError(f"Database error: {exc}"))
                )

            self.progress.publish(
                job.id,
                position / len(targets),
                message=f"Published {result.published_count}/{len(targets)} assets",
                status="committing",
                meta={"published": result.published_count, "failed": len(result.failures)},
            )

        logger.info(
            f"Commit of job {job.id}: {result.published_count}/{len(targets)} published, "
            f"{len(result.failures)} failure(s)"
        )
        return result
