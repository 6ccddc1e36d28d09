"""Ingestion worker: policy checks, hashing, staging writes and asset records.

Hashing, probing and object writes run on a small thread pool. Only the calling
thread touches the SQLAlchemy session, so job counters and error rows have a
single writer.
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import PurePath

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from media_import.core.config import Settings
from media_import.core.errors import StorageError
from media_import.db.models import UNLINKED, ImportErrorRecord, ImportJob, StagedAsset
from media_import.services.access import Caller
from media_import.services.image_probe import ImageProbe, canonical_mime, compute_fingerprint, probe_image
from media_import.services.progress_tracker import ProgressTracker
from media_import.storage.object_store import ObjectStore
from media_import.utils.validators import MappingRow

logger = logging.getLogger(__name__)


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def basename(self) -> str:
        return PurePath(self.filename.replace("\\", "/")).name

    @property
    def mime_type(self) -> str:
        return self.content_type.split(";", 1)[0].strip().lower()


@dataclass
class StagedFile:
    """Outcome of the threaded part of ingesting one file."""

    index: int
    upload: IncomingFile
    fingerprint: str | None = None
    probe: ImageProbe | None = None
    storage_key: str | None = None
    error: StorageError | None = None


@dataclass
class UploadResult:
    assets: list[StagedAsset] = field(default_factory=list)
    rejected: list[ImportErrorRecord] = field(default_factory=list)
    failed: list[ImportErrorRecord] = field(default_factory=list)


def derive_title(filename: str) -> str:
    """IMG_sunrise-01.jpg -> 'IMG sunrise 01'."""
    stem = PurePath(filename).stem
    title = stem.replace("-", " ").replace("_", " ").strip()
    return title or filename


def _extension(upload: IncomingFile) -> str:
    suffix = PurePath(upload.basename).suffix.lower()
    if suffix:
        return suffix
    return mimetypes.guess_extension(upload.mime_type) or ".bin"


class IngestionWorker:
    def __init__(
        self,
        session: Session,
        store: ObjectStore,
        settings: Settings,
        progress: ProgressTracker,
    ):
        self.session = session
        self.store = store
        self.settings = settings
        self.progress = progress

    def _reject(self, job: ImportJob, upload: IncomingFile, code: str, message: str) -> ImportErrorRecord:
        record = ImportErrorRecord(
            job_id=job.id,
            filename=upload.basename,
            error_type="policy",
            error_code=code,
            error_message=message,
            error_details={"content_type": upload.mime_type, "size_bytes": upload.size},
            is_recoverable=False,
        )
        self.session.add(record)
        return record

    def check_policy(
        self, job: ImportJob, files: list[IncomingFile]
    ) -> tuple[list[tuple[int, IncomingFile]], list[ImportErrorRecord]]:
        """Split files into accepted and rejected before any storage I/O."""
        existing = self.session.scalar(
            select(func.count(StagedAsset.id)).where(StagedAsset.job_id == job.id)
        ) or 0
        allowed_types = self.settings.allowed_mime_types
        max_size = self.settings.max_file_size_bytes
        max_files = self.settings.max_files_per_job

        accepted: list[tuple[int, IncomingFile]] = []
        rejected: list[ImportErrorRecord] = []
        for index, upload in enumerate(files):
            if canonical_mime(upload.mime_type) not in allowed_types and upload.mime_type not in allowed_types:
                rejected.append(
                    self._reject(job, upload, "unsupported_type", f"{upload.basename}: Invalid file type ({upload.mime_type})")
                )
            elif upload.size == 0:
                rejected.append(self._reject(job, upload, "empty_file", f"{upload.basename}: File is empty"))
            elif upload.size > max_size:
                rejected.append(
                    self._reject(
                        job,
                        upload,
                        "file_too_large",
                        f"{upload.basename}: File too large (max {self.settings.max_file_size_mb}MB)",
                    )
                )
            elif existing + len(accepted) >= max_files:
                rejected.append(
                    self._reject(job, upload, "file_limit", f"{upload.basename}: Maximum {max_files} files allowed per job")
                )
            else:
                accepted.append((index, upload))
        return accepted, rejected

    def _stage(self, job_id: str, index: int, upload: IncomingFile) -> StagedFile:
        staged = StagedFile(index=index, upload=upload)
        staged.fingerprint = compute_fingerprint(upload.data)
        staged.probe = probe_image(upload.data)
        key = f"{job_id}/{uuid.uuid4()}{_extension(upload)}"
        try:
            self.store.put(self.settings.staging_bucket, key, upload.data)
            staged.storage_key = key
        except StorageError as exc:
            logger.warning(f"Staging write failed for {upload.basename} in job {job_id}: {exc}")
            staged.error = exc
        return staged

    def _build_asset(
        self,
        job: ImportJob,
        staged: StagedFile,
        sequence: int,
        row: MappingRow | None,
        default_publish: bool,
        caller: Caller,
    ) -> StagedAsset:
        upload = staged.upload
        probe = staged.probe or ImageProbe()
        publish = default_publish
        if row is not None and row.publish is not None:
            publish = row.publish
        return StagedAsset(
            id=str(uuid.uuid4()),
            job_id=job.id,
            sequence=sequence,
            filename=PurePath(staged.storage_key).name,
            original_filename=upload.basename,
            storage_path=staged.storage_key,
            optimized_paths={},
            size_bytes=upload.size,
            mime_type=upload.mime_type,
            width=probe.width,
            height=probe.height,
            exif=probe.exif or None,
            title=(row.title if row and row.title else derive_title(upload.basename)),
            caption=row.caption if row else None,
            credit=row.credit if row else None,
            alt_text=row.alt_text if row else None,
            tags=list(row.tags) if row else [],
            latitude=row.latitude if row else None,
            longitude=row.longitude if row else None,
            entity_type=row.entity_type if row else UNLINKED,
            entity_id=row.entity_ref if row else None,
            fingerprint=staged.fingerprint,
            phash=probe.phash,
            validation_errors=[],
            publish_requested=publish,
            created_by=caller.user_id,
        )

    def ingest(
        self,
        job: ImportJob,
        files: list[IncomingFile],
        mapping: dict[str, MappingRow],
        caller: Caller,
        *,
        default_publish: bool = True,
    ) -> UploadResult:
        result = UploadResult()
        total = len(files)
        job.total_files = (job.total_files or 0) + total

        accepted, result.rejected = self.check_policy(job, files)
        processed = len(result.rejected)
        job.processed_files = (job.processed_files or 0) + processed
        if result.rejected:
            logger.info(f"Job {job.id}: rejected {len(result.rejected)} file(s) by upload policy")

        base_sequence = self.session.scalar(
            select(func.max(StagedAsset.sequence)).where(StagedAsset.job_id == job.id)
        )
        base_sequence = 0 if base_sequence is None else base_sequence + 1

        staged_files: list[StagedFile] = []
        if accepted:
            workers = min(self.settings.ingest_workers, len(accepted))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"ingest-{job.id[:8]}") as pool:
                futures = [pool.submit(self._stage, job.id, index, upload) for index, upload in accepted]
                for future in as_completed(futures):
                    staged = future.result()
                    staged_files.append(staged)
                    processed += 1
                    job.processed_files += 1
                    self.progress.publish(
                        job.id,
                        processed / total if total else 1.0,
                        message=f"Processed {processed}/{total} files",
                        status="uploading",
                        meta={"processed": processed, "total": total},
                    )

        for staged in sorted(staged_files, key=lambda item: item.index):
            upload = staged.upload
            if staged.error is not None:
                record = ImportErrorRecord(
                    job_id=job.id,
                    filename=upload.basename,
                    error_type="storage",
                    error_code="storage_write_failed",
                    error_message=staged.error.message,
                    error_details=staged.error.details,
                    is_recoverable=True,
                )
                self.session.add(record)
                result.failed.append(record)
                continue
            asset = self._build_asset(
                job,
                staged,
                base_sequence + staged.index,
                mapping.get(upload.basename.lower()),
                default_publish,
                caller,
            )
            self.session.add(asset)
            result.assets.append(asset)

        self.session.flush()
        logger.info(
            f"Job {job.id}: staged {len(result.assets)}/{total} file(s), "
            f"{len(result.failed)} storage failure(s)"
        )
        return result
