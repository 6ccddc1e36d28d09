"""Import job, staged asset and operation payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(BaseModel):
    id: str
    status: str = Field(..., description="queued|uploading|validating|ready|committing|committed|failed|rolled_back")
    progress: float | None = Field(None, description="0-1 range for UI progress bars")
    message: str | None = None
    total_files: int = 0
    processed_files: int = 0
    success_count: int = 0
    warning_count: int = 0
    error_count: int = 0
    settings: dict[str, Any] | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    committed_at: datetime | None = None
    committed_by: str | None = None
    meta: dict | None = None


class AssetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    sequence: int
    original_filename: str
    storage_path: str
    public_path: str | None = None
    thumbnail_path: str | None = None
    size_bytes: int
    mime_type: str
    width: int | None = None
    height: int | None = None
    title: str | None = None
    caption: str | None = None
    credit: str | None = None
    alt_text: str | None = None
    tags: list[str] = Field(default_factory=list)
    latitude: float | None = None
    longitude: float | None = None
    entity_type: str
    entity_id: str | None = None
    fingerprint: str
    phash: str | None = None
    validation_status: str
    validation_errors: list[dict[str, Any]] = Field(default_factory=list)
    publish_requested: bool = True
    publish_status: str
    is_published: bool = False
    published_at: datetime | None = None
    created_by: str | None = None


class ImportErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset_id: str | None = None
    filename: str | None = None
    error_type: str
    error_code: str | None = None
    error_message: str
    error_details: dict[str, Any] | None = None
    is_recoverable: bool
    created_at: datetime | None = None


class JobDetail(BaseModel):
    job: JobStatus
    assets: list[AssetRead]
    errors: list[ImportErrorRead]


class StartImportRequest(BaseModel):
    settings: dict[str, Any] | None = None
    csv_mapping: list[dict[str, Any]] | None = Field(
        None, description="Metadata rows keyed by filename"
    )


class UploadResponse(BaseModel):
    job_id: str
    assets: list[AssetRead]
    rejected: list[ImportErrorRead]
    failed: list[ImportErrorRead]


class BulkUpdateRequest(BaseModel):
    updates: list[dict[str, Any]] = Field(..., description="Patches, each carrying the asset 'id'")


class BulkUpdateResponse(BaseModel):
    job_id: str
    updated_count: int


class CommitRequest(BaseModel):
    publish_all: bool = True
    asset_ids: list[str] | None = None


class TaskAccepted(BaseModel):
    job_id: str
    task_id: str
    operation: str
