"""Database models package."""
from media_import.db.models.catalog import CatalogEntity, EntityMediaLink
from media_import.db.models.import_audit import ImportAuditEntry
from media_import.db.models.import_error import ImportErrorRecord
from media_import.db.models.import_job import ImportJob, JobState
from media_import.db.models.staged_asset import (
    UNLINKED,
    PublishState,
    StagedAsset,
    ValidationState,
)

__all__ = [
    "CatalogEntity",
    "EntityMediaLink",
    "ImportAuditEntry",
    "ImportErrorRecord",
    "ImportJob",
    "JobState",
    "PublishState",
    "StagedAsset",
    "UNLINKED",
    "ValidationState",
]
