"""Import job rows: one bulk-ingestion batch and its lifecycle state."""

import uuid

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from media_import.db.base import Base, JSONType


class JobState:
    QUEUED = "queued"
    UPLOADING = "uploading"
    VALIDATING = "validating"
    READY = "ready"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status = Column(String(32), nullable=False, default=JobState.QUEUED, index=True)
    total_files = Column(Integer, nullable=False, default=0)
    processed_files = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    warning_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    settings = Column(JSONType, nullable=False, default=dict)
    csv_mapping = Column(JSONType)
    created_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    committed_at = Column(DateTime(timezone=True))
    committed_by = Column(String(64))
    rolled_back_at = Column(DateTime(timezone=True))
    rolled_back_by = Column(String(64))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    assets = relationship(
        "StagedAsset",
        back_populates="job",
        order_by="StagedAsset.sequence",
        passive_deletes=True,
    )
    errors = relationship(
        "ImportErrorRecord",
        back_populates="job",
        order_by="ImportErrorRecord.id",
        passive_deletes=True,
    )
