"""One uploaded file within an import job, from staging through publish."""

import uuid

from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from media_import.db.base import Base, JSONType

UNLINKED = "unlinked"


class ValidationState:
    PENDING = "pending"
    VALID = "valid"
    WARNING = "warning"
    ERROR = "error"


class PublishState:
    STAGED = "staged"
    PUBLISHED = "published"


class StagedAsset(Base):
    __tablename__ = "staged_assets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(
        String(36),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False, default=0)

    # Storage
    filename = Column(String(255), nullable=False)
    original_filename = Column(String(255), nullable=False)
    storage_path = Column(Text, nullable=False)
    public_path = Column(Text)
    thumbnail_path = Column(Text)
    optimized_paths = Column(JSONType, nullable=False, default=dict)

    # Declared at upload time, checked against the stored object on validate
    size_bytes = Column(Integer, nullable=False, default=0)
    mime_type = Column(String(64), nullable=False)
    width = Column(Integer)
    height = Column(Integer)
    exif = Column(JSONType)

    # Descriptive metadata
    title = Column(Text)
    caption = Column(Text)
    credit = Column(Text)
    alt_text = Column(Text)
    tags = Column(JSONType, nullable=False, default=list)
    latitude = Column(Float)
    longitude = Column(Float)

    # Catalog linkage
    entity_type = Column(String(32), nullable=False, default=UNLINKED)
    entity_id = Column(String(128))

    fingerprint = Column(String(64), nullable=False, index=True)
    phash = Column(String(32))

    validation_status = Column(String(16), nullable=False, default=ValidationState.PENDING)
    validation_errors = Column(JSONType, nullable=False, default=list)

    publish_requested = Column(Boolean, nullable=False, default=True)
    publish_status = Column(String(16), nullable=False, default=PublishState.STAGED)
    is_published = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime(timezone=True))

    created_by = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    job = relationship("ImportJob", back_populates="assets")
