"""Processing failures recorded against a job (and optionally one asset)."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from media_import.db.base import Base, JSONType


class ImportErrorRecord(Base):
    __tablename__ = "import_errors"

    id = Column(Integer, primary_key=True)
    job_id = Column(
        String(36),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    asset_id = Column(String(36), ForeignKey("staged_assets.id", ondelete="SET NULL"))
    filename = Column(String(255))
    error_type = Column(String(32), nullable=False)
    error_code = Column(String(64))
    error_message = Column(Text, nullable=False)
    error_details = Column(JSONType)
    is_recoverable = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    job = relationship("ImportJob", back_populates="errors")
