"""Audit trail of who did what to an import job."""

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from media_import.db.base import Base, JSONType


class ImportAuditEntry(Base):
    __tablename__ = "import_audit"

    id = Column(Integer, primary_key=True)
    # Job rows outlive rollback, so audit entries keep their reference
    job_id = Column(String(36), ForeignKey("import_jobs.id"), nullable=False, index=True)
    action = Column(String(32), nullable=False)
    actor_id = Column(String(64), nullable=False)
    actor_email = Column(String(255))
    details = Column(JSONType)
    ip_address = Column(String(64))
    user_agent = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
