"""Append-only audit entries for pipeline operations."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from media_import.db.models import ImportAuditEntry
from media_import.services.access import Caller


def record_audit(
    session: Session,
    job_id: str,
    action: str,
    caller: Caller,
    details: dict[str, Any] | None = None,
) -> ImportAuditEntry:
    entry = ImportAuditEntry(
        job_id=job_id,
        action=action,
        actor_id=caller.user_id,
        actor_email=caller.email,
        details=details or {},
        ip_address=caller.ip_address,
        user_agent=caller.user_agent,
    )
    session.add(entry)
    return entry
