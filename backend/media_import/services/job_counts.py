"""Job-level counters derived from the current staged-asset rows."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from media_import.db.models import ImportJob, StagedAsset, ValidationState


def recompute_job_counts(session: Session, job: ImportJob) -> dict[str, int]:
    """Overwrite the job's counts with a fresh tally; never increments in place."""
    session.flush()
    rows = session.execute(
        select(StagedAsset.validation_status, func.count(StagedAsset.id))
        .where(StagedAsset.job_id == job.id)
        .group_by(StagedAsset.validation_status)
    ).all()
    tally = {status: count for status, count in rows}
    job.success_count = tally.get(ValidationState.VALID, 0)
    job.warning_count = tally.get(ValidationState.WARNING, 0)
    job.error_count = tally.get(ValidationState.ERROR, 0)
    return {
        "success_count": job.success_count,
        "warning_count": job.warning_count,
        "error_count": job.error_count,
        "asset_count": sum(tally.values()),
    }
