"""Rule-based validation of every staged asset in a job.

A pass recomputes each asset's status and diagnostics from scratch and then
re-derives the job counts, so running it twice without edits in between gives
identical results.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from media_import.core.errors import StorageError
from media_import.db.models import UNLINKED, ImportJob, StagedAsset, ValidationState
from media_import.services.image_probe import canonical_mime, detect_mime
from media_import.services.job_counts import recompute_job_counts
from media_import.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class ValidationDiagnostic:
    rule: str
    severity: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"rule": self.rule, "severity": self.severity, "message": self.message}


@dataclass
class RuleContext:
    store: ObjectStore
    staging_bucket: str
    duplicate_severity: str
    by_fingerprint: dict[str, list[StagedAsset]]


@dataclass
class AssetValidation:
    asset_id: str
    filename: str
    status: str
    diagnostics: list[ValidationDiagnostic] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [d.message for d in self.diagnostics if d.severity == ERROR]

    @property
    def warnings(self) -> list[str]:
        return [d.message for d in self.diagnostics if d.severity == WARNING]


@dataclass
class ValidationReport:
    job_id: str
    success_count: int
    warning_count: int
    error_count: int
    results: list[AssetValidation]

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "success_count": self.success_count,
            "warning_count": self.warning_count,
            "error_count": self.error_count,
            "results": [
                {
                    "asset_id": item.asset_id,
                    "filename": item.filename,
                    "status": item.status,
                    "diagnostics": [d.as_dict() for d in item.diagnostics],
                }
                for item in self.results
            ],
        }


def check_title(asset: StagedAsset, ctx: RuleContext) -> list[ValidationDiagnostic]:
    if asset.title and asset.title.strip():
        return []
    return [ValidationDiagnostic("missing_title", WARNING, "Missing title")]


def check_linkage(asset: StagedAsset, ctx: RuleContext) -> list[ValidationDiagnostic]:
    if asset.entity_type and asset.entity_type != UNLINKED:
        return []
    return [ValidationDiagnostic("unlinked_entity", WARNING, "No entity linked")]


def check_duplicates(asset: StagedAsset, ctx: RuleContext) -> list[ValidationDiagnostic]:
    others = [other for other in ctx.by_fingerprint.get(asset.fingerprint, []) if other.id != asset.id]
    if not others:
        return []
    names = ", ".join(other.original_filename for other in others)
    return [ValidationDiagnostic("duplicate_fingerprint", ctx.duplicate_severity, f"Possible duplicate: {names}")]


def check_coordinates(asset: StagedAsset, ctx: RuleContext) -> list[ValidationDiagnostic]:
    found = []
    if asset.latitude is not None and not -90.0 <= asset.latitude <= 90.0:
        found.append(
            ValidationDiagnostic("invalid_latitude", ERROR, f"Latitude {asset.latitude} is outside [-90, 90]")
        )
    if asset.longitude is not None and not -180.0 <= asset.longitude <= 180.0:
        found.append(
            ValidationDiagnostic("invalid_longitude", ERROR, f"Longitude {asset.longitude} is outside [-180, 180]")
        )
    return found


def check_stored_object(asset: StagedAsset, ctx: RuleContext) -> list[ValidationDiagnostic]:
    try:
        stored_size = ctx.store.size(ctx.staging_bucket, asset.storage_path)
        if stored_size is None:
            return [ValidationDiagnostic("storage_mismatch", ERROR, "Stored object is missing")]
        found = []
        if stored_size != asset.size_bytes:
            found.append(
                ValidationDiagnostic(
                    "storage_mismatch",
                    ERROR,
                    f"Stored size {stored_size} bytes does not match declared {asset.size_bytes} bytes",
                )
            )
        with ctx.store.open(ctx.staging_bucket, asset.storage_path) as stream:
            detected = detect_mime(stream)
    except StorageError as exc:
        return [ValidationDiagnostic("storage_mismatch", ERROR, f"Stored object could not be read: {exc.message}")]

    declared = canonical_mime(asset.mime_type)
    if detected is None:
        found.append(ValidationDiagnostic("storage_mismatch", ERROR, "Stored object is not a readable image"))
    elif detected != declared:
        found.append(
            ValidationDiagnostic(
                "storage_mismatch",
                ERROR,
                f"Stored content is {detected} but was declared as {asset.mime_type}",
            )
        )
    return found


Rule = Callable[[StagedAsset, RuleContext], list[ValidationDiagnostic]]

RULES: tuple[Rule, ...] = (
    check_title,
    check_linkage,
    check_duplicates,
    check_coordinates,
    check_stored_object,
)


def classify(diagnostics: list[ValidationDiagnostic]) -> str:
    if any(d.severity == ERROR for d in diagnostics):
        return ValidationState.ERROR
    if diagnostics:
        return ValidationState.WARNING
    return ValidationState.VALID


class ValidationEngine:
    def __init__(self, session: Session, store: ObjectStore, staging_bucket: str):
        self.session = session
        self.store = store
        self.staging_bucket = staging_bucket

    def validate(self, job: ImportJob, duplicate_policy: str = WARNING) -> ValidationReport:
        assets = self.session.scalars(
            select(StagedAsset).where(StagedAsset.job_id == job.id).order_by(StagedAsset.sequence)
        ).all()

        by_fingerprint: dict[str, list[StagedAsset]] = defaultdict(list)
        for asset in assets:
            by_fingerprint[asset.fingerprint].append(asset)

        ctx = RuleContext(
            store=self.store,
            staging_bucket=self.staging_bucket,
            duplicate_severity=ERROR if duplicate_policy == ERROR else WARNING,
            by_fingerprint=by_fingerprint,
        )

        results: list[AssetValidation] = []
        for asset in assets:
            diagnostics: list[ValidationDiagnostic] = []
            for rule in RULES:
                diagnostics.extend(rule(asset, ctx))
            status = classify(diagnostics)
            asset.validation_status = status
            asset.validation_errors = [d.as_dict() for d in diagnostics]
            results.append(
                AssetValidation(
                    asset_id=asset.id,
                    filename=asset.original_filename,
                    status=status,
                    diagnostics=diagnostics,
                )
            )

        counts = recompute_job_counts(self.session, job)
        logger.info(
            f"Validated job {job.id}: {counts['success_count']} valid, "
            f"{counts['warning_count']} warning(s), {counts['error_count']} error(s)"
        )
        return ValidationReport(
            job_id=job.id,
            success_count=counts["success_count"],
            warning_count=counts["warning_count"],
            error_count=counts["error_count"],
            results=results,
        )
