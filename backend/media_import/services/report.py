"""Downloadable CSV summary of a job's diagnostics and processing errors."""

from __future__ import annotations

import csv
import io

from media_import.services.coordinator import JobSnapshot

REPORT_HEADERS = ["filename", "title", "section", "status", "issues"]


def build_report_rows(snapshot: JobSnapshot) -> list[dict[str, str]]:
    """Assets with at least one diagnostic first, then processing errors."""
    rows: list[dict[str, str]] = []
    for asset in snapshot.assets:
        diagnostics = asset.validation_errors or []
        if not diagnostics:
            continue
        rows.append(
            {
                "filename": asset.original_filename,
                "title": asset.title or "",
                "section": "validation",
                "status": asset.validation_status,
                "issues": "; ".join(item.get("message", "") for item in diagnostics),
            }
        )
    for error in snapshot.errors:
        rows.append(
            {
                "filename": error.filename or "",
                "title": "",
                "section": error.error_type,
                "status": "recoverable" if error.is_recoverable else "rejected",
                "issues": error.error_message,
            }
        )
    return rows


def render_report_csv(snapshot: JobSnapshot) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=REPORT_HEADERS)
    writer.writeheader()
    writer.writerows(build_report_rows(snapshot))
    return buffer.getvalue()
