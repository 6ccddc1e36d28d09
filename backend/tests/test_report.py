from __future__ import annotations

import csv
import io

from helpers import image_file
from media_import.services.ingestion import IncomingFile
from media_import.services.report import REPORT_HEADERS, build_report_rows, render_report_csv


def test_report_lists_diagnostics_and_errors(coordinator, staged_job, manager) -> None:
    job_id = staged_job(
        [
            image_file("clean.jpg", (1, 1, 1)),
            image_file("far.jpg", (2, 2, 2)),
            IncomingFile("empty.png", "image/png", b""),
        ],
        [
            {"filename": "clean.jpg", "entity_type": "village", "entity_slug_or_id": "hill-village"},
            {"filename": "far.jpg", "title": "Far away", "latitude": "-91"},
        ],
    )
    coordinator.validate(job_id, manager)

    rows = build_report_rows(coordinator.status(job_id))

    assert [row["filename"] for row in rows] == ["far.jpg", "empty.png"]
    far, empty = rows
    assert far["title"] == "Far away"
    assert far["status"] == "error"
    assert far["issues"] == "No entity linked; Latitude -91.0 is outside [-90, 90]"
    assert (empty["title"], empty["section"], empty["status"]) == ("", "policy", "rejected")
    assert empty["issues"]


def test_render_csv_of_empty_job(coordinator, manager) -> None:
    job = coordinator.start(manager)

    rendered = render_report_csv(coordinator.status(job.id))

    reader = csv.reader(io.StringIO(rendered))
    assert list(reader) == [REPORT_HEADERS]
