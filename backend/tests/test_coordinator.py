"""Job lifecycle, serialization and metadata editing rules."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select, update

from helpers import image_file
from media_import.core.errors import ConfigError, ConflictError, NotFoundError, PermissionDeniedError
from media_import.db.models import ImportJob, JobState, StagedAsset
from media_import.services.access import Caller
from media_import.services.validation import ValidationEngine


class TestStart:
    def test_creates_queued_job(self, coordinator, manager, progress) -> None:
        job = coordinator.start(manager, {"default_publish": False, "notes": "spring shoot"})

        assert job.status == JobState.QUEUED
        assert job.created_by == manager.user_id
        assert job.settings == {"default_publish": False, "notes": "spring shoot"}
        assert progress.fetch(job.id)["status"] == JobState.QUEUED

    def test_bad_settings_create_nothing(self, coordinator, manager, db_session) -> None:
        with pytest.raises(ConfigError):
            coordinator.start(manager, {"default_publish": "perhaps"})
        with pytest.raises(ConfigError):
            coordinator.start(manager, csv_mapping=[{"filename": "a.jpg", "entity_type": "castle", "entity_id": "1"}])

        assert db_session.scalar(select(func.count(ImportJob.id))) == 0

    def test_requires_pipeline_role(self, coordinator) -> None:
        with pytest.raises(PermissionDeniedError):
            coordinator.start(Caller(user_id="visitor", roles=frozenset({"viewer"})))


class TestStateMachine:
    def test_status_of_unknown_job(self, coordinator) -> None:
        with pytest.raises(NotFoundError):
            coordinator.status("missing")

    def test_upload_after_validation_reopens_job(self, coordinator, staged_job, manager) -> None:
        job_id = staged_job([image_file("a.jpg", (1, 1, 1))])
        coordinator.validate(job_id, manager)
        assert coordinator.status(job_id).job.status == JobState.READY

        coordinator.upload(job_id, manager, [image_file("b.jpg", (2, 2, 2))])

        assert coordinator.status(job_id).job.status == JobState.UPLOADING

    def test_no_mutation_after_commit(self, coordinator, staged_job, manager, admin) -> None:
        job_id = staged_job([image_file("a.jpg")])
        coordinator.validate(job_id, manager)
        coordinator.commit(job_id, admin)
        asset = coordinator.status(job_id).assets[0]

        with pytest.raises(ConflictError):
            coordinator.validate(job_id, manager)
        with pytest.raises(ConflictError):
            coordinator.upload(job_id, manager, [image_file("late.jpg", (9, 9, 9))])
        with pytest.raises(ConflictError):
            coordinator.update_asset(asset.id, admin, {"title": "Too late"})
        assert coordinator.status(job_id).job.status == JobState.COMMITTED

    def test_validate_empty_job(self, coordinator, manager) -> None:
        job = coordinator.start(manager)

        report = coordinator.validate(job.id, manager)

        assert (report.success_count, report.warning_count, report.error_count) == (0, 0, 0)
        assert coordinator.status(job.id).job.status == JobState.READY

    def test_failed_validation_restores_state(self, coordinator, staged_job, manager, monkeypatch) -> None:
        job_id = staged_job([image_file("a.jpg")])

        def explode(self, job, duplicate_policy="warning"):
            raise RuntimeError("rule crashed")

        monkeypatch.setattr(ValidationEngine, "validate", explode)
        with pytest.raises(RuntimeError):
            coordinator.validate(job_id, manager)

        assert coordinator.status(job_id).job.status == JobState.UPLOADING

    def test_stale_state_is_a_conflict(self, coordinator, staged_job, manager, db_session) -> None:
        job_id = staged_job([image_file("a.jpg")])
        db_session.execute(update(ImportJob).where(ImportJob.id == job_id).values(status=JobState.COMMITTING))
        db_session.commit()

        with pytest.raises(ConflictError, match="committing"):
            coordinator.validate(job_id, manager)


class TestSerialization:
    def test_mutation_while_another_is_in_flight(self, coordinator, staged_job, manager, locks) -> None:
        job_id = staged_job([image_file("a.jpg")])

        with locks.hold(job_id, "commit"):
            with pytest.raises(ConflictError, match="in flight"):
                coordinator.validate(job_id, manager)
            with pytest.raises(ConflictError):
                coordinator.upload(job_id, manager, [image_file("b.jpg", (2, 2, 2))])
            # Reads never block
            assert coordinator.status(job_id).job.status == JobState.UPLOADING

        coordinator.validate(job_id, manager)
        assert coordinator.status(job_id).job.status == JobState.READY

    def test_other_jobs_are_independent(self, coordinator, staged_job, manager, locks) -> None:
        first = staged_job([image_file("a.jpg", (1, 1, 1))])
        second = staged_job([image_file("b.jpg", (2, 2, 2))])

        with locks.hold(first, "commit"):
            coordinator.validate(second, manager)

        assert coordinator.status(second).job.status == JobState.READY


class TestAssetEditing:
    def test_owner_can_edit(self, coordinator, staged_job, manager) -> None:
        job_id = staged_job([image_file("a.jpg")])
        asset = coordinator.status(job_id).assets[0]

        updated = coordinator.update_asset(
            asset.id,
            manager,
            {"title": "Harbour", "tags": "boats;sea", "entity_type": "Village", "entity_id": "Old-Port"},
        )

        assert updated.title == "Harbour"
        assert updated.tags == ["boats", "sea"]
        assert (updated.entity_type, updated.entity_id) == ("village", "old-port")

    def test_unlink(self, coordinator, staged_job, manager) -> None:
        job_id = staged_job([image_file("a.jpg")], [{"filename": "a.jpg", "entity_type": "provider", "entity_id": "7"}])
        asset = coordinator.status(job_id).assets[0]
        assert (asset.entity_type, asset.entity_id) == ("provider", "7")

        updated = coordinator.update_asset(asset.id, manager, {"entity_type": "unlinked"})

        assert (updated.entity_type, updated.entity_id) == ("unlinked", None)

    def test_invalid_linkage_rejected(self, coordinator, staged_job, manager) -> None:
        job_id = staged_job([image_file("a.jpg")])
        asset = coordinator.status(job_id).assets[0]

        with pytest.raises(ConfigError):
            coordinator.update_asset(asset.id, manager, {"entity_type": "event", "entity_id": "spring-fair"})

    def test_other_manager_cannot_edit(self, coordinator, staged_job, other_manager, admin) -> None:
        job_id = staged_job([image_file("a.jpg")])
        asset = coordinator.status(job_id).assets[0]

        with pytest.raises(PermissionDeniedError):
            coordinator.update_asset(asset.id, other_manager, {"title": "Mine now"})

        assert coordinator.update_asset(asset.id, admin, {"title": "Admin edit"}).title == "Admin edit"

    def test_published_assets_are_admin_only(self, coordinator, staged_job, manager, db_session) -> None:
        job_id = staged_job([image_file("a.jpg")])
        asset = coordinator.status(job_id).assets[0]
        db_session.execute(update(StagedAsset).where(StagedAsset.id == asset.id).values(is_published=True))
        db_session.commit()

        with pytest.raises(PermissionDeniedError):
            coordinator.update_asset(asset.id, manager, {"title": "Edit"})

    def test_unknown_asset(self, coordinator, manager) -> None:
        with pytest.raises(NotFoundError):
            coordinator.update_asset("missing", manager, {"title": "x"})

    def test_bulk_update_skips_foreign_assets(self, coordinator, staged_job, manager) -> None:
        job_id = staged_job([image_file("a.jpg", (1, 1, 1)), image_file("b.jpg", (2, 2, 2))])
        other_job = staged_job([image_file("c.jpg", (3, 3, 3))])
        first, second = coordinator.status(job_id).assets
        foreign = coordinator.status(other_job).assets[0]

        updated = coordinator.bulk_update(
            job_id,
            manager,
            [
                {"id": first.id, "credit": "Tourism Board"},
                {"id": second.id, "publish_requested": False},
                {"id": foreign.id, "title": "Hijacked"},
            ],
        )

        assert updated == 2
        first, second = coordinator.status(job_id).assets
        assert first.credit == "Tourism Board"
        assert second.publish_requested is False
        assert coordinator.status(other_job).assets[0].title == "c"

    def test_bulk_update_entry_without_id(self, coordinator, staged_job, manager) -> None:
        job_id = staged_job([image_file("a.jpg")])

        with pytest.raises(ConfigError, match="asset id"):
            coordinator.bulk_update(job_id, manager, [{"title": "No target"}])

    def test_bulk_update_validates_every_patch_first(self, coordinator, staged_job, manager) -> None:
        job_id = staged_job([image_file("a.jpg")])
        asset = coordinator.status(job_id).assets[0]

        with pytest.raises(ConfigError):
            coordinator.bulk_update(job_id, manager, [{"id": asset.id, "title": "ok"}, {"id": asset.id, "size_bytes": 1}])

        assert coordinator.status(job_id).assets[0].title == "a"


class TestListJobs:
    def test_filter_by_status(self, coordinator, staged_job, manager) -> None:
        uploading = staged_job([image_file("a.jpg")])
        queued = coordinator.start(manager).id

        assert {job.id for job in coordinator.list_jobs()} == {uploading, queued}
        assert [job.id for job in coordinator.list_jobs(status=JobState.QUEUED)] == [queued]
        assert len(coordinator.list_jobs(limit=1)) == 1
