"""Commit: eligibility, promotion, entity linkage and per-asset failures."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from helpers import image_file
from media_import.core.errors import ConflictError, NotFoundError, PermissionDeniedError, StorageError
from media_import.db.models import EntityMediaLink, ImportAuditEntry, JobState
from media_import.services.catalog import SqlCatalogLinker
from media_import.services.coordinator import JobCoordinator
from media_import.storage.object_store import LocalObjectStore


class PromoteFailingStore(LocalObjectStore):
    def __init__(self, root):
        super().__init__(root)
        self.fail_keys: set[str] = set()

    def promote(self, key: str, source_bucket: str, target_bucket: str) -> str:
        if key in self.fail_keys:
            raise StorageError(f"Simulated promote failure for {key}", details={"key": key})
        return super().promote(key, source_bucket, target_bucket)


class CrashingLinker(SqlCatalogLinker):
    """Attaches the first asset, then fails with an unexpected error."""

    def __init__(self, session):
        super().__init__(session)
        self.attached = 0

    def attach(self, ref, asset) -> None:
        if self.attached:
            raise RuntimeError("catalog connection dropped")
        super().attach(ref, asset)
        self.attached += 1


def linked(*filenames: str, slug: str = "hill-village", **extra) -> list[dict]:
    return [
        {"filename": name, "entity_type": "village", "entity_slug_or_id": slug, **extra}
        for name in filenames
    ]


@pytest.fixture
def ready_job(staged_job, coordinator, manager):
    def _ready(files, mapping=None, **settings) -> str:
        job_id = staged_job(files, mapping, **settings)
        coordinator.validate(job_id, manager)
        return job_id

    return _ready


def by_name(coordinator: JobCoordinator, job_id: str) -> dict:
    return {a.original_filename: a for a in coordinator.status(job_id).assets}


def test_commit_promotes_and_links(coordinator, ready_job, village, store, settings, admin, db_session) -> None:
    job_id = ready_job([image_file("a.jpg", (1, 1, 1)), image_file("b.jpg", (2, 2, 2))], linked("a.jpg"))

    result = coordinator.commit(job_id, admin, publish_all=True)
    snapshot = coordinator.status(job_id)

    assert result.published_count == 2
    assert result.failures == []
    assert snapshot.job.status == JobState.COMMITTED
    assert snapshot.job.committed_by == admin.user_id
    assert snapshot.job.committed_at is not None
    assert snapshot.job.completed_at is not None
    for asset in snapshot.assets:
        assert asset.publish_status == "published"
        assert asset.is_published is True
        assert asset.published_at is not None
        assert asset.public_path == asset.storage_path
        assert store.size(settings.public_bucket, asset.public_path) is not None
        assert store.size(settings.staging_bucket, asset.storage_path) is None

    links = db_session.scalars(select(EntityMediaLink)).all()
    assert [(link.entity_id, link.asset_id) for link in links] == [(village.id, by_name(coordinator, job_id)["a.jpg"].id)]


def test_zero_eligible_assets_fails_job(coordinator, ready_job, admin) -> None:
    job_id = ready_job([image_file("far.jpg")], linked("far.jpg", latitude="200"))

    result = coordinator.commit(job_id, admin, publish_all=True)
    job = coordinator.status(job_id).job

    assert result.published_count == 0
    assert job.status == JobState.FAILED
    assert job.committed_at is None
    assert job.committed_by is None
    assert job.completed_at is not None


def test_publish_all_excludes_errors(coordinator, ready_job, village, admin) -> None:
    job_id = ready_job(
        [image_file("far.jpg", (1, 1, 1)), image_file("near.jpg", (2, 2, 2))],
        linked("far.jpg", latitude="200") + linked("near.jpg"),
    )

    result = coordinator.commit(job_id, admin, publish_all=True)
    assets = by_name(coordinator, job_id)

    assert result.published_count == 1
    assert assets["near.jpg"].is_published is True
    assert assets["far.jpg"].is_published is False
    assert assets["far.jpg"].publish_status == "staged"


def test_explicit_ids_override_error_status(coordinator, ready_job, admin) -> None:
    job_id = ready_job(
        [image_file("far.jpg", (1, 1, 1)), image_file("near.jpg", (2, 2, 2))],
        [{"filename": "far.jpg", "latitude": "200"}],
    )
    far = by_name(coordinator, job_id)["far.jpg"]
    assert far.validation_status == "error"

    result = coordinator.commit(job_id, admin, publish_all=True, asset_ids=[far.id])
    assets = by_name(coordinator, job_id)

    assert result.published_count == 1
    assert assets["far.jpg"].is_published is True
    assert assets["near.jpg"].is_published is False


def test_publish_flag_respected_without_publish_all(coordinator, ready_job, admin) -> None:
    job_id = ready_job(
        [image_file("keep.jpg", (1, 1, 1)), image_file("hold.jpg", (2, 2, 2))],
        [{"filename": "hold.jpg", "publish": "false"}],
    )

    result = coordinator.commit(job_id, admin, publish_all=False)
    assets = by_name(coordinator, job_id)

    assert result.published_count == 1
    assert assets["keep.jpg"].is_published is True
    assert assets["hold.jpg"].is_published is False


def test_missing_entity_is_recoverable_failure(coordinator, ready_job, village, admin) -> None:
    job_id = ready_job(
        [image_file("lost.jpg", (1, 1, 1)), image_file("home.jpg", (2, 2, 2))],
        linked("lost.jpg", slug="ghost-town") + linked("home.jpg"),
    )

    result = coordinator.commit(job_id, admin, publish_all=True)
    snapshot = coordinator.status(job_id)
    assets = {a.original_filename: a for a in snapshot.assets}

    assert result.published_count == 1
    assert snapshot.job.status == JobState.COMMITTED
    assert assets["lost.jpg"].is_published is False
    assert [(e.filename, e.error_type, e.error_code, e.is_recoverable) for e in snapshot.errors] == [
        ("lost.jpg", "commit", "commit_error", True)
    ]
    assert result.failures[0]["asset_id"] == assets["lost.jpg"].id


def test_storage_failure_during_promotion(db_session, locks, progress, settings, manager, admin) -> None:
    store = PromoteFailingStore(settings.storage_root)
    coordinator = JobCoordinator(db_session, store, locks, progress, settings=settings)
    job = coordinator.start(manager)
    coordinator.upload(job.id, manager, [image_file("a.jpg", (1, 1, 1)), image_file("b.jpg", (2, 2, 2))])
    coordinator.validate(job.id, manager)
    broken = by_name(coordinator, job.id)["a.jpg"]
    store.fail_keys.add(broken.storage_path)

    result = coordinator.commit(job.id, admin)
    snapshot = coordinator.status(job.id)

    assert result.published_count == 1
    assert snapshot.errors[0].error_code == "storage_error"
    assert snapshot.errors[0].asset_id == broken.id
    assert snapshot.job.status == JobState.COMMITTED


def test_commit_requires_ready(coordinator, staged_job, admin) -> None:
    job_id = staged_job([image_file("a.jpg")])

    with pytest.raises(ConflictError, match="uploading"):
        coordinator.commit(job_id, admin)

    assert coordinator.status(job_id).job.status == JobState.UPLOADING


def test_second_commit_conflicts(coordinator, ready_job, admin) -> None:
    job_id = ready_job([image_file("a.jpg")])
    coordinator.commit(job_id, admin)

    with pytest.raises(ConflictError):
        coordinator.commit(job_id, admin)


def test_content_manager_cannot_commit(coordinator, ready_job, manager) -> None:
    job_id = ready_job([image_file("a.jpg")])

    with pytest.raises(PermissionDeniedError):
        coordinator.commit(job_id, manager)

    assert coordinator.status(job_id).job.status == JobState.READY


def test_unknown_asset_ids_rejected(coordinator, ready_job, admin) -> None:
    job_id = ready_job([image_file("a.jpg")])

    with pytest.raises(NotFoundError, match="not-an-asset"):
        coordinator.commit(job_id, admin, asset_ids=["not-an-asset"])

    assert coordinator.status(job_id).job.status == JobState.READY


def test_commit_is_audited(coordinator, ready_job, admin, db_session) -> None:
    job_id = ready_job([image_file("far.jpg")], [{"filename": "far.jpg", "latitude": "200"}])

    coordinator.commit(job_id, admin)

    actions = db_session.scalars(
        select(ImportAuditEntry.action).where(ImportAuditEntry.job_id == job_id).order_by(ImportAuditEntry.id)
    ).all()
    assert actions == ["started", "uploaded", "validated", "commit_failed"]


def test_unexpected_failure_keeps_published_assets_committed(
    db_session, store, locks, progress, settings, manager, admin, village
) -> None:
    coordinator = JobCoordinator(db_session, store, locks, progress, settings=settings, linker=CrashingLinker(db_session))
    job = coordinator.start(manager)
    coordinator.upload(job.id, manager, [image_file("a.jpg", (1, 1, 1)), image_file("b.jpg", (2, 2, 2))], linked("a.jpg", "b.jpg"))
    coordinator.validate(job.id, manager)

    with pytest.raises(RuntimeError):
        coordinator.commit(job.id, admin)

    snapshot = coordinator.status(job.id)
    assert [a.original_filename for a in snapshot.assets if a.is_published] == ["a.jpg"]
    assert snapshot.job.status == JobState.COMMITTED
    assert snapshot.job.committed_by == admin.user_id
    assert snapshot.job.committed_at is not None
