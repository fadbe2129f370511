# render-backend/tests/test_job_store.py

import os
import uuid
from datetime import timedelta

import pytest

from errors import JobAlreadyExistsError, JobNotFoundError, JobStoreUnavailableError
from conftest import BrokenBackend
from database import SessionLocal
from job_store import DatabaseJobBackend, JobStore, SnapshotJobBackend, is_valid_job_id, snapshot_path


class ReadOnlySnapshot(SnapshotJobBackend):
    """Snapshot directory that stops accepting writes after creation."""

    def save(self, record):
        raise OSError("No space left on device")


def test_create_starts_pending_at_zero(store, job_id):
    record = store.create(job_id)

    assert record.status == "pending"
    assert record.progress == 0
    assert record.result_ref is None
    assert record.error is None
    assert store.get(job_id) == record


def test_create_twice_is_rejected(store, job_id):
    store.create(job_id)
    with pytest.raises(JobAlreadyExistsError):
        store.create(job_id)


def test_create_rejects_malformed_id(store):
    with pytest.raises(ValueError):
        store.create("../../etc/passwd")


def test_update_merges_fields(store, job_id):
    store.create(job_id)
    store.update(job_id, status="processing", progress=40)
    record = store.update(job_id, skipped_scenes=2)

    assert record.status == "processing"
    assert record.progress == 40
    assert record.skipped_scenes == 2
    assert record.updated_at >= record.created_at


def test_update_unknown_job_raises_not_found(store):
    with pytest.raises(JobNotFoundError):
        store.update(str(uuid.uuid4()), progress=10)


def test_update_rejects_unknown_fields(store, job_id):
    store.create(job_id)
    with pytest.raises(ValueError):
        store.update(job_id, created_at=None)


def test_progress_never_goes_backwards_while_running(store, job_id):
    store.create(job_id)
    store.update(job_id, status="processing", progress=60)
    record = store.update(job_id, progress=30)
    assert record.progress == 60


def test_failed_job_keeps_its_last_progress(store, job_id):
    store.create(job_id)
    store.update(job_id, status="processing", progress=45)
    record = store.update(job_id, status="failed", error="ENCODING_FAILED: boom")

    assert record.status == "failed"
    assert record.progress == 45
    assert record.error == "ENCODING_FAILED: boom"


def test_get_unknown_job_is_not_found(store):
    with pytest.raises(JobNotFoundError):
        store.get(str(uuid.uuid4()))


def test_get_invalid_id_is_not_found(store):
    assert not is_valid_job_id("not-a-job")
    with pytest.raises(JobNotFoundError):
        store.get("not-a-job")


def test_reads_prefer_the_snapshot(store, job_id, work_root):
    store.create(job_id)
    store.update(job_id, status="processing", progress=20)

    # Only the snapshot sees the newer state
    current = store.get(job_id)
    newer = current.model_copy(update={"progress": 70, "updated_at": current.updated_at + timedelta(seconds=1)})
    store.snapshot.save(newer)

    assert store.get(job_id).progress == 70
    assert store.primary.load(job_id).progress == 20


def test_reads_fall_back_to_the_database(store, job_id, work_root):
    store.create(job_id)
    store.update(job_id, status="processing", progress=30)
    os.remove(snapshot_path(job_id, work_root))

    record = store.get(job_id)
    assert record.status == "processing"
    assert record.progress == 30


def test_unreadable_snapshot_is_ignored(store, job_id, work_root):
    store.create(job_id)
    with open(snapshot_path(job_id, work_root), "w") as f:
        f.write("{truncated")

    assert store.get(job_id).status == "pending"


def test_database_outage_is_tolerated_on_write(work_root, job_id):
    store = JobStore(BrokenBackend(), SnapshotJobBackend(work_root))

    store.create(job_id)
    store.update(job_id, status="processing", progress=50)

    assert store.get(job_id).progress == 50


def test_database_outage_without_snapshot_is_unavailable(work_root):
    store = JobStore(BrokenBackend(), SnapshotJobBackend(work_root))
    with pytest.raises(JobStoreUnavailableError):
        store.get(str(uuid.uuid4()))


def test_no_backend_accepting_create_is_unavailable(tmp_path, job_id):
    blocked = tmp_path / "blocked"
    blocked.write_text("a file, not a directory")
    store = JobStore(BrokenBackend(), SnapshotJobBackend(str(blocked)))

    with pytest.raises(JobStoreUnavailableError):
        store.create(job_id)


def test_failed_snapshot_write_drops_stale_snapshot(store, work_root, job_id):
    store.create(job_id)
    assert os.path.exists(snapshot_path(job_id, work_root))

    store.snapshot = ReadOnlySnapshot(work_root)
    store.update(job_id, status="processing", progress=40)

    assert not os.path.exists(snapshot_path(job_id, work_root))
    record = store.get(job_id)
    assert record.status == "processing"
    assert record.progress == 40


def test_newer_database_row_beats_an_older_snapshot(tmp_path, job_id):
    # API and worker share the database but each keeps its own snapshot directory
    api_store = JobStore(DatabaseJobBackend(SessionLocal), SnapshotJobBackend(str(tmp_path / "api")))
    worker_store = JobStore(DatabaseJobBackend(SessionLocal), SnapshotJobBackend(str(tmp_path / "worker")))

    api_store.create(job_id)
    worker_store.update(job_id, status="processing", progress=50)
    assert api_store.get(job_id).progress == 50

    worker_store.update(job_id, status="completed", progress=100, result_ref="/videos/out.mp4")
    record = api_store.get(job_id)

    assert record.status == "completed"
    assert record.progress == 100
    assert record.result_ref == "/videos/out.mp4"


def test_snapshot_is_served_while_the_database_is_down(store, job_id):
    store.create(job_id)
    store.update(job_id, status="processing", progress=35)

    store.primary = BrokenBackend()
    record = store.get(job_id)

    assert record.status == "processing"
    assert record.progress == 35
