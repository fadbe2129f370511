"""
Job store for render jobs.

Two backends hold the same JobRecord:
- DatabaseJobBackend: the shared database, visible to the API and every worker.
- SnapshotJobBackend: a small JSON file per job next to its workspace.

JobStore writes through to both. Reads prefer the snapshot unless the database
holds a newer record, and fall back to the snapshot alone when the database is down.
"""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from config import WORK_ROOT
from database import SessionLocal
from errors import (
    JobAlreadyExistsError,
    JobNotFoundError,
    JobStoreUnavailableError,
)
from models import RenderJob
from schemas import ACTIVE_STATUSES, PENDING, JobRecord

UPDATABLE_FIELDS = {"status", "progress", "result_ref", "error", "skipped_scenes"}

_JOB_ID_RE = re.compile(r"^[0-9a-fA-F-]{32,36}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_job_id(job_id: str) -> bool:
    """Job ids become file names, so anything that is not uuid-shaped is rejected."""
    return bool(job_id) and bool(_JOB_ID_RE.match(job_id))


def workspace_path(job_id: str, root: str = WORK_ROOT) -> str:
    return os.path.join(root, f"render-{job_id}")


def snapshot_path(job_id: str, root: str = WORK_ROOT) -> str:
    return os.path.join(root, f"render-{job_id}.status.json")


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DatabaseJobBackend:
    """Primary backend: the render_jobs table."""

    name = "database"

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    @staticmethod
    def _to_record(row: RenderJob) -> JobRecord:
        return JobRecord(
            job_id=row.id,
            status=row.status,
            progress=row.progress,
            result_ref=row.result_ref,
            error=row.error,
            skipped_scenes=row.skipped_scenes or 0,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def insert(self, record: JobRecord) -> None:
        db = self.session_factory()
        try:
            if db.query(RenderJob).filter(RenderJob.id == record.job_id).first():
                raise JobAlreadyExistsError(record.job_id)
            db.add(RenderJob(
                id=record.job_id,
                status=record.status,
                progress=record.progress,
                result_ref=record.result_ref,
                error=record.error,
                skipped_scenes=record.skipped_scenes,
                created_at=record.created_at,
                updated_at=record.updated_at,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def save(self, record: JobRecord) -> None:
        db = self.session_factory()
        try:
            job = db.query(RenderJob).filter(RenderJob.id == record.job_id).first()
            if job is None:
                raise JobNotFoundError(record.job_id)
            job.status = record.status
            job.progress = record.progress
            job.result_ref = record.result_ref
            job.error = record.error
            job.skipped_scenes = record.skipped_scenes
            job.updated_at = record.updated_at
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def load(self, job_id: str) -> Optional[JobRecord]:
        db = self.session_factory()
        try:
            job = db.query(RenderJob).filter(RenderJob.id == job_id).first()
            return self._to_record(job) if job else None
        finally:
            db.close()


class SnapshotJobBackend:
    """Local backend: <root>/render-<job_id>.status.json, replaced atomically on every write."""

    name = "snapshot"

    def __init__(self, root: str = WORK_ROOT):
        self.root = root

    def _path(self, job_id: str) -> str:
        return snapshot_path(job_id, self.root)

    def _write(self, record: JobRecord) -> None:
        os.makedirs(self.root, exist_ok=True)
        path = self._path(record.job_id)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(record.model_dump_json())
        os.replace(tmp_path, path)

    def insert(self, record: JobRecord) -> None:
        if os.path.exists(self._path(record.job_id)):
            raise JobAlreadyExistsError(record.job_id)
        self._write(record)

    def save(self, record: JobRecord) -> None:
        # Upsert: a snapshot dropped after a failed write is simply recreated
        self._write(record)

    def load(self, job_id: str) -> Optional[JobRecord]:
        path = self._path(job_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return JobRecord.model_validate_json(f.read())
        except (OSError, ValidationError) as e:
            logging.warning(f"Ignoring unreadable snapshot for job {job_id}: {e}")
            return None

    def discard(self, job_id: str) -> None:
        try:
            os.remove(self._path(job_id))
        except FileNotFoundError:
            pass


class JobStore:
    """Read-through / write-through composition of the two backends."""

    def __init__(self, primary: DatabaseJobBackend, snapshot: SnapshotJobBackend):
        self.primary = primary
        self.snapshot = snapshot

    def create(self, job_id: str) -> JobRecord:
        if not is_valid_job_id(job_id):
            raise ValueError(f"Invalid job id: {job_id!r}")
        now = utcnow()
        record = JobRecord(job_id=job_id, status=PENDING, progress=0, created_at=now, updated_at=now)

        written = 0
        for backend in (self.primary, self.snapshot):
            try:
                backend.insert(record)
                written += 1
            except JobAlreadyExistsError:
                raise
            except Exception as e:
                logging.warning(f"⚠️ Could not create job {job_id} in {backend.name} backend: {e}")

        if not written:
            raise JobStoreUnavailableError(f"No job store backend accepted job {job_id}")
        return record

    def update(self, job_id: str, **fields) -> JobRecord:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

        current = self.get(job_id)
        changes = dict(fields)

        # Progress only moves forward while the job is still running
        if (
            "progress" in changes
            and current.status in ACTIVE_STATUSES
            and changes["progress"] < current.progress
        ):
            logging.debug(f"Job {job_id}: ignoring progress {changes['progress']} < {current.progress}")
            changes["progress"] = current.progress

        record = JobRecord.model_validate({**current.model_dump(), **changes, "updated_at": utcnow()})

        written = 0
        try:
            try:
                self.primary.save(record)
            except JobNotFoundError:
                # Created while the database was unreachable
                self.primary.insert(record)
            written += 1
        except Exception as e:
            logging.warning(f"⚠️ Database update failed for job {job_id} (snapshot still written): {e}")

        try:
            self.snapshot.save(record)
            written += 1
        except Exception as e:
            logging.warning(f"⚠️ Snapshot update failed for job {job_id}: {e}")
            # A stale snapshot must not shadow the newer database row
            try:
                self.snapshot.discard(job_id)
            except OSError as discard_error:
                logging.error(f"❌ Could not discard stale snapshot for job {job_id}: {discard_error}")

        if not written:
            raise JobStoreUnavailableError(f"No job store backend accepted the update for job {job_id}")
        return record

    def get(self, job_id: str) -> JobRecord:
        if not is_valid_job_id(job_id):
            raise JobNotFoundError(job_id)

        local = self.snapshot.load(job_id)

        try:
            shared = self.primary.load(job_id)
        except Exception as e:
            if local is not None:
                logging.warning(f"⚠️ Database read failed for job {job_id}, serving local snapshot: {e}")
                return local
            raise JobStoreUnavailableError(f"Job store unavailable: {e}") from e

        if local is None and shared is None:
            raise JobNotFoundError(job_id)
        if shared is None:
            return local
        # The worker may run with a different WORK_ROOT, so the database can be ahead of this snapshot
        if local is None or shared.updated_at > local.updated_at:
            return shared
        return local


def get_job_store() -> JobStore:
    """Factory used by the API (as a dependency) and by the worker."""
    return JobStore(DatabaseJobBackend(SessionLocal), SnapshotJobBackend(WORK_ROOT))
