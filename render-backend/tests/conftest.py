# render-backend/tests/conftest.py

import io
import json
import os
import sys
import tempfile
import uuid
import zipfile

import pytest

# Point every path and the database at a scratch directory before config is imported
_TEST_ROOT = tempfile.mkdtemp(prefix="render-backend-tests-")
os.environ["WORK_ROOT"] = os.path.join(_TEST_ROOT, "work")
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["OUTPUT_DIR"] = os.path.join(_TEST_ROOT, "videos")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_ROOT, 'render_jobs.db')}"
os.environ["CELERY_ALWAYS_EAGER"] = "true"
os.environ["REQUIRE_ENCODER"] = "false"

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import SessionLocal, init_db  # noqa: E402
from errors import EncodingError, ProbeError  # noqa: E402
from job_store import DatabaseJobBackend, JobStore, SnapshotJobBackend  # noqa: E402

init_db()


class FakeEncoder:
    """
    Stands in for FFmpegEncoder: writes placeholder files and records every call.
    `durations` maps audio file names to probed seconds (default 4.0).
    """

    def __init__(self, durations=None, default_duration=4.0, probe_fails=False, fail_on=None):
        self.durations = durations or {}
        self.default_duration = default_duration
        self.probe_fails = probe_fails
        self.fail_on = fail_on  # None, "segment" or "concat"
        self.probed = []
        self.segments = []
        self.concat_calls = []
        self.concat_list = None

    def probe_duration(self, media_path):
        name = os.path.basename(media_path)
        self.probed.append(name)
        if self.probe_fails:
            raise ProbeError(f"ffprobe failed for {name}: Invalid data found when processing input")
        return self.durations.get(name, self.default_duration)

    def render_segment(self, image_path, audio_path, duration, output_path):
        if self.fail_on == "segment":
            raise EncodingError(f"FFmpeg failed while rendering segment {os.path.basename(output_path)}: boom")
        self.segments.append({
            "image": os.path.basename(image_path),
            "audio": os.path.basename(audio_path),
            "duration": duration,
            "output": output_path,
        })
        with open(output_path, "wb") as f:
            f.write(b"segment")
        return output_path

    def concat(self, list_path, output_path):
        if self.fail_on == "concat":
            raise EncodingError("FFmpeg failed while concatenating segments: boom")
        with open(list_path, "r", encoding="utf-8") as f:
            self.concat_list = f.read()
        self.concat_calls.append((list_path, output_path))
        with open(output_path, "wb") as f:
            f.write(b"final video")
        return output_path


class BrokenBackend:
    """A job store backend whose every call fails, like a database that went away."""

    name = "broken"

    def insert(self, record):
        raise ConnectionError("database is down")

    def save(self, record):
        raise ConnectionError("database is down")

    def load(self, job_id):
        raise ConnectionError("database is down")


def build_bundle(storyboard=None, images=(), voiceovers=(), metadata=None, omit=(), raw=None):
    """
    Build a project ZIP in memory.
    `omit` drops manifest files; `raw` overrides a manifest with literal text.
    """
    if metadata is None:
        metadata = {"title": "Test project"}
    if storyboard is None:
        storyboard = [{"scene_id": 1}]
    raw = raw or {}

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        manifests = {
            "project-metadata.json": json.dumps(metadata),
            "storyboard.json": json.dumps(storyboard),
        }
        manifests.update(raw)
        for name, content in manifests.items():
            if name not in omit:
                archive.writestr(name, content)
        archive.writestr("images/", b"")
        for name in images:
            archive.writestr(f"images/{name}", b"\x89PNG fake image")
        for name in voiceovers:
            archive.writestr(f"voiceovers/{name}", b"RIFF fake wav")
    return buffer.getvalue()


@pytest.fixture
def make_bundle():
    return build_bundle


@pytest.fixture
def work_root(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


@pytest.fixture
def store(work_root):
    return JobStore(DatabaseJobBackend(SessionLocal), SnapshotJobBackend(work_root))


@pytest.fixture
def job_id():
    return str(uuid.uuid4())
