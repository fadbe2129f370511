# tasks.py

import logging
import os
import shutil

from celery import Celery

from config import (
    CELERY_ALWAYS_EAGER,
    OUTPUT_DIR,
    PROGRESS_CONCAT_DONE,
    PROGRESS_CONCAT_STARTED,
    PROGRESS_IMAGES_EXTRACTED,
    PROGRESS_MANIFEST_PARSED,
    PROGRESS_VOICEOVERS_EXTRACTED,
    PROGRESS_WORKSPACE_READY,
    REDIS_URL,
    WORK_ROOT,
)
from encoder import FFmpegEncoder
from errors import RenderError
from job_store import get_job_store, workspace_path
from schemas import COMPLETED, FAILED, PROCESSING
from services import BundleIngestor, SegmentSynthesizer, TimelineConcatenator

celery = Celery('tasks', broker=REDIS_URL, backend=REDIS_URL)
celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_always_eager=CELERY_ALWAYS_EAGER,
    # A failed render is final: resubmitting creates a new job
    task_acks_late=False,
)
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

STAGE_PROGRESS = {
    "manifests": PROGRESS_MANIFEST_PARSED,
    "images": PROGRESS_IMAGES_EXTRACTED,
    "voiceovers": PROGRESS_VOICEOVERS_EXTRACTED,
}


def _remove_path(path: str, job_id: str) -> None:
    """Cleanup never raises: failures are logged and the job keeps its terminal state."""
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        elif os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logging.error(f"❌ [{job_id}] Could not remove {path}: {e}")


def run_render_pipeline(job_id: str, archive_path: str, store=None, encoder=None,
                        work_root: str = WORK_ROOT, output_dir: str = OUTPUT_DIR) -> dict:
    """
    Drives one render job from pending to completed or failed.
    The workspace and the spooled archive are removed whatever the outcome.
    """
    store = store or get_job_store()
    encoder = encoder or FFmpegEncoder()
    workspace = workspace_path(job_id, work_root)

    try:
        store.update(job_id, status=PROCESSING)
        logging.info(f"🎬 [{job_id}] Starting video processing...")

        os.makedirs(workspace, exist_ok=True)
        store.update(job_id, progress=PROGRESS_WORKSPACE_READY)

        ingestor = BundleIngestor(workspace)
        bundle = ingestor.run(archive_path, on_stage=lambda stage: store.update(job_id, progress=STAGE_PROGRESS[stage]))

        synthesizer = SegmentSynthesizer(
            workspace,
            encoder,
            progress_callback=lambda progress: store.update(job_id, progress=progress),
        )
        synthesis = synthesizer.run(bundle.scenes, bundle.image_files)
        store.update(job_id, skipped_scenes=synthesis.skipped_scenes)
        logging.info(
            f"🎥 [{job_id}] Produced {len(synthesis.segments)} segments "
            f"({synthesis.skipped_scenes} scene(s) skipped)"
        )

        store.update(job_id, progress=PROGRESS_CONCAT_STARTED)
        concatenator = TimelineConcatenator(workspace, encoder)
        final_path = concatenator.run(synthesis.segments)
        store.update(job_id, progress=PROGRESS_CONCAT_DONE)

        # The workspace is about to be deleted, so the result moves out of it first
        os.makedirs(output_dir, exist_ok=True)
        result_path = os.path.join(output_dir, f"{job_id}.mp4")
        shutil.move(final_path, result_path)
        logging.info(f"📹 [{job_id}] Final video size: {os.path.getsize(result_path)} bytes")

        store.update(job_id, status=COMPLETED, progress=100, result_ref=result_path, error=None)
        logging.info(f"✅ [{job_id}] Video rendering complete! Video at: {result_path}")
        return {"status": COMPLETED, "result_ref": result_path}

    except RenderError as e:
        logging.error(f"❌ [{job_id}] Video rendering failed: {e}")
        return _fail(store, job_id, str(e))
    except Exception as e:
        logging.exception(f"❌ [{job_id}] Unexpected error while rendering")
        return _fail(store, job_id, f"INTERNAL_ERROR: {e}")
    finally:
        _remove_path(workspace, job_id)
        _remove_path(archive_path, job_id)
        logging.info(f"🧹 [{job_id}] Cleaned up workspace")


def _fail(store, job_id: str, message: str) -> dict:
    try:
        store.update(job_id, status=FAILED, error=message, result_ref=None)
    except Exception as e:
        logging.error(f"❌ [{job_id}] Could not record failure ({message}): {e}")
    return {"status": FAILED, "error": message}


@celery.task(name="render_video_task", max_retries=0)
def render_video_task(job_id: str, archive_path: str) -> dict:
    """
    Background task for one submitted bundle. Errors end up in the job record,
    never in the broker result.
    """
    logging.info(f"📝 Worker received render job {job_id}")
    return run_render_pipeline(job_id, archive_path)
