"""
Router for video render endpoints.
Handles bundle submission, status polling and video download.
"""

import os
import uuid
import shutil
import logging
from fastapi import APIRouter, HTTPException, File, UploadFile, Depends
from fastapi.responses import FileResponse, JSONResponse
from tasks import render_video_task
from schemas import (
    COMPLETED,
    FAILED,
    EncoderCheckResponse,
    JobResponse,
    StatusResponse,
    status_payload,
)
from config import FINAL_VIDEO_NAME, UPLOAD_DIR
from encoder import check_encoder_available
from errors import (
    MissingDependencyError,
    JobAlreadyExistsError,
    JobNotFoundError,
    JobStoreUnavailableError,
)
from job_store import JobStore, get_job_store


# Create the router
router = APIRouter(tags=["render"])


def _discard_upload(archive_path: str) -> None:
    try:
        if os.path.exists(archive_path):
            os.remove(archive_path)
    except OSError as e:
        logging.error(f"Could not remove spooled upload {archive_path}: {e}")


def _load_job(store: JobStore, job_id: str):
    try:
        return store.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found.")
    except JobStoreUnavailableError as e:
        logging.error(f"Job store unavailable while reading job {job_id}: {e}")
        raise HTTPException(status_code=503, detail="Job store is unavailable, try again later.")


@router.post("/render-video/", response_model=JobResponse, status_code=202)
async def render_video(projectZip: UploadFile = File(...), store: JobStore = Depends(get_job_store)):
    """
    Spools the uploaded project ZIP, creates a pending job and hands it to Celery.
    Returns the job ID immediately; the render happens in the background.
    """
    job_id = str(uuid.uuid4())
    archive_path = os.path.join(UPLOAD_DIR, f"{job_id}.zip")
    try:
        os.makedirs(UPLOAD_DIR, exist_ok=True)
        with open(archive_path, "wb") as buffer:
            shutil.copyfileobj(projectZip.file, buffer)
        size = os.path.getsize(archive_path)
    except OSError as e:
        logging.error(f"Failed to save uploaded bundle: {e}")
        _discard_upload(archive_path)
        raise HTTPException(status_code=500, detail="Failed to save the uploaded project.")

    if not size:
        _discard_upload(archive_path)
        raise HTTPException(status_code=400, detail="No file provided.")

    try:
        record = store.create(job_id)
    except JobStoreUnavailableError as e:
        logging.error(f"Could not create job {job_id}: {e}")
        _discard_upload(archive_path)
        raise HTTPException(status_code=503, detail="Job store is unavailable, try again later.")
    except JobAlreadyExistsError:
        logging.error(f"Job id {job_id} is already taken")
        _discard_upload(archive_path)
        raise HTTPException(status_code=500, detail="Failed to start the video render job.")

    try:
        render_video_task.delay(job_id, archive_path)
    except Exception as e:
        logging.error(f"Failed to submit task to Celery: {e}")
        try:
            store.update(job_id, status=FAILED, error=f"INTERNAL_ERROR: could not enqueue job ({e})")
        except Exception as store_error:
            logging.error(f"Could not mark job {job_id} as failed: {store_error}")
        _discard_upload(archive_path)
        raise HTTPException(status_code=500, detail="Failed to start the video render job.")

    logging.info(f"✨ Job {job_id} submitted ({size} bytes, {projectZip.filename})")
    return {"job_id": record.job_id, "status": record.status, "progress": record.progress}


@router.get("/render-status/{job_id}", response_model=StatusResponse)
async def get_render_status(job_id: str, store: JobStore = Depends(get_job_store)):
    """
    Checks the status of a job through the job store.
    """
    job = _load_job(store, job_id)
    video_url = f"/get-video/{job_id}" if job.status == COMPLETED else None
    return status_payload(job, video_url=video_url)


@router.get("/get-video/{job_id}")
async def get_video(job_id: str, store: JobStore = Depends(get_job_store)):
    """
    Serves the finished video of a job.
    A job that is still running answers 202 so the client keeps polling.
    """
    job = _load_job(store, job_id)

    if job.status == FAILED:
        raise HTTPException(status_code=409, detail=job.error or "Video rendering failed.")

    if job.status != COMPLETED:
        return JSONResponse(
            status_code=202,
            content={"job_id": job.job_id, "status": "processing", "progress": job.progress},
        )

    if not job.result_ref or not os.path.exists(job.result_ref):
        raise HTTPException(status_code=404, detail="Video file not found.")

    return FileResponse(job.result_ref, media_type="video/mp4", filename=FINAL_VIDEO_NAME)


@router.get("/test-ffmpeg/", response_model=EncoderCheckResponse)
async def test_ffmpeg():
    """Reports whether ffmpeg can be run on this server."""
    try:
        version = check_encoder_available()
    except MissingDependencyError as e:
        logging.warning(f"⚠️ {e}")
        return {"success": False, "ffmpeg": "not available", "error": str(e)}
    return {"success": True, "ffmpeg": "available", "version": version}
