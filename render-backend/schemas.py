"""
Pydantic models for data validation in the Storyboard Render Backend.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

ACTIVE_STATUSES = (PENDING, PROCESSING)
TERMINAL_STATUSES = (COMPLETED, FAILED)

JobStatus = Literal["pending", "processing", "completed", "failed"]


class JobRecord(BaseModel):
    """Durable state of one render request, shared by both job store backends."""

    job_id: str
    status: JobStatus = PENDING
    progress: int = Field(default=0, ge=0, le=100)
    result_ref: Optional[str] = None
    error: Optional[str] = None
    skipped_scenes: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ProjectMetadata(BaseModel):
    """Contents of project-metadata.json. Only the title is read; everything else is kept as-is."""

    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None


class SceneEntry(BaseModel):
    """One element of storyboard.json."""

    model_config = ConfigDict(extra="allow")

    # Scene ids end up in file names, so strings are restricted to a safe alphabet
    scene_id: Union[int, Annotated[str, StringConstraints(pattern=r"^[A-Za-z0-9_-]+$")]]


class JobResponse(BaseModel):
    """Response when submitting a render bundle."""
    job_id: str
    status: str  # "pending"
    progress: int = 0


class StatusResponse(BaseModel):
    """Response for checking render job status."""
    job_id: str
    status: str  # "pending" | "processing" | "completed" | "failed"
    progress: int
    video_url: Optional[str] = None
    error: Optional[str] = None
    skipped_scenes: int = 0
    created_at: datetime
    updated_at: datetime


class EncoderCheckResponse(BaseModel):
    """Response for the encoder availability probe."""
    success: bool
    ffmpeg: str  # "available" | "not available"
    version: Optional[str] = None
    error: Optional[str] = None


def status_payload(record: JobRecord, video_url: Optional[str] = None) -> Dict[str, Any]:
    """Shape a job record the way the status endpoint reports it."""
    return {
        "job_id": record.job_id,
        "status": record.status,
        "progress": record.progress,
        "video_url": video_url,
        "error": record.error,
        "skipped_scenes": record.skipped_scenes,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }
