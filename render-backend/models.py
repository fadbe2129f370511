# models.py

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text
from database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class RenderJob(Base):
    """Job model for tracking storyboard render requests."""

    __tablename__ = "render_jobs"

    id = Column(String(64), primary_key=True, index=True)
    status = Column(String(20), default="pending", nullable=False, index=True)  # pending, processing, completed, failed
    progress = Column(Integer, default=0, nullable=False)
    result_ref = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    skipped_scenes = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<RenderJob {self.id} ({self.status} {self.progress}%)>"
