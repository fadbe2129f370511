"""
Configuration file for the Storyboard Render Backend.
Contains all global constants, read from the environment where deployments differ.
"""

import os
import tempfile

# --- Paths ---
PROJECT_ROOT = os.getenv("PROJECT_ROOT", os.getcwd())
MEDIA_DIR = os.getenv("MEDIA_DIR", os.path.join(PROJECT_ROOT, "media"))
OUTPUT_DIR = os.getenv("OUTPUT_DIR", os.path.join(MEDIA_DIR, "videos"))
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(MEDIA_DIR, "uploads"))
# One render-<job_id>/ workspace and one render-<job_id>.status.json snapshot per job
WORK_ROOT = os.getenv("WORK_ROOT", os.path.join(tempfile.gettempdir(), "render-work"))

# --- Database & queue ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./render_jobs.db")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CELERY_ALWAYS_EAGER = os.getenv("CELERY_ALWAYS_EAGER", "false").lower() == "true"

# --- HTTP ---
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

# --- Encoder ---
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")
# Refuse to start the API when ffmpeg is missing
REQUIRE_ENCODER = os.getenv("REQUIRE_ENCODER", "true").lower() == "true"
ENCODER_CHECK_TIMEOUT = 10

# --- Bundle layout ---
METADATA_FILE = "project-metadata.json"
STORYBOARD_FILE = "storyboard.json"
IMAGES_PREFIX = "images/"
VOICEOVERS_PREFIX = "voiceovers/"
SCENE_FILE_PREFIX = "scene-"
FINAL_VIDEO_NAME = "final-video.mp4"
CONCAT_LIST_NAME = "concat.txt"

# --- Render settings ---
VIDEO_WIDTH = 1080
VIDEO_HEIGHT = 1920
FRAME_RATE = 25
VIDEO_CODEC = "libx264"
PIXEL_FORMAT = "yuv420p"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
AUDIO_SAMPLE_RATE = 44100
ZOOM_STEP = 0.0015
ZOOM_CEILING = 1.1
ZOOM_FRAMES = 125
# Used when ffprobe cannot read a voiceover
FALLBACK_AUDIO_DURATION = 2.0

# --- Progress checkpoints ---
PROGRESS_WORKSPACE_READY = 10
PROGRESS_MANIFEST_PARSED = 20
PROGRESS_IMAGES_EXTRACTED = 30
PROGRESS_VOICEOVERS_EXTRACTED = 40
SYNTHESIS_PROGRESS_WINDOW = (50, 80)
PROGRESS_CONCAT_STARTED = 85
PROGRESS_CONCAT_DONE = 95
