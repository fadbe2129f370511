import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS, FFMPEG_PATH, REQUIRE_ENCODER
from database import init_db
from encoder import check_encoder_available
from errors import MissingDependencyError
from routers import render

# --------------------------------------------------------------------------
# --- Configuration & Setup ---
# --------------------------------------------------------------------------

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    try:
        version = check_encoder_available(FFMPEG_PATH)
        logging.info(f"🎬 Encoder ready: {version}")
    except MissingDependencyError as e:
        if REQUIRE_ENCODER:
            logging.error(f"❌ {e}. Set REQUIRE_ENCODER=false to start anyway.")
            raise
        logging.warning(f"⚠️ {e}. Render jobs will fail until it is installed.")
    yield


app = FastAPI(
    title="Storyboard Render Backend",
    description="Turns storyboard project bundles into vertical MP4 videos in the background.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(render.router)


# --------------------------------------------------------------------------
# --- API Endpoints ---
# --------------------------------------------------------------------------

@app.get("/")
def read_root():
    return {"status": "🚀 Storyboard Render Backend is running!"}
