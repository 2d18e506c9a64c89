"""FastAPI front end for mediagrab.

This service exposes two endpoints:
- GET /api/info     : returns title/uploader/thumbnail/duration for a URL
- GET /api/download : runs the strategy ladder and returns the file

Run with:
    uvicorn server:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from typing import Any, Dict, Optional

import yt_dlp
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from mediagrab import __version__
from mediagrab.cleaner import release_later, sweep_stale
from mediagrab.config import Settings
from mediagrab.errors import ErrorReason, FailureHint
from mediagrab.metadata import request_metadata
from mediagrab.models import DownloadOutcome, MediaKind
from mediagrab.orchestrator import Orchestrator

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("server")

app = FastAPI(title="mediagrab API", version=__version__)

# Allow the frontend to connect from any origin during development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SETTINGS = Settings.from_env()
MAX_CONCURRENT = SETTINGS.max_concurrent
DOWNLOAD_GUARD = threading.BoundedSemaphore(value=MAX_CONCURRENT)
orchestrator = Orchestrator(SETTINGS)

MEDIA_TYPES = {MediaKind.VIDEO: "video/mp4", MediaKind.AUDIO: "audio/mpeg"}

HINT_STATUS = {
    FailureHint.PRIVATE: 404,
    FailureHint.UNAVAILABLE: 404,
    FailureHint.REGION_LOCKED: 451,
    FailureHint.TOO_LARGE: 413,
    FailureHint.ANTI_BOT: 503,
    FailureHint.BLOCKED: 503,
    FailureHint.UNSUPPORTED_URL: 400,
}


def sanitize_filename(title: str, ext: str) -> str:
    """Create a safe, ASCII filename for Content-Disposition headers."""
    safe_title = (
        re.sub(r'[\\/*?:"<>|]', "", title)
        .replace("\n", " ")
        .replace("\r", " ")
        .strip()
    )
    # Force ASCII to avoid latin-1 header encoding failures
    safe_title_ascii = safe_title.encode("ascii", "ignore").decode("ascii").strip() or "download"
    return f"{safe_title_ascii}.{ext}"


def status_for(outcome: DownloadOutcome) -> int:
    """Map a failed outcome to the HTTP status the UI shows distinct messages for."""
    if outcome.error_reason is ErrorReason.CLASSIFICATION_UNSUPPORTED:
        return 400
    if outcome.hint in HINT_STATUS:
        return HINT_STATUS[outcome.hint]
    if outcome.cause is ErrorReason.EXECUTION_TIMEOUT:
        return 504
    if outcome.error_reason is ErrorReason.PIPELINE_STAGE_FAILED:
        return 502
    return 500


@app.get("/")
async def root() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/health")
async def healthcheck() -> Dict[str, Any]:
    """Return service readiness and tool versions."""
    ffmpeg_version = None
    try:
        proc = subprocess.run([SETTINGS.ffmpeg_bin, "-version"], capture_output=True, text=True, timeout=2)
        if proc.returncode == 0:
            ffmpeg_version = proc.stdout.splitlines()[0]
    except FileNotFoundError:
        ffmpeg_version = None
    except (OSError, subprocess.SubprocessError):
        ffmpeg_version = "ffmpeg check failed"

    yt_dlp_version = getattr(getattr(yt_dlp, "version", None), "__version__", None)
    return {
        "status": "ok",
        "yt_dlp": yt_dlp_version,
        "ffmpeg": ffmpeg_version or "missing",
        "max_concurrent_downloads": MAX_CONCURRENT,
        "max_filesize_mb": SETTINGS.max_filesize_mb,
    }


@app.get("/api/info")
def fetch_info(url: str = Query(..., description="Video or audio URL")) -> Dict[str, Any]:
    """Return metadata for the provided URL."""
    metadata = request_metadata(url)
    if metadata is None:
        raise HTTPException(status_code=404, detail="Could not read information for this link.")
    return metadata.as_dict()


@app.get("/api/download")
def download(
    url: str = Query(..., description="Video URL to download"),
    type: MediaKind = Query(MediaKind.VIDEO, description="video or audio"),
    quality: str = Query("", description="e.g. 720p for video, 192kbps for audio"),
    title: Optional[str] = Query(None, description="Used to name the file"),
):
    """Run the download ladder and hand the file to the client.

    The file stays on disk for FILE_GRACE_SECONDS after the response is sent;
    anything a dropped client left behind is swept after STALE_FILE_SECONDS.
    """
    acquired = DOWNLOAD_GUARD.acquire(timeout=2)
    if not acquired:
        raise HTTPException(status_code=429, detail="Too many concurrent downloads, please wait.")

    try:
        sweep_stale(SETTINGS.download_dir, SETTINGS.stale_file_seconds)
        outcome = orchestrator.request_download(url, type, quality, title=title)
    finally:
        DOWNLOAD_GUARD.release()

    if not outcome.success or not outcome.filepath:
        logger.warning(
            "Download failed for %s: reason=%s cause=%s hint=%s",
            url,
            outcome.error_reason,
            outcome.cause,
            outcome.hint,
        )
        raise HTTPException(
            status_code=status_for(outcome),
            detail={
                "error": outcome.message or "Download failed. Please try again.",
                "reason": outcome.error_reason.value if outcome.error_reason else None,
                "hint": outcome.hint.value if outcome.hint else None,
                "platform": outcome.platform.value,
            },
        )

    ext = type.extension
    filename = sanitize_filename(title or f"{outcome.platform.value}_{type.value}", ext)
    background = BackgroundTask(release_later, outcome.filepath, SETTINGS.file_grace_seconds)
    return FileResponse(
        path=outcome.filepath,
        media_type=MEDIA_TYPES[type],
        filename=filename,
        background=background,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
