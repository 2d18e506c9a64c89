"""Multi-strategy media download orchestration around yt-dlp and ffmpeg."""
from mediagrab.config import Settings
from mediagrab.errors import ErrorReason, FailureHint
from mediagrab.metadata import request_metadata
from mediagrab.models import DownloadOutcome, MediaKind, Metadata, PlatformTag
from mediagrab.orchestrator import Orchestrator, request_download
from mediagrab.platforms import classify

__version__ = "1.0.0"

__all__ = [
    "DownloadOutcome",
    "ErrorReason",
    "FailureHint",
    "MediaKind",
    "Metadata",
    "Orchestrator",
    "PlatformTag",
    "Settings",
    "classify",
    "request_download",
    "request_metadata",
]
