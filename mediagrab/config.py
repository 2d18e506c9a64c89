"""Runtime configuration read from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    return max(int(os.getenv(name, str(default)) or str(default)), minimum)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    return max(float(os.getenv(name, str(default)) or str(default)), minimum)


@dataclass(frozen=True)
class Settings:
    download_dir: str = os.path.join(os.getcwd(), "downloads")
    max_filesize_mb: int = 100
    min_file_bytes: int = 1000
    attempt_timeout: float = 120.0
    retry_delay: float = 1.0
    retry_jitter: float = 0.5
    output_buffer_bytes: int = 1024 * 1024
    file_grace_seconds: float = 5.0
    stale_file_seconds: float = 3600.0
    ytdlp_bin: str = "yt-dlp"
    ffmpeg_bin: str = "ffmpeg"
    cookies_from_browser: Optional[str] = None
    max_concurrent: int = 3

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            download_dir=os.path.abspath(os.getenv("DOWNLOAD_DIR") or os.path.join(os.getcwd(), "downloads")),
            max_filesize_mb=_env_int("MAX_FILESIZE_MB", 100, 1),
            min_file_bytes=_env_int("MIN_FILE_BYTES", 1000, 0),
            attempt_timeout=_env_float("ATTEMPT_TIMEOUT_SECONDS", 120.0, 1.0),
            retry_delay=_env_float("RETRY_DELAY_SECONDS", 1.0),
            retry_jitter=_env_float("RETRY_JITTER_SECONDS", 0.5),
            output_buffer_bytes=_env_int("OUTPUT_BUFFER_BYTES", 1024 * 1024, 4096),
            file_grace_seconds=_env_float("FILE_GRACE_SECONDS", 5.0),
            stale_file_seconds=_env_float("STALE_FILE_SECONDS", 3600.0, 60.0),
            ytdlp_bin=os.getenv("YTDLP_BIN") or "yt-dlp",
            ffmpeg_bin=os.getenv("FFMPEG_BIN") or "ffmpeg",
            cookies_from_browser=os.getenv("COOKIES_FROM_BROWSER") or None,
            max_concurrent=_env_int("MAX_CONCURRENT_DOWNLOADS", 3, 1),
        )
