from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from mediagrab.errors import ErrorReason, FailureHint


class PlatformTag(str, Enum):
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    FACEBOOK = "facebook"
    TWITTER = "twitter"
    TWITCH = "twitch"
    GENERIC = "generic"


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"

    @property
    def extension(self) -> str:
        return "mp4" if self is MediaKind.VIDEO else "mp3"


@dataclass(frozen=True)
class InvocationDescriptor:
    """One external-tool invocation attempt."""

    name: str
    program: str
    args: Tuple[str, ...]
    media_kind: MediaKind
    output_path: str
    timeout: float = 120.0
    pre_delay: float = 0.0
    env: Tuple[Tuple[str, str], ...] = ()

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]


@dataclass(frozen=True)
class FlatAttempts:
    descriptors: Tuple[InvocationDescriptor, ...]


@dataclass(frozen=True)
class FetchThenTranscode:
    """Fetch as video into ``intermediate_path``, then transcode to audio."""

    fetch: Tuple[InvocationDescriptor, ...]
    transcode: Tuple[InvocationDescriptor, ...]
    intermediate_path: str


DownloadPlan = Union[FlatAttempts, FetchThenTranscode]


@dataclass(frozen=True)
class DownloadOutcome:
    success: bool
    platform: PlatformTag
    media_kind: MediaKind
    filepath: Optional[str] = None
    error_reason: Optional[ErrorReason] = None
    cause: Optional[ErrorReason] = None
    hint: Optional[FailureHint] = None
    stage: Optional[str] = None
    strategy: Optional[str] = None
    attempts: int = 0
    message: Optional[str] = None


@dataclass(frozen=True)
class Metadata:
    title: str
    uploader: str
    platform: PlatformTag
    thumbnail: Optional[str] = None
    duration_seconds: int = 0
    duration_label: str = "unknown"
    view_count: Optional[int] = None
    upload_date: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "uploader": self.uploader,
            "thumbnail": self.thumbnail,
            "duration": self.duration_label,
            "duration_seconds": self.duration_seconds,
            "platform": self.platform.value,
            "view_count": self.view_count,
            "upload_date": self.upload_date,
        }
