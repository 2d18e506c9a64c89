"""URL to platform classification and URL clean-up."""
from __future__ import annotations

import re
from typing import Optional, Pattern, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from mediagrab.models import PlatformTag

# First match wins.
PLATFORM_PATTERNS: Tuple[Tuple[PlatformTag, Pattern[str]], ...] = (
    (PlatformTag.YOUTUBE, re.compile(r"youtube\.com|youtu\.be|youtube-nocookie\.com")),
    (PlatformTag.INSTAGRAM, re.compile(r"instagram\.com|instagr\.am")),
    (PlatformTag.TIKTOK, re.compile(r"tiktok\.com")),
    (PlatformTag.FACEBOOK, re.compile(r"facebook\.com|fb\.watch|fb\.com")),
    (PlatformTag.TWITTER, re.compile(r"twitter\.com|(?:^|[/.])x\.com(?:[/:?#]|$)")),
    (PlatformTag.TWITCH, re.compile(r"twitch\.tv")),
)

_ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\ufeff]")
_YOUTUBE_ID_RE = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|embed/|shorts/|live/|v/)|youtu\.be/)([A-Za-z0-9_-]{11})"
)
# Playlist, position and share-tracking parameters that make yt-dlp misbehave.
_YOUTUBE_DROP_PARAMS = frozenset({"list", "index", "t", "start_radio", "pp", "si", "feature"})


def classify(url: str) -> PlatformTag:
    normalized = (url or "").lower()
    for tag, pattern in PLATFORM_PATTERNS:
        if pattern.search(normalized):
            return tag
    return PlatformTag.GENERIC


def is_supported_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    try:
        parts = urlsplit(_ZERO_WIDTH_RE.sub("", url or "").strip())
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def clean_url(url: str, platform: Optional[PlatformTag] = None) -> str:
    cleaned = _ZERO_WIDTH_RE.sub("", url or "").strip()
    if platform is None:
        platform = classify(cleaned)
    if platform is not PlatformTag.YOUTUBE:
        return cleaned
    parts = urlsplit(cleaned)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key not in _YOUTUBE_DROP_PARAMS]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def youtube_video_id(url: str) -> Optional[str]:
    match = _YOUTUBE_ID_RE.search(url or "")
    return match.group(1) if match else None
