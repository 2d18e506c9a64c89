"""Title/uploader/thumbnail lookup for a media URL.

oEmbed endpoints are tried first where a platform offers one, then the
yt-dlp Python API with a few user agents. Returns ``None`` when nothing
answers; never raises.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote
from urllib.request import Request, urlopen

import yt_dlp

from mediagrab.models import Metadata, PlatformTag
from mediagrab.platforms import classify, clean_url
from mediagrab.strategies import DESKTOP_USER_AGENTS, MOBILE_USER_AGENTS

logger = logging.getLogger(__name__)

OEMBED_TIMEOUT = 10
INFO_SOCKET_TIMEOUT = 20

OEMBED_ENDPOINTS: Dict[PlatformTag, List[str]] = {
    PlatformTag.YOUTUBE: ["https://www.youtube.com/oembed?url={url}&format=json"],
    PlatformTag.TIKTOK: ["https://www.tiktok.com/oembed?url={url}"],
    PlatformTag.FACEBOOK: [
        "https://www.facebook.com/plugins/video/oembed.json/?url={url}",
        "https://graph.facebook.com/v19.0/oembed_video?url={url}",
    ],
}

INFO_USER_AGENTS = (None, DESKTOP_USER_AGENTS[0], MOBILE_USER_AGENTS[0])


def format_duration(seconds: Optional[float]) -> str:
    if not seconds:
        return "unknown"
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def best_thumbnail(info: Dict[str, Any]) -> Optional[str]:
    thumbnails = [t for t in info.get("thumbnails") or [] if t.get("url") and t.get("width")]
    if thumbnails:
        return max(thumbnails, key=lambda t: t.get("width") or 0)["url"]
    return info.get("thumbnail")


def _fetch_json(url: str) -> Dict[str, Any]:
    request = Request(url, headers={"User-Agent": DESKTOP_USER_AGENTS[0]})
    with urlopen(request, timeout=OEMBED_TIMEOUT) as resp:
        return json.loads(resp.read().decode("utf-8"))


def from_oembed(url: str, platform: PlatformTag) -> Optional[Metadata]:
    for template in OEMBED_ENDPOINTS.get(platform, []):
        endpoint = template.format(url=quote(url, safe=""))
        try:
            data = _fetch_json(endpoint)
        except Exception as exc:  # network, HTTP and JSON errors alike
            logger.info("oEmbed lookup %s failed: %s", endpoint.split("?")[0], exc)
            continue
        if not data.get("title"):
            continue
        return Metadata(
            title=data["title"],
            uploader=data.get("author_name") or f"{platform.value.capitalize()} User",
            platform=platform,
            thumbnail=data.get("thumbnail_url"),
        )
    return None


def from_ytdlp(url: str, platform: PlatformTag) -> Optional[Metadata]:
    for user_agent in INFO_USER_AGENTS:
        opts: Dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "socket_timeout": INFO_SOCKET_TIMEOUT,
        }
        if user_agent:
            opts["http_headers"] = {"User-Agent": user_agent}
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=False)
        except Exception as exc:
            logger.info("yt-dlp info extraction failed for %s: %s", url, exc)
            continue
        if not info:
            continue
        label = platform.value.capitalize()
        duration = info.get("duration") or 0
        return Metadata(
            title=info.get("title") or info.get("alt_title") or f"{label} Video",
            uploader=info.get("uploader") or info.get("channel") or info.get("creator") or f"{label} User",
            platform=platform,
            thumbnail=best_thumbnail(info),
            duration_seconds=int(duration),
            duration_label=format_duration(duration),
            view_count=info.get("view_count"),
            upload_date=info.get("upload_date"),
        )
    return None


def request_metadata(url: str) -> Optional[Metadata]:
    platform = classify(url)
    cleaned = clean_url(url, platform)
    return from_oembed(cleaned, platform) or from_ytdlp(cleaned, platform)
