"""Ordered extractor strategies per platform.

Each platform owns a ladder of ``StrategyTemplate`` records, ordered from the
most likely, highest quality attempt to the most permissive, most degraded
one. Templates are rendered per call into immutable ``InvocationDescriptor``
objects; nothing here is cached between calls.
"""
from __future__ import annotations

import os
import random
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from mediagrab.config import Settings
from mediagrab.models import (
    DownloadPlan,
    FetchThenTranscode,
    FlatAttempts,
    InvocationDescriptor,
    MediaKind,
    PlatformTag,
)
from mediagrab.platforms import clean_url, youtube_video_id

DEFAULT_VIDEO_QUALITY = "720p"
DEFAULT_AUDIO_QUALITY = "192kbps"
VIDEO_HEIGHTS = (144, 240, 360, 480, 720, 1080, 1440, 2160)
AUDIO_BITRATES = (64, 96, 128, 160, 192, 256, 320)

_VIDEO_QUALITY_RE = re.compile(r"^(\d{3,4})p?$")
_AUDIO_QUALITY_RE = re.compile(r"^(\d{2,3})\s*k?(?:bps)?$")

DESKTOP_USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
)
MOBILE_USER_AGENTS = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Android 14; Mobile; rv:121.0) Gecko/121.0 Firefox/121.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) CriOS/122.0.0.0 Mobile/15E148 Safari/604.1",
)


class UserAgentPool:
    """Picks among equivalent user agents. Only affects stealth, never correctness."""

    families: Dict[str, Tuple[str, ...]] = {
        "desktop": DESKTOP_USER_AGENTS,
        "mobile": MOBILE_USER_AGENTS,
    }

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def pick(self, family: str) -> str:
        return self._rng.choice(self.families[family])

    def uniform(self, low: float, high: float) -> float:
        return self._rng.uniform(low, high)


@dataclass(frozen=True)
class StrategyTemplate:
    """Declarative form of one extractor attempt.

    ``video_format`` may contain ``{cap}``, replaced with a ``[height<=N]``
    filter for the requested quality (or nothing for uncapped requests).
    ``user_agent`` is either a literal string or ``@desktop`` / ``@mobile``.
    """

    name: str
    video_format: str
    audio_ceiling: Optional[int] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    headers: Tuple[Tuple[str, str], ...] = ()
    extra_args: Tuple[str, ...] = ()
    timeout: Optional[float] = None
    url_form: str = "clean"
    pre_delay: Tuple[float, float] = (0.0, 0.0)
    needs_cookies: bool = False


_SLEEPY = ("--sleep-requests", "2", "--sleep-interval", "3", "--max-sleep-interval", "8")

CATALOG: Dict[PlatformTag, Tuple[StrategyTemplate, ...]] = {
    PlatformTag.YOUTUBE: (
        StrategyTemplate(
            name="YouTube Mobile Client",
            video_format="best{cap}[ext=mp4]/best{cap}/18/best",
            user_agent="@mobile",
            extra_args=("--socket-timeout", "30", "--extractor-args", "youtube:player_client=ios,web"),
            timeout=180,
        ),
        StrategyTemplate(
            name="YouTube Stealth Desktop",
            video_format="best{cap}/best",
            user_agent="@desktop",
            referer="https://www.google.com/",
            headers=(("Accept-Language", "en-US,en;q=0.9"),),
            extra_args=_SLEEPY,
            timeout=300,
            pre_delay=(1.0, 3.0),
        ),
        StrategyTemplate(
            name="YouTube Web Client",
            video_format="worst{cap}/worst",
            audio_ceiling=128,
            extra_args=("--socket-timeout", "30", "--extractor-args", "youtube:player_client=web"),
            timeout=180,
        ),
        StrategyTemplate(
            name="YouTube Android Client",
            video_format="18/17/36/worst",
            audio_ceiling=96,
            extra_args=("--socket-timeout", "30", "--extractor-args", "youtube:player_client=android"),
            timeout=180,
        ),
        StrategyTemplate(
            name="YouTube Embed",
            video_format="worst",
            audio_ceiling=96,
            user_agent="@mobile",
            referer="https://www.youtube.com/",
            url_form="embed",
            timeout=240,
        ),
        StrategyTemplate(
            name="YouTube Legacy Connect",
            video_format="17/18/worst",
            audio_ceiling=64,
            user_agent="Mozilla/4.0 (compatible; MSIE 9.0; Windows NT 6.1; Trident/5.0)",
            extra_args=("--legacy-server-connect",),
            url_form="mobile",
            timeout=240,
        ),
    ),
    PlatformTag.INSTAGRAM: (
        StrategyTemplate(
            name="Instagram Browser Cookies",
            video_format="best{cap}/mp4/best",
            user_agent="@mobile",
            extra_args=("--extractor-retries", "5"),
            needs_cookies=True,
        ),
        StrategyTemplate(
            name="Instagram Mobile",
            video_format="best{cap}/mp4/best",
            user_agent="@mobile",
            extra_args=("--extractor-retries", "5"),
        ),
        StrategyTemplate(
            name="Instagram App Simulation",
            video_format="mp4/best",
            user_agent="Instagram 302.0.0.27.103 Android",
            headers=(("X-IG-App-ID", "936619743392459"),),
        ),
        StrategyTemplate(
            name="Instagram Desktop Referer",
            video_format="worst",
            audio_ceiling=128,
            user_agent="@desktop",
            referer="https://www.instagram.com/",
            headers=(("Sec-Fetch-Site", "same-origin"),),
        ),
    ),
    PlatformTag.TIKTOK: (
        StrategyTemplate(
            name="TikTok Mobile",
            video_format="best{cap}/best",
            user_agent="@mobile",
            extra_args=("--extractor-retries", "3"),
        ),
        StrategyTemplate(
            name="TikTok Watermark Free",
            video_format="download/best{cap}/best",
            user_agent="@desktop",
        ),
        StrategyTemplate(
            name="TikTok Lowest Quality",
            video_format="worst",
            audio_ceiling=96,
            user_agent="@desktop",
            referer="https://www.tiktok.com/",
        ),
    ),
    PlatformTag.FACEBOOK: (
        StrategyTemplate(
            name="Facebook Browser Cookies",
            video_format="best{cap}/mp4/best",
            user_agent="@desktop",
            extra_args=("--extractor-retries", "8"),
            needs_cookies=True,
        ),
        StrategyTemplate(
            name="Facebook Standard",
            video_format="best{cap}/mp4/best",
            user_agent="@desktop",
            referer="https://www.facebook.com/",
            extra_args=("--extractor-retries", "8"),
        ),
        StrategyTemplate(
            name="Facebook Mobile",
            video_format="mp4/worst",
            user_agent="@mobile",
            headers=(("Accept-Language", "en-US,en;q=0.9"),),
        ),
        StrategyTemplate(
            name="Facebook External Hit",
            video_format="worst",
            audio_ceiling=128,
            user_agent="facebookexternalhit/1.1",
        ),
        StrategyTemplate(
            name="Facebook Generic Extractor",
            video_format="worst",
            audio_ceiling=96,
            user_agent="@mobile",
            extra_args=("--force-generic-extractor",),
        ),
    ),
    PlatformTag.TWITTER: (
        StrategyTemplate(
            name="Twitter Standard",
            video_format="best{cap}/best",
            user_agent="@desktop",
        ),
        StrategyTemplate(
            name="Twitter Mobile",
            video_format="worst",
            audio_ceiling=128,
            user_agent="@mobile",
        ),
    ),
    PlatformTag.TWITCH: (
        StrategyTemplate(
            name="Twitch Standard",
            video_format="best{cap}/best",
            user_agent="@desktop",
            timeout=240,
        ),
        StrategyTemplate(
            name="Twitch Lowest Quality",
            video_format="160p/worst",
            audio_ceiling=96,
            user_agent="@desktop",
            timeout=240,
        ),
    ),
    PlatformTag.GENERIC: (
        StrategyTemplate(
            name="Generic Standard",
            video_format="best{cap}/best",
            user_agent="@desktop",
        ),
    ),
}

# (platform, kind) pairs the extractor cannot serve as audio directly.
TWO_STAGE_AUDIO = frozenset({(PlatformTag.INSTAGRAM, MediaKind.AUDIO)})


def video_height(quality: Optional[str]) -> Optional[int]:
    """Map a video quality selector to a height cap. ``None`` means uncapped."""
    text = (quality or "").strip().lower()
    if text in ("best", "max", "highest"):
        return None
    match = _VIDEO_QUALITY_RE.match(text)
    if match and int(match.group(1)) in VIDEO_HEIGHTS:
        return int(match.group(1))
    return int(DEFAULT_VIDEO_QUALITY.rstrip("p"))


def audio_bitrate(quality: Optional[str]) -> int:
    text = (quality or "").strip().lower()
    if text in ("best", "max", "highest"):
        return max(AUDIO_BITRATES)
    match = _AUDIO_QUALITY_RE.match(text)
    if match and int(match.group(1)) in AUDIO_BITRATES:
        return int(match.group(1))
    return int(DEFAULT_AUDIO_QUALITY.rstrip("kbps"))


def audio_output_template(output_path: str) -> str:
    """yt-dlp picks the extension after extraction, so hand it a template."""
    return os.path.splitext(output_path)[0] + ".%(ext)s"


class StrategyCatalog:
    def __init__(self, settings: Optional[Settings] = None, agents: Optional[UserAgentPool] = None) -> None:
        self.settings = settings or Settings.from_env()
        self.agents = agents or UserAgentPool()

    def base_args(self) -> List[str]:
        return [
            "--no-check-certificate",
            "--no-playlist",
            "--max-filesize",
            f"{self.settings.max_filesize_mb}M",
            "--no-warnings",
            "--no-mtime",
        ]

    def templates_for(self, platform: PlatformTag) -> Tuple[StrategyTemplate, ...]:
        templates = CATALOG.get(platform) or CATALOG[PlatformTag.GENERIC]
        if not self.settings.cookies_from_browser:
            templates = tuple(t for t in templates if not t.needs_cookies)
        return templates

    def strategies_for(
        self,
        platform: PlatformTag,
        media_kind: MediaKind,
        quality: Optional[str],
        output_path: str,
        url: str,
    ) -> List[InvocationDescriptor]:
        media_kind = MediaKind(media_kind)
        source = clean_url(url, platform)
        return [
            self._render(template, platform, media_kind, quality, output_path, source)
            for template in self.templates_for(platform)
        ]

    def plan_for(
        self,
        platform: PlatformTag,
        media_kind: MediaKind,
        quality: Optional[str],
        output_path: str,
        url: str,
    ) -> DownloadPlan:
        media_kind = MediaKind(media_kind)
        if (platform, media_kind) not in TWO_STAGE_AUDIO:
            return FlatAttempts(tuple(self.strategies_for(platform, media_kind, quality, output_path, url)))

        intermediate = os.path.splitext(output_path)[0] + ".source.mp4"
        # Fetch the best video available; the bitrate request applies to the transcode.
        fetch = self.strategies_for(platform, MediaKind.VIDEO, "best", intermediate, url)
        return FetchThenTranscode(
            fetch=tuple(fetch),
            transcode=tuple(self.transcode_variants(intermediate, output_path, audio_bitrate(quality))),
            intermediate_path=intermediate,
        )

    def transcode_variants(self, source_path: str, output_path: str, bitrate: int) -> List[InvocationDescriptor]:
        """ffmpeg audio extraction commands, most faithful first."""
        variants = (
            ("MP3 Constant Bitrate", ["-map", "0:a:0", "-vn", "-acodec", "libmp3lame", "-b:a", f"{bitrate}k"]),
            ("MP3 Variable Bitrate", ["-vn", "-acodec", "libmp3lame", "-q:a", "4"]),
            ("MP3 Stereo Resample", ["-vn", "-ac", "2", "-ar", "44100", "-f", "mp3"]),
        )
        descriptors = []
        for name, codec_args in variants:
            args = ["-y", "-hide_banner", "-loglevel", "error", "-i", source_path, *codec_args]
            args.extend(["-fs", f"{self.settings.max_filesize_mb}M", output_path])
            descriptors.append(
                InvocationDescriptor(
                    name=name,
                    program=self.settings.ffmpeg_bin,
                    args=tuple(args),
                    media_kind=MediaKind.AUDIO,
                    output_path=output_path,
                    timeout=self.settings.attempt_timeout,
                )
            )
        return descriptors

    def _render(
        self,
        template: StrategyTemplate,
        platform: PlatformTag,
        media_kind: MediaKind,
        quality: Optional[str],
        output_path: str,
        url: str,
    ) -> InvocationDescriptor:
        args = self.base_args()
        args.extend(template.extra_args)
        if template.needs_cookies:
            args.extend(["--cookies-from-browser", self.settings.cookies_from_browser or ""])
        user_agent = self._user_agent(template.user_agent)
        if user_agent:
            args.extend(["--user-agent", user_agent])
        if template.referer:
            args.extend(["--referer", template.referer])
        for key, value in template.headers:
            args.extend(["--add-header", f"{key}:{value}"])

        if media_kind is MediaKind.VIDEO:
            height = video_height(quality)
            cap = f"[height<={height}]" if height else ""
            args.extend(["-f", template.video_format.format(cap=cap), "--merge-output-format", "mp4"])
            args.extend(["-o", output_path])
        else:
            bitrate = audio_bitrate(quality)
            if template.audio_ceiling:
                bitrate = min(bitrate, template.audio_ceiling)
            args.extend(["-x", "--audio-format", "mp3", "--audio-quality", f"{bitrate}K"])
            args.extend(["-o", audio_output_template(output_path)])
        args.append(self._source_url(template.url_form, platform, url))

        low, high = template.pre_delay
        return InvocationDescriptor(
            name=template.name,
            program=self.settings.ytdlp_bin,
            args=tuple(args),
            media_kind=media_kind,
            output_path=output_path,
            timeout=template.timeout or self.settings.attempt_timeout,
            pre_delay=self.agents.uniform(low, high) if high > 0 else 0.0,
        )

    def _user_agent(self, value: Optional[str]) -> Optional[str]:
        if value and value.startswith("@"):
            return self.agents.pick(value[1:])
        return value

    @staticmethod
    def _source_url(url_form: str, platform: PlatformTag, url: str) -> str:
        if platform is not PlatformTag.YOUTUBE or url_form == "clean":
            return url
        video_id = youtube_video_id(url)
        if not video_id:
            return url
        if url_form == "embed":
            return f"https://www.youtube.com/embed/{video_id}"
        return f"https://m.youtube.com/watch?v={video_id}"


def strategies_for(
    platform: PlatformTag,
    media_kind: MediaKind,
    quality: Optional[str],
    output_path: str,
    url: str,
    settings: Optional[Settings] = None,
) -> List[InvocationDescriptor]:
    return StrategyCatalog(settings).strategies_for(platform, media_kind, quality, output_path, url)

