import itertools

import pytest

from mediagrab.config import Settings
from mediagrab.models import FetchThenTranscode, FlatAttempts, MediaKind, PlatformTag
from mediagrab.strategies import (
    CATALOG,
    StrategyCatalog,
    UserAgentPool,
    audio_bitrate,
    strategies_for,
    video_height,
)


class FixedAgents(UserAgentPool):
    def pick(self, family):
        return f"UA-{family}"

    def uniform(self, low, high):
        return high


def make_catalog(**overrides):
    settings = Settings(download_dir="/tmp/downloads", **overrides)
    return StrategyCatalog(settings, FixedAgents())


def arg_after(args, flag):
    return args[list(args).index(flag) + 1]


@pytest.mark.parametrize("platform,kind", list(itertools.product(PlatformTag, MediaKind)))
def test_every_pair_has_descriptors_matching_kind(platform, kind):
    output = f"/tmp/downloads/clip.{kind.extension}"
    descriptors = make_catalog().strategies_for(platform, kind, "", output, "https://example.com/v")

    assert descriptors
    for descriptor in descriptors:
        assert descriptor.media_kind is kind
        assert descriptor.output_path == output
        if kind is MediaKind.AUDIO:
            assert "-x" in descriptor.args
            assert arg_after(descriptor.args, "--audio-format") == "mp3"
            assert arg_after(descriptor.args, "-o") == "/tmp/downloads/clip.%(ext)s"
            assert "-f" not in descriptor.args
        else:
            assert "-x" not in descriptor.args
            assert "-f" in descriptor.args
            assert arg_after(descriptor.args, "-o") == output


def test_every_descriptor_carries_size_cap_and_certificate_flag():
    catalog = make_catalog(max_filesize_mb=42)
    for platform in PlatformTag:
        for descriptor in catalog.strategies_for(platform, MediaKind.VIDEO, "720p", "/tmp/x.mp4", "https://a.b/c"):
            assert "--no-check-certificate" in descriptor.args
            assert "--no-mtime" in descriptor.args
            assert arg_after(descriptor.args, "--max-filesize") == "42M"
            assert descriptor.program == "yt-dlp"
            assert 60 <= descriptor.timeout <= 300


def test_generic_falls_back_to_a_single_descriptor():
    descriptors = make_catalog().strategies_for(PlatformTag.GENERIC, MediaKind.VIDEO, "", "/tmp/x.mp4", "https://a.b/c")
    assert [d.name for d in descriptors] == ["Generic Standard"]


def test_video_quality_cap_is_rendered_into_first_selector():
    descriptors = make_catalog().strategies_for(
        PlatformTag.TIKTOK, MediaKind.VIDEO, "480p", "/tmp/x.mp4", "https://www.tiktok.com/@u/video/1"
    )
    assert arg_after(descriptors[0].args, "-f") == "best[height<=480]/best"
    assert arg_after(descriptors[-1].args, "-f") == "worst"


def test_uncapped_video_quality_drops_height_filter():
    descriptors = make_catalog().strategies_for(
        PlatformTag.TWITTER, MediaKind.VIDEO, "best", "/tmp/x.mp4", "https://x.com/u/status/1"
    )
    assert arg_after(descriptors[0].args, "-f") == "best/best"


def test_audio_ladder_degrades_bitrate():
    descriptors = make_catalog().strategies_for(
        PlatformTag.YOUTUBE, MediaKind.AUDIO, "320kbps", "/tmp/x.mp3", "https://youtu.be/dQw4w9WgXcQ"
    )
    bitrates = [int(arg_after(d.args, "--audio-quality").rstrip("K")) for d in descriptors]
    assert bitrates[0] == 320
    assert bitrates == sorted(bitrates, reverse=True)
    assert bitrates[-1] == 64


def test_user_agents_come_from_the_pool():
    descriptors = make_catalog().strategies_for(
        PlatformTag.TIKTOK, MediaKind.VIDEO, "", "/tmp/x.mp4", "https://www.tiktok.com/@u/video/1"
    )
    assert arg_after(descriptors[0].args, "--user-agent") == "UA-mobile"
    assert arg_after(descriptors[1].args, "--user-agent") == "UA-desktop"


def test_youtube_url_is_cleaned_and_variants_rendered():
    url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=PL1&index=3"
    descriptors = make_catalog().strategies_for(PlatformTag.YOUTUBE, MediaKind.VIDEO, "720p", "/tmp/x.mp4", url)
    targets = {d.name: d.args[-1] for d in descriptors}

    assert targets["YouTube Mobile Client"] == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    assert targets["YouTube Embed"] == "https://www.youtube.com/embed/dQw4w9WgXcQ"
    assert targets["YouTube Legacy Connect"] == "https://m.youtube.com/watch?v=dQw4w9WgXcQ"


def test_stealth_strategy_gets_a_pre_delay():
    descriptors = make_catalog().strategies_for(
        PlatformTag.YOUTUBE, MediaKind.VIDEO, "", "/tmp/x.mp4", "https://youtu.be/dQw4w9WgXcQ"
    )
    delays = {d.name: d.pre_delay for d in descriptors}
    assert delays["YouTube Stealth Desktop"] == 3.0
    assert delays["YouTube Mobile Client"] == 0.0


def test_cookie_strategies_only_when_configured():
    url = "https://www.instagram.com/reel/abc/"
    plain = make_catalog().strategies_for(PlatformTag.INSTAGRAM, MediaKind.VIDEO, "", "/tmp/x.mp4", url)
    assert all("--cookies-from-browser" not in d.args for d in plain)

    with_cookies = make_catalog(cookies_from_browser="firefox").strategies_for(
        PlatformTag.INSTAGRAM, MediaKind.VIDEO, "", "/tmp/x.mp4", url
    )
    assert with_cookies[0].name == "Instagram Browser Cookies"
    assert arg_after(with_cookies[0].args, "--cookies-from-browser") == "firefox"
    assert len(with_cookies) == len(plain) + 1


def test_instagram_audio_routes_to_fetch_then_transcode():
    plan = make_catalog().plan_for(
        PlatformTag.INSTAGRAM, MediaKind.AUDIO, "128kbps", "/tmp/downloads/reel_1.mp3", "https://www.instagram.com/reel/abc/"
    )

    assert isinstance(plan, FetchThenTranscode)
    assert plan.intermediate_path == "/tmp/downloads/reel_1.source.mp4"
    assert plan.fetch and all(d.media_kind is MediaKind.VIDEO for d in plan.fetch)
    assert all(d.output_path == plan.intermediate_path for d in plan.fetch)
    assert [d.program for d in plan.transcode] == ["ffmpeg"] * len(plan.transcode)
    assert len(plan.transcode) >= 2
    first = plan.transcode[0]
    assert first.args[-1] == "/tmp/downloads/reel_1.mp3"
    assert arg_after(first.args, "-i") == plan.intermediate_path
    assert arg_after(first.args, "-b:a") == "128k"


def test_transcode_variants_carry_the_size_cap():
    plan = make_catalog(max_filesize_mb=42).plan_for(
        PlatformTag.INSTAGRAM, MediaKind.AUDIO, "", "/tmp/downloads/reel_2.mp3", "https://www.instagram.com/reel/abc/"
    )
    for descriptor in plan.transcode:
        assert arg_after(descriptor.args, "-fs") == "42M"
        assert descriptor.args[-1] == "/tmp/downloads/reel_2.mp3"


def test_other_audio_requests_stay_flat():
    plan = make_catalog().plan_for(
        PlatformTag.TIKTOK, MediaKind.AUDIO, "", "/tmp/x.mp3", "https://www.tiktok.com/@u/video/1"
    )
    assert isinstance(plan, FlatAttempts)
    assert len(plan.descriptors) == len(CATALOG[PlatformTag.TIKTOK])


def test_descriptors_are_fresh_per_call():
    catalog = make_catalog()
    first = catalog.strategies_for(PlatformTag.TWITCH, MediaKind.VIDEO, "", "/tmp/a.mp4", "https://twitch.tv/v/1")
    second = catalog.strategies_for(PlatformTag.TWITCH, MediaKind.VIDEO, "", "/tmp/b.mp4", "https://twitch.tv/v/1")
    assert [d.output_path for d in first] == ["/tmp/a.mp4"] * 2
    assert [d.output_path for d in second] == ["/tmp/b.mp4"] * 2


def test_module_level_strategies_for_uses_given_settings():
    descriptors = strategies_for(
        PlatformTag.GENERIC, MediaKind.VIDEO, "", "/tmp/x.mp4", "https://a.b/c", settings=Settings(ytdlp_bin="/opt/yt-dlp")
    )
    assert descriptors[0].argv[0] == "/opt/yt-dlp"


@pytest.mark.parametrize(
    "quality,expected",
    [("1080p", 1080), ("360", 360), (" 720P ", 720), ("best", None), ("999p", 720), ("", 720), (None, 720)],
)
def test_video_height(quality, expected):
    assert video_height(quality) == expected


@pytest.mark.parametrize(
    "quality,expected",
    [("320kbps", 320), ("128k", 128), ("96", 96), ("best", 320), ("loud", 192), ("100kbps", 192), (None, 192)],
)
def test_audio_bitrate(quality, expected):
    assert audio_bitrate(quality) == expected
