"""
Canonical playback URLs for live streams.

Users paste whatever they have at hand: the playback URL itself, a playback
endpoint without a scheme, the console page of the channel, the channel ARN,
or a host that merely looks like the streaming service. The rules below are
tried in order and the first one that matches wins. The order matters; do not
reshuffle it.
"""

import re

import structlog

from vidlens.core.config import settings

logger = structlog.get_logger()

PLAYBACK_SUFFIX = ".m3u8"
DEFAULT_STREAM_PATH = "stream.m3u8"

_PLAYLIST_RE = re.compile(r"^https://.*\.m3u8(\?.*)?$")
_LIVE_VIDEO_RE = re.compile(r"^https://.*live-video\.net/.*$")
_CONSOLE_CHANNEL_RE = re.compile(r"channel/([a-zA-Z0-9]+)")
_CONSOLE_REGION_RE = re.compile(r"region=([a-z0-9-]+)")
_ARN_RE = re.compile(r"arn:aws:ivs:([a-z0-9-]+):[0-9]+:channel/([a-zA-Z0-9]+)")


def playback_url(region: str, channel_id: str) -> str:
    return f"https://{region}.live-video.net/api/video/v1/aws.ivs.{region}.channel.{channel_id}{PLAYBACK_SUFFIX}"


def _force_https(url: str) -> str:
    if url.startswith("https://"):
        return url
    if url.startswith("http://"):
        url = url[len("http://"):]
    return f"https://{url}"


def normalize_stream_url(url: str | None, default_region: str | None = None) -> str:
    """Return the canonical playback URL for ``url``, or ``url`` itself when nothing matches."""
    if not url:
        return ""
    url = url.strip()
    region_fallback = default_region or settings.default_region

    # Already a playlist or a playback host.
    if _PLAYLIST_RE.match(url) or _LIVE_VIDEO_RE.match(url):
        return url

    # Playback endpoint, possibly missing its scheme.
    if "playback." in url and "ivs" in url:
        return _force_https(url)

    # Console page of a channel.
    if "console.aws.amazon.com/ivs" in url:
        channel = _CONSOLE_CHANNEL_RE.search(url)
        if channel:
            region = _CONSOLE_REGION_RE.search(url)
            result = playback_url(region.group(1) if region else region_fallback, channel.group(1))
            logger.debug("stream_url_from_console", url=url, playback_url=result)
            return result

    # Channel ARN.
    arn = _ARN_RE.search(url)
    if "arn:aws:ivs:" in url and arn:
        result = playback_url(arn.group(1), arn.group(2))
        logger.debug("stream_url_from_arn", url=url, playback_url=result)
        return result

    if PLAYBACK_SUFFIX in url:
        return _force_https(url)

    # Looks like the streaming service but has no playlist suffix.
    if "ivs" in url:
        if not url.endswith("/"):
            url = url + "/"
        result = _force_https(url + DEFAULT_STREAM_PATH)
        logger.debug("stream_url_standardized", playback_url=result)
        return result

    logger.debug("stream_url_unrecognized", url=url)
    return url
