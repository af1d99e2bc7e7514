"""
Unit tests for vidlens/services/url_normalizer.py
"""

import pytest

from vidlens.services.url_normalizer import normalize_stream_url, playback_url


class TestRecognizedInputs:
    @pytest.mark.unit
    def test_playlist_url_is_unchanged(self):
        assert normalize_stream_url("https://a.b/c.m3u8") == "https://a.b/c.m3u8"

    @pytest.mark.unit
    def test_playlist_url_with_query_is_unchanged(self):
        url = "https://a.b/c.m3u8?token=xyz"
        assert normalize_stream_url(url) == url

    @pytest.mark.unit
    def test_live_video_host_is_unchanged(self):
        url = "https://abc.us-east-1.playback.live-video.net/api/video/v1/some/path"
        assert normalize_stream_url(url) == url

    @pytest.mark.unit
    def test_playback_endpoint_gets_https(self):
        result = normalize_stream_url("abc.playback.ivs.example.net/channel")
        assert result == "https://abc.playback.ivs.example.net/channel"

    @pytest.mark.unit
    def test_console_url_with_region(self):
        url = "https://console.aws.amazon.com/ivs/channel/abc123?region=us-east-1"
        assert normalize_stream_url(url) == (
            "https://us-east-1.live-video.net/api/video/v1/aws.ivs.us-east-1.channel.abc123.m3u8"
        )

    @pytest.mark.unit
    def test_console_url_without_region_uses_default(self):
        url = "https://console.aws.amazon.com/ivs/home#/channel/Chan99"
        assert normalize_stream_url(url) == (
            "https://us-west-2.live-video.net/api/video/v1/aws.ivs.us-west-2.channel.Chan99.m3u8"
        )

    @pytest.mark.unit
    def test_console_url_default_region_can_be_overridden(self):
        url = "https://console.aws.amazon.com/ivs/channel/abc123"
        assert normalize_stream_url(url, default_region="eu-central-1") == playback_url("eu-central-1", "abc123")

    @pytest.mark.unit
    def test_arn(self):
        arn = "arn:aws:ivs:eu-west-1:123456789012:channel/xyz789"
        assert normalize_stream_url(arn) == (
            "https://eu-west-1.live-video.net/api/video/v1/aws.ivs.eu-west-1.channel.xyz789.m3u8"
        )

    @pytest.mark.unit
    def test_playlist_without_scheme_gets_https(self):
        assert normalize_stream_url("cdn.example.com/live/index.m3u8") == "https://cdn.example.com/live/index.m3u8"

    @pytest.mark.unit
    def test_plain_http_playlist_is_upgraded(self):
        assert normalize_stream_url("http://cdn.example.com/x.m3u8") == "https://cdn.example.com/x.m3u8"

    @pytest.mark.unit
    def test_ivs_like_host_gets_default_suffix(self):
        assert normalize_stream_url("my-ivs-host.example.com/live") == "https://my-ivs-host.example.com/live/stream.m3u8"

    @pytest.mark.unit
    def test_ivs_like_host_with_trailing_slash(self):
        assert normalize_stream_url("http://my-ivs-host.example.com/") == "https://my-ivs-host.example.com/stream.m3u8"


class TestPassthrough:
    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["", None])
    def test_empty_input(self, value):
        assert normalize_stream_url(value) == ""

    @pytest.mark.unit
    def test_unrecognized_input_is_returned(self):
        assert normalize_stream_url("rtmp://media.example.com/app") == "rtmp://media.example.com/app"

    @pytest.mark.unit
    def test_surrounding_whitespace_is_stripped(self):
        assert normalize_stream_url("  https://a.b/c.m3u8 \n") == "https://a.b/c.m3u8"


class TestIdempotence:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value",
        [
            "https://a.b/c.m3u8",
            "abc.playback.ivs.example.net/channel",
            "https://console.aws.amazon.com/ivs/channel/abc123?region=us-east-1",
            "https://console.aws.amazon.com/ivs/dashboard",
            "arn:aws:ivs:eu-west-1:123456789012:channel/xyz789",
            "cdn.example.com/live/index.m3u8",
            "http://cdn.example.com/x.m3u8",
            "my-ivs-host.example.com/live",
            "my-ivs-host.example.com/live?x=1",
            "rtmp://media.example.com/app",
            "",
        ],
    )
    def test_normalizing_twice_changes_nothing(self, value):
        once = normalize_stream_url(value)
        assert normalize_stream_url(once) == once
