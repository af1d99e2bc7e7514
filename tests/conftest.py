"""
Shared fixtures for vidlens tests.
"""

import asyncio
import os
from pathlib import Path
from typing import Any, Callable, Generator

# ============================================================================
# Set test environment BEFORE any vidlens imports
# ============================================================================
os.environ["API_BASE_URL"] = "http://testserver"
os.environ["API_TOKEN"] = "test-token"
os.environ["PLAYER_LIBRARY_MODULE"] = "fake_ivs_player"
os.environ["PLAYER_SOFT_TIMEOUT_SECONDS"] = "0.05"
os.environ["PLAYER_RETRY_DELAY_SECONDS"] = "0.01"

# Clear cached settings before any import
import vidlens.core.config
vidlens.core.config.get_settings.cache_clear()

import httpx
import pytest
from faker import Faker

from vidlens.services.backend import BackendClient

fake = Faker()


# ============================================================================
# Fake backend
# ============================================================================


class FakeBackend:
    """
    Route table for httpx.MockTransport.

    A route holds a list of responses; each request consumes the first one and
    the last one is repeated. A response is a dict/list (200 JSON), a
    ``(status, json)`` tuple, an exception instance (raised as a transport
    failure) or a callable receiving the request and returning one of those.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *responses: Any) -> None:
        self.routes[(method, path)] = list(responses) or [{}]

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def last(self, method: str, path: str) -> httpx.Request | None:
        matching = [r for r in self.requests if r.method == method and r.url.path == path]
        return matching[-1] if matching else None

    def _build(self, request: httpx.Request, reply: Any) -> httpx.Response:
        if callable(reply) and not isinstance(reply, (dict, list, tuple)):
            reply = reply(request)
        if isinstance(reply, httpx.Response):
            return reply
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, tuple):
            status, body = reply
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=reply)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"detail": "Not found"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        return self._build(request, reply)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def backend(fake_backend: FakeBackend) -> Generator[BackendClient, None, None]:
    client = BackendClient(transport=httpx.MockTransport(fake_backend.handler))
    yield client
    asyncio.run(client.close())


# ============================================================================
# Async helpers
# ============================================================================


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds, failing after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def run() -> Callable:
    return asyncio.run


# ============================================================================
# File System Fixtures
# ============================================================================


@pytest.fixture
def sample_video_file(tmp_path: Path) -> Path:
    """Create a sample video file (fake bytes)."""
    video_path = tmp_path / "sample.mp4"
    # MP4 magic bytes + padding
    magic = b"\x00\x00\x00\x1c\x66\x74\x79\x70\x69\x73\x6f\x6d"
    video_path.write_bytes(magic + os.urandom(200 * 1024))
    return video_path


# ============================================================================
# Test Data Fixtures
# ============================================================================


@pytest.fixture
def stream_record() -> dict:
    stream_id = f"stream_{fake.random_number(digits=13, fix_len=True)}"
    return {
        "stream_id": stream_id,
        "name": fake.word().title() + " Cam",
        "ivs_url": "https://us-west-2.live-video.net/api/video/v1/aws.ivs.us-west-2.channel.abc123.m3u8",
        "status": "inactive",
        "processing_progress": 0,
        "alert_count": 0,
        "created_at": "2024-05-01T10:00:00Z",
    }


@pytest.fixture
def stream_logs() -> list[dict]:
    return [
        {"created_at": "2024-05-01T10:00:01Z", "message": "Frame analysis started", "log_type": "info", "frame_id": 2},
        {"created_at": "2024-05-01T10:00:03Z", "message": "Low light. A person was detected near the gate. Tracking.", "log_type": "warning", "frame_id": 5},
        {"created_at": "2024-05-01T10:00:02Z", "message": "Decoder hiccup", "log_type": "error", "frame_id": 3},
    ]
