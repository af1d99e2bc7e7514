import json
import os
from pathlib import Path
from typing import Any, BinaryIO, Callable

import httpx
import structlog
from pydantic import ValidationError

from vidlens.core.config import settings
from vidlens.schemas import (
    ChatAnswer,
    JobLogsResponse,
    JobStatusResponse,
    LogEntry,
    StreamRecord,
    StreamRegisterRequest,
    StreamStatusResponse,
    UploadResponse,
    VideoDetails,
    VideoRecord,
)

logger = structlog.get_logger()

ProgressCallback = Callable[[int], None]


class BackendError(Exception):
    """Raised when a backend call fails at the transport or HTTP level."""

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    @property
    def user_message(self) -> str:
        return self.detail or str(self)


class ResourceGone(BackendError):
    """The resource no longer exists upstream (HTTP 404/410)."""


class ProgressReader:
    """Binary file wrapper that reports upload progress as httpx reads it."""

    def __init__(self, fileobj: BinaryIO, total: int, on_progress: ProgressCallback | None) -> None:
        self._file = fileobj
        self._total = total
        self._sent = 0
        self._last_percent = -1
        self._on_progress = on_progress

    def read(self, size: int = -1) -> bytes:
        chunk = self._file.read(size)
        if chunk:
            self._sent += len(chunk)
            self._report()
        elif self._total == 0:
            self._report()
        return chunk

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        position = self._file.seek(offset, whence)
        self._sent = min(self._sent, position)
        return position

    def tell(self) -> int:
        return self._file.tell()

    @property
    def percent(self) -> int:
        if self._total <= 0:
            return 100
        return min(100, round(self._sent * 100 / self._total))

    def _report(self) -> None:
        percent = self.percent
        if percent == self._last_percent or self._on_progress is None:
            return
        self._last_percent = percent
        self._on_progress(percent)


def _error_detail(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("detail") is not None:
        detail = payload["detail"]
        return detail if isinstance(detail, str) else json.dumps(detail)
    return None


def parse_stream_logs(payload: Any) -> list[LogEntry]:
    """Accept a list, a JSON-encoded list, or anything else (treated as empty)."""
    raw = payload.get("logs") if isinstance(payload, dict) else None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("stream_logs_unparseable")
            return []
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning("stream_logs_unexpected_format", kind=type(raw).__name__)
        return []

    entries = []
    for item in raw:
        try:
            entries.append(LogEntry.model_validate(item))
        except ValidationError as e:
            logger.warning("stream_log_entry_dropped", error=str(e))
    return entries


class BackendClient:
    """REST client for the analysis backend."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        token = token if token is not None else settings.api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            headers=headers,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("backend_transport_error", method=method, path=path, error=str(e))
            raise BackendError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            detail = _error_detail(response)
            error_cls = ResourceGone if response.status_code in (404, 410) else BackendError
            logger.warning("backend_http_error", method=method, path=path, status=response.status_code)
            raise error_cls(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )
        return response

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        response = await self._request(method, path, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"{method} {path} returned invalid JSON") from e

    @staticmethod
    def _parse(model, payload: Any, path: str):
        try:
            return model.model_validate(payload if payload is not None else {})
        except ValidationError as e:
            raise BackendError(f"Unexpected response from {path}: {e.error_count()} invalid field(s)") from e

    # Videos

    async def upload_video(
        self, path: Path, video_id: str, on_progress: ProgressCallback | None = None
    ) -> UploadResponse:
        path = Path(path)
        try:
            total = path.stat().st_size
            fileobj = path.open("rb")
        except OSError as e:
            raise BackendError(f"Cannot read {path.name}: {e}") from e

        with fileobj:
            reader = ProgressReader(fileobj, total, on_progress)
            logger.info("video_upload_started", video_id=video_id, size=total)
            payload = await self._json(
                "POST",
                "/video/upload",
                files={"file": (path.name, reader, "application/octet-stream")},
                data={"video_id": video_id},
                timeout=settings.upload_timeout_seconds,
            )
        logger.info("video_uploaded", video_id=video_id)
        return self._parse(UploadResponse, payload, "/video/upload")

    async def get_video_status(self, video_id: str) -> JobStatusResponse:
        path = f"/video/{video_id}/status"
        return self._parse(JobStatusResponse, await self._json("GET", path), path)

    async def get_video_logs(self, video_id: str) -> list[str]:
        path = f"/video/{video_id}/logs"
        payload = await self._json("GET", path)
        return self._parse(JobLogsResponse, payload, path).logs

    async def ask_video(self, video_id: str, question: str) -> str:
        payload = await self._json("POST", "/video/chat", json={"question": question, "video_id": video_id})
        return self._parse(ChatAnswer, payload, "/video/chat").answer

    async def list_videos(self) -> list[VideoRecord]:
        payload = await self._json("GET", "/video/all")
        if not isinstance(payload, list):
            raise BackendError("Unexpected response from /video/all")
        return [self._parse(VideoRecord, item, "/video/all") for item in payload]

    async def get_video_details(self, video_id: str) -> VideoDetails:
        path = f"/video/{video_id}/details"
        return self._parse(VideoDetails, await self._json("GET", path), path)

    async def delete_video(self, video_id: str) -> None:
        await self._request("DELETE", f"/video/{video_id}")
        logger.info("video_deleted", video_id=video_id)

    # Streams

    async def list_streams(self) -> list[StreamRecord]:
        payload = await self._json("GET", "/stream/all")
        if not isinstance(payload, list):
            raise BackendError("Unexpected response from /stream/all")
        return [self._parse(StreamRecord, item, "/stream/all") for item in payload]

    async def register_stream(self, name: str, ivs_url: str, stream_id: str) -> StreamRecord:
        body = StreamRegisterRequest(name=name, ivs_url=ivs_url, stream_id=stream_id)
        payload = await self._json("POST", "/stream/register", json=body.model_dump())
        logger.info("stream_registered", stream_id=stream_id)
        return self._parse(StreamRecord, payload, "/stream/register")

    async def get_stream(self, stream_id: str) -> StreamRecord:
        path = f"/stream/{stream_id}"
        return self._parse(StreamRecord, await self._json("GET", path), path)

    async def start_stream(self, stream_id: str) -> None:
        await self._request("POST", f"/stream/{stream_id}/start")
        logger.info("stream_start_requested", stream_id=stream_id)

    async def stop_stream(self, stream_id: str) -> None:
        await self._request("POST", f"/stream/{stream_id}/stop")
        logger.info("stream_stop_requested", stream_id=stream_id)

    async def get_stream_status(self, stream_id: str) -> StreamStatusResponse:
        path = f"/stream/status/{stream_id}"
        return self._parse(StreamStatusResponse, await self._json("GET", path), path)

    async def get_stream_logs(self, stream_id: str) -> list[LogEntry]:
        return parse_stream_logs(await self._json("GET", f"/stream/{stream_id}/logs"))

    async def update_stream_url(self, stream_id: str, ivs_url: str) -> None:
        await self._request("POST", f"/stream/{stream_id}/update", json={"ivs_url": ivs_url})
        logger.info("stream_url_updated", stream_id=stream_id)

    async def ask_stream(self, stream_id: str, query: str) -> str:
        path = f"/stream/{stream_id}/chat"
        payload = await self._json("POST", path, json={"query": query})
        return self._parse(ChatAnswer, payload, path).answer

    async def delete_stream(self, stream_id: str) -> None:
        await self._request("DELETE", f"/stream/{stream_id}")
        logger.info("stream_deleted", stream_id=stream_id)
