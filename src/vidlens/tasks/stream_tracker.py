"""
Live stream lifecycle tracking.

Per stream: ``inactive -> starting -> active -> stopping -> inactive`` with
``error`` reachable from starting/active. A status cycle runs for every
started stream until it is stopped, deleted or its detail view is closed;
opening the detail of an active stream resumes it. A log refresh cycle runs
only while an active stream's detail view is open. The open detail holds a
second copy of the stream; every mutation goes through `_entries()` so both
copies change together.
"""

import time
from datetime import datetime
from functools import partial

import structlog

from vidlens.core.config import settings
from vidlens.core.scheduling import PollScheduler, StopPolling
from vidlens.models.chat import ChatMessage
from vidlens.models.stream import Stream, StreamDetail, StreamState
from vidlens.schemas.stream import LogEntry, StreamRecord
from vidlens.services.backend import BackendClient, BackendError, ResourceGone
from vidlens.services.chat import STREAM_GREETING, ChatSession
from vidlens.services.metrics import extract_stream_metrics
from vidlens.services.url_normalizer import normalize_stream_url

logger = structlog.get_logger()

MSG_EMPTY_URL = "Please enter a stream URL"
MSG_CHAT_FAILED = "Sorry, I encountered an error while processing your question."


def status_key(stream_id: str) -> tuple[str, str]:
    return ("stream-status", stream_id)


def logs_key(stream_id: str) -> tuple[str, str]:
    return ("stream-logs", stream_id)


def generate_stream_id() -> str:
    return f"stream_{int(time.time() * 1000)}"


class StreamTracker:
    def __init__(
        self,
        backend: BackendClient,
        scheduler: PollScheduler | None = None,
        status_interval: float | None = None,
        logs_interval: float | None = None,
    ) -> None:
        self.backend = backend
        self.scheduler = scheduler or PollScheduler()
        self.status_interval = settings.stream_status_poll_seconds if status_interval is None else status_interval
        self.logs_interval = settings.stream_logs_poll_seconds if logs_interval is None else logs_interval
        self.streams: dict[str, Stream] = {}
        self.detail: StreamDetail | None = None
        self.chat = ChatSession(backend.ask_stream, MSG_CHAT_FAILED, use_error_detail=False)
        self.error: str | None = None
        self._detail_generation = 0

    async def __aenter__(self) -> "StreamTracker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _to_stream(self, record: StreamRecord, raw_url: str | None = None) -> Stream:
        known = self.streams.get(record.stream_id)
        if raw_url is None and known is not None and known.playback_url == normalize_stream_url(record.ivs_url):
            raw_url = known.raw_url
        return Stream.from_record(record, normalize_stream_url(record.ivs_url), raw_url=raw_url)

    def _entries(self, stream_id: str) -> list[Stream]:
        entries = []
        if stream_id in self.streams:
            entries.append(self.streams[stream_id])
        if self.detail is not None and self.detail.stream.stream_id == stream_id:
            entries.append(self.detail.stream)
        return entries

    def _set_state(self, stream_id: str, state: StreamState) -> None:
        for stream in self._entries(stream_id):
            stream.state = state

    def _state_of(self, stream_id: str) -> StreamState | None:
        entries = self._entries(stream_id)
        return entries[0].state if entries else None

    def _superseded(self, stream_id: str, expected: StreamState, tracked: bool) -> bool:
        if not tracked:
            return False
        return self._state_of(stream_id) != expected

    @property
    def detail_chat(self) -> list[ChatMessage]:
        return self.chat.messages

    # Collection

    async def refresh(self) -> bool:
        try:
            records = await self.backend.list_streams()
        except BackendError as e:
            logger.error("streams_fetch_failed", error=str(e))
            self.error = "Failed to load streams"
            return False
        self.streams = {record.stream_id: self._to_stream(record) for record in records}
        return True

    async def register(self, name: str, raw_url: str) -> Stream | None:
        self.error = None
        if not raw_url or not raw_url.strip():
            self.error = MSG_EMPTY_URL
            return None

        playback = normalize_stream_url(raw_url)
        name = (name or "").strip() or f"Stream {datetime.now():%H:%M:%S}"
        try:
            record = await self.backend.register_stream(name, playback, generate_stream_id())
        except BackendError as e:
            logger.error("stream_register_failed", error=str(e))
            self.error = e.detail or f"Failed to register stream: {e}"
            return None

        stream = Stream.from_record(record, normalize_stream_url(record.ivs_url or playback), raw_url=raw_url)
        self.streams[stream.stream_id] = stream
        return stream

    # Lifecycle

    async def start(self, stream_id: str) -> bool:
        self.error = None
        tracked = bool(self._entries(stream_id))
        self._set_state(stream_id, StreamState.STARTING)
        try:
            await self.backend.start_stream(stream_id)
        except BackendError as e:
            logger.error("stream_start_failed", stream_id=stream_id, error=str(e))
            if self._superseded(stream_id, StreamState.STARTING, tracked):
                return False
            self._set_state(stream_id, StreamState.ERROR)
            self.error = e.detail or "Failed to start stream"
            return False

        if self._superseded(stream_id, StreamState.STARTING, tracked):
            # A stop or delete issued meanwhile owns the stream now.
            logger.info("stream_start_superseded", stream_id=stream_id)
            return False
        self._set_state(stream_id, StreamState.ACTIVE)
        self._watch_status(stream_id)
        return True

    async def stop(self, stream_id: str) -> bool:
        self.error = None
        # Cancel before the request so a failed stop cannot orphan the cycle.
        self.scheduler.cancel(status_key(stream_id))
        previous = self._state_of(stream_id)
        self._set_state(stream_id, StreamState.STOPPING)
        try:
            await self.backend.stop_stream(stream_id)
        except BackendError as e:
            logger.error("stream_stop_failed", stream_id=stream_id, error=str(e))
            if previous is not None:
                self._set_state(stream_id, previous)
            self.error = e.detail or "Failed to stop stream"
            return False

        self._set_state(stream_id, StreamState.INACTIVE)
        return True

    def _watch_status(self, stream_id: str) -> None:
        self.scheduler.schedule(
            status_key(stream_id),
            self.status_interval,
            partial(self._poll_status, stream_id),
            stop_on=(ResourceGone,),
        )

    async def _poll_status(self, stream_id: str) -> None:
        status = await self.backend.get_stream_status(stream_id)
        entries = self._entries(stream_id)
        if not entries:
            raise StopPolling("stream no longer tracked")
        for stream in entries:
            stream.state = StreamState.from_backend(status.status, stream.state)
            stream.processing_progress = status.progress

    # Detail view

    async def open_detail(self, stream_id: str) -> StreamDetail | None:
        self.close_detail()
        generation = self._detail_generation
        try:
            record = await self.backend.get_stream(stream_id)
        except BackendError as e:
            logger.error("stream_detail_failed", stream_id=stream_id, error=str(e))
            self.error = "Failed to load stream details"
            return None
        if generation != self._detail_generation:
            return None

        detail = StreamDetail(stream=self._to_stream(record))
        self.detail = detail
        self.chat.bind(stream_id)
        self.chat.say(STREAM_GREETING)

        await self._load_logs(stream_id, generation)
        if self.detail is not detail:
            return None

        if detail.stream.state == StreamState.ACTIVE:
            if not self.scheduler.is_active(status_key(stream_id)):
                self._watch_status(stream_id)
            self.scheduler.schedule(
                logs_key(stream_id),
                self.logs_interval,
                partial(self._refresh_logs, stream_id, generation),
                stop_on=(ResourceGone,),
            )
        return detail

    def _set_logs(self, logs: list[LogEntry]) -> None:
        self.detail.logs = list(logs)
        self.detail.metrics = extract_stream_metrics(self.detail.logs)

    def _detail_open_for(self, stream_id: str, generation: int) -> bool:
        return (
            self.detail is not None
            and self.detail.stream.stream_id == stream_id
            and generation == self._detail_generation
        )

    async def _load_logs(self, stream_id: str, generation: int) -> None:
        try:
            logs = await self.backend.get_stream_logs(stream_id)
        except BackendError as e:
            logger.error("stream_logs_failed", stream_id=stream_id, error=str(e))
            if self._detail_open_for(stream_id, generation):
                self.error = f"Failed to load stream logs: {e.user_message}"
                self._set_logs([])
            return
        if self._detail_open_for(stream_id, generation):
            self._set_logs(logs)

    async def _refresh_logs(self, stream_id: str, generation: int) -> None:
        if not self._detail_open_for(stream_id, generation):
            raise StopPolling("detail closed")
        logs = await self.backend.get_stream_logs(stream_id)
        if not self._detail_open_for(stream_id, generation):
            raise StopPolling("detail closed")
        self._set_logs(logs)

    def close_detail(self) -> None:
        self._detail_generation += 1
        if self.detail is not None:
            stream_id = self.detail.stream.stream_id
            self.scheduler.cancel_many([logs_key(stream_id), status_key(stream_id)])
            logger.debug("stream_detail_closed", stream_id=self.detail.stream.stream_id)
        self.detail = None
        self.chat.bind(None)
        self.chat.clear()

    # Edits

    async def update_url(self, stream_id: str, raw_url: str) -> bool:
        self.error = None
        if not raw_url or not raw_url.strip():
            self.error = MSG_EMPTY_URL
            return False

        playback = normalize_stream_url(raw_url)
        try:
            await self.backend.update_stream_url(stream_id, playback)
        except BackendError as e:
            logger.error("stream_url_update_failed", stream_id=stream_id, error=str(e))
            self.error = f"Failed to update stream URL: {e.user_message}"
            return False

        for stream in self._entries(stream_id):
            stream.raw_url = raw_url
            stream.playback_url = playback
        return True

    async def delete(self, stream_id: str) -> bool:
        self.error = None
        try:
            await self.backend.delete_stream(stream_id)
        except BackendError as e:
            logger.error("stream_delete_failed", stream_id=stream_id, error=str(e))
            self.error = "Failed to delete stream"
            return False

        self.scheduler.cancel(status_key(stream_id))
        self.streams.pop(stream_id, None)
        if self.detail is not None and self.detail.stream.stream_id == stream_id:
            self.close_detail()
        return True

    async def ask(self, stream_id: str, question: str) -> ChatMessage | None:
        if self.chat.context_id != stream_id:
            self.chat.bind(stream_id)
        return await self.chat.ask(question)

    async def close(self) -> None:
        self.close_detail()
        await self.scheduler.shutdown()
