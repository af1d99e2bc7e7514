"""
Upload-and-analyze job tracking.

One tracker drives one job at a time through
``IDLE -> UPLOADING -> PROCESSING -> COMPLETE`` (``ERROR`` from the two active
states, ``reset()`` back to ``IDLE``). While processing, two independent
polling cycles run for the job id: status and logs. Completion cancels both in
the same step.
"""

import asyncio
from functools import partial
from pathlib import Path
from typing import Callable

import structlog

from vidlens.core.config import settings
from vidlens.core.scheduling import PollScheduler, StopPolling
from vidlens.models.chat import ChatMessage
from vidlens.models.job import Job, JobState, generate_job_id
from vidlens.services.backend import BackendClient, BackendError, ResourceGone
from vidlens.services.chat import ChatSession

logger = structlog.get_logger()

MSG_NO_FILE = "Please select a file to upload"
MSG_STARTED = "Video upload and analysis started!"
MSG_RESUMED = "Resuming analysis from where it was interrupted."
MSG_COMPLETE = "Video analysis complete! You can now chat with the AI about the video content."
MSG_CHAT_FAILED = "Sorry, I could not process your request at this time."

Listener = Callable[[Job], None]


class JobStateError(RuntimeError):
    """Operation not allowed in the job's current state."""


def status_key(job_id: str) -> tuple[str, str]:
    return ("job-status", job_id)


def logs_key(job_id: str) -> tuple[str, str]:
    return ("job-logs", job_id)


class JobTracker:
    def __init__(
        self,
        backend: BackendClient,
        scheduler: PollScheduler | None = None,
        status_interval: float | None = None,
        logs_interval: float | None = None,
    ) -> None:
        self.backend = backend
        self.scheduler = scheduler or PollScheduler()
        self.status_interval = settings.job_status_poll_seconds if status_interval is None else status_interval
        self.logs_interval = settings.job_logs_poll_seconds if logs_interval is None else logs_interval
        self.job = Job()
        self.chat = ChatSession(backend.ask_video, MSG_CHAT_FAILED, use_error_detail=False)
        self._upload: asyncio.Task | None = None
        self._listeners: list[Listener] = []

    async def __aenter__(self) -> "JobTracker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def state(self) -> JobState:
        return self.job.state

    @property
    def error(self) -> str | None:
        return self.job.error

    @property
    def messages(self) -> list[ChatMessage]:
        return self.chat.messages

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.job)
            except Exception as e:
                logger.error("job_listener_failed", error=str(e))

    def select_file(self, path: str | Path) -> None:
        if self.job.active:
            raise JobStateError(f"cannot change file while {self.job.state.value}")
        self.job.file = Path(path)
        self.job.upload_progress = 0
        self.job.error = None
        self._notify()

    async def submit(self, file: str | Path | None = None) -> bool:
        """Upload the selected file and start tracking its analysis."""
        if self.job.state != JobState.IDLE:
            raise JobStateError(f"cannot submit while {self.job.state.value}; reset first")
        if file is not None:
            self.select_file(file)
        if self.job.file is None:
            self.job.error = MSG_NO_FILE
            self._notify()
            return False

        job_id = generate_job_id()
        job = self.job
        job.id = job_id
        job.state = JobState.UPLOADING
        job.upload_progress = 0
        job.processing_progress = 0
        job.logs = []
        job.resumed = False
        job.error = None
        self.chat.bind(job_id, clear=False)
        logger.info("job_submitted", job_id=job_id, file=job.file.name)
        self._notify()

        upload = self._upload = asyncio.create_task(
            self.backend.upload_video(job.file, job_id, on_progress=partial(self._on_upload_progress, job_id))
        )
        try:
            response = await upload
        except asyncio.CancelledError:
            if self.job.id != job_id:
                logger.info("job_upload_aborted", job_id=job_id)
                return False
            raise
        except BackendError as e:
            if self.job.id != job_id:
                return False
            self._cancel_polls(job_id)
            job.state = JobState.ERROR
            job.error = e.detail or "Failed to upload video"
            self.chat.say(f"Error: {e.detail or 'Failed to upload and analyze video'}")
            logger.error("job_upload_failed", job_id=job_id, error=str(e))
            self._notify()
            return False
        finally:
            if self._upload is upload:
                self._upload = None

        if self.job.id != job_id or job.state != JobState.UPLOADING:
            return False

        job.upload_progress = 100
        job.resumed = response.resumed
        job.state = JobState.PROCESSING
        self.chat.say(MSG_STARTED)
        if response.resumed:
            self.chat.say(MSG_RESUMED)

        self.scheduler.schedule(
            status_key(job_id), self.status_interval, partial(self._poll_status, job_id), stop_on=(ResourceGone,)
        )
        self.scheduler.schedule(
            logs_key(job_id), self.logs_interval, partial(self._poll_logs, job_id), stop_on=(ResourceGone,)
        )
        logger.info("job_processing", job_id=job_id, resumed=response.resumed)
        self._notify()
        return True

    def _on_upload_progress(self, job_id: str, percent: int) -> None:
        if self.job.id != job_id or self.job.state != JobState.UPLOADING:
            return
        self.job.upload_progress = percent
        self._notify()

    async def _poll_status(self, job_id: str) -> None:
        status = await self.backend.get_video_status(job_id)
        job = self.job
        if job.id != job_id or job.state != JobState.PROCESSING:
            raise StopPolling("job superseded")

        job.processing_progress = status.progress
        if status.finished:
            job.processing_progress = 100
            job.state = JobState.COMPLETE
            self._cancel_polls(job_id)
            self.chat.say(MSG_COMPLETE)
            logger.info("job_completed", job_id=job_id)
        self._notify()

    async def _poll_logs(self, job_id: str) -> None:
        logs = await self.backend.get_video_logs(job_id)
        if self.job.id != job_id or self.job.state != JobState.PROCESSING:
            raise StopPolling("job superseded")
        # Each response is a full snapshot.
        self.job.logs = list(logs)
        self._notify()

    def _cancel_polls(self, job_id: str) -> None:
        self.scheduler.cancel_many([status_key(job_id), logs_key(job_id)])

    def _abort_upload(self) -> None:
        if self._upload is not None and not self._upload.done():
            self._upload.cancel()

    def reset(self) -> None:
        """Back to IDLE. The chat transcript is kept."""
        job_id = self.job.id
        self.job = Job()
        self._abort_upload()
        if job_id is not None:
            self._cancel_polls(job_id)
        logger.info("job_reset", job_id=job_id)
        self._notify()

    async def ask(self, question: str) -> ChatMessage | None:
        if self.job.id is None:
            return None
        if self.chat.context_id != self.job.id:
            self.chat.bind(self.job.id, clear=False)
        return await self.chat.ask(question)

    async def close(self) -> None:
        self._abort_upload()
        await self.scheduler.shutdown()
        self._listeners.clear()
