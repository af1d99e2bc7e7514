from .job import (
    Alert,
    ChatAnswer,
    JobLogsResponse,
    JobStatusResponse,
    UploadResponse,
    VideoDetails,
    VideoRecord,
)
from .stream import LogEntry, StreamRecord, StreamRegisterRequest, StreamStatusResponse

__all__ = [
    "Alert",
    "ChatAnswer",
    "JobLogsResponse",
    "JobStatusResponse",
    "LogEntry",
    "StreamRecord",
    "StreamRegisterRequest",
    "StreamStatusResponse",
    "UploadResponse",
    "VideoDetails",
    "VideoRecord",
]
