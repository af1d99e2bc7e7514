from .chat import ChatMessage, Sender
from .job import Job, JobState, generate_job_id
from .stream import Stream, StreamDetail, StreamMetrics, StreamState

__all__ = [
    "ChatMessage",
    "Job",
    "JobState",
    "Sender",
    "Stream",
    "StreamDetail",
    "StreamMetrics",
    "StreamState",
    "generate_job_id",
]
