from .job_tracker import JobStateError, JobTracker
from .stream_tracker import StreamTracker
from .video_library import VideoLibrary

__all__ = ["JobStateError", "JobTracker", "StreamTracker", "VideoLibrary"]
