import enum
import random
import time
from pathlib import Path

from pydantic import BaseModel, Field


class JobState(str, enum.Enum):
    IDLE = "IDLE"
    UPLOADING = "UPLOADING"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


_issued_ids: set[str] = set()


def generate_job_id() -> str:
    """Client-side id in the ``video_<epoch-ms>_<0-999>`` format the backend expects, unique per process."""
    while True:
        job_id = f"video_{int(time.time() * 1000)}_{random.randint(0, 999)}"
        if job_id not in _issued_ids:
            _issued_ids.add(job_id)
            return job_id


class Job(BaseModel):
    """One upload-and-analysis unit of work, owned by a single JobTracker."""

    id: str | None = None
    file: Path | None = None
    state: JobState = JobState.IDLE
    # Two independent axes; presentation picks which one to show.
    upload_progress: int = 0
    processing_progress: int = 0
    logs: list[str] = Field(default_factory=list)
    resumed: bool = False
    error: str | None = None

    @property
    def active(self) -> bool:
        return self.state in (JobState.UPLOADING, JobState.PROCESSING)
