from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UploadResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    resumed: bool = False
    message: str | None = None


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    processing: bool = False
    progress: int = 0
    has_data: bool = False

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp_progress(cls, value: Any) -> int:
        try:
            return max(0, min(100, int(round(float(value)))))
        except (TypeError, ValueError):
            return 0

    @property
    def finished(self) -> bool:
        return not self.processing and self.has_data


class JobLogsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    logs: list[str] = Field(default_factory=list)


class ChatAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    answer: str


class Alert(BaseModel):
    model_config = ConfigDict(extra="ignore")

    frame_id: int | None = None
    timestamp: float | None = None
    description: str = ""
    # Set upstream; the client never decides what counts as confirmed.
    is_confirmed_alert: bool = False


class VideoRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    video_id: str
    status: str | None = None
    alert_count: int = 0
    created_at: datetime | None = None
    thumbnail_url: str | None = None


class VideoDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    video_id: str | None = None
    duration_seconds: float | None = None
    resolution: str | None = None
    size_bytes: int | None = None
    status: str | None = None
    alert_count: int = 0
    alerts: list[Alert] = Field(default_factory=list)
    created_at: datetime | None = None
    video_url: str | None = None
    thumbnail_url: str | None = None

    def confirmed_alerts(self) -> list[Alert]:
        return [alert for alert in self.alerts if alert.is_confirmed_alert]
