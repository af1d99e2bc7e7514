from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class LogEntry(BaseModel):
    """One line of a stream's processing log, as received."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    created_at: datetime | None = None
    message: str = ""
    log_type: str | None = None
    frame_id: int | None = None

    @field_validator("created_at", "frame_id", mode="wrap")
    @classmethod
    def _drop_unparseable(cls, value: Any, handler):
        try:
            return handler(value)
        except ValidationError:
            return None

    @field_validator("message", mode="before")
    @classmethod
    def _message_as_text(cls, value: Any) -> str:
        return "" if value is None else str(value)


class StreamRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stream_id: str
    name: str = ""
    ivs_url: str = ""
    status: str = "inactive"
    processing_progress: int = 0
    alert_count: int = 0
    alerts: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime | None = None
    last_active_at: datetime | None = None
    thumbnail_url: str | None = None

    @field_validator("processing_progress", "alert_count", mode="before")
    @classmethod
    def _none_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _status_or_inactive(cls, value: Any) -> str:
        return str(value or "inactive").lower()


class StreamStatusResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    progress: int = 0

    @field_validator("progress", mode="before")
    @classmethod
    def _progress_or_zero(cls, value: Any) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0


class StreamRegisterRequest(BaseModel):
    name: str
    ivs_url: str
    stream_id: str
