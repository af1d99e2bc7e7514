import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, alias_generators

from vidlens.schemas.stream import LogEntry, StreamRecord


class StreamState(str, enum.Enum):
    INACTIVE = "inactive"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    ERROR = "error"

    @classmethod
    def from_backend(cls, value: str | None, default: "StreamState") -> "StreamState":
        """Map a backend status string; only inactive/active/error are reported upstream."""
        try:
            state = cls(str(value or "").lower())
        except ValueError:
            return default
        if state in (cls.STARTING, cls.STOPPING):
            return default
        return state


class StreamMetrics(BaseModel):
    """Summary counters derived from a stream's log snapshot."""

    model_config = ConfigDict(
        alias_generator=alias_generators.to_camel,
        populate_by_name=True,
        frozen=True,
    )

    total_logs: int = 0
    error_count: int = 0
    warning_count: int = 0
    frames_processed: int = 0
    last_processed_time: datetime | None = None
    recent_activity: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Stream(BaseModel):
    stream_id: str
    name: str = ""
    raw_url: str = ""
    playback_url: str = ""
    state: StreamState = StreamState.INACTIVE
    processing_progress: int = 0
    alert_count: int = 0
    alerts: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime | None = None
    last_active_at: datetime | None = None
    thumbnail_url: str | None = None

    @classmethod
    def from_record(cls, record: StreamRecord, playback_url: str, raw_url: str | None = None) -> "Stream":
        return cls(
            stream_id=record.stream_id,
            name=record.name,
            raw_url=raw_url if raw_url is not None else record.ivs_url,
            playback_url=playback_url,
            state=StreamState.from_backend(record.status, StreamState.INACTIVE),
            processing_progress=record.processing_progress,
            alert_count=record.alert_count,
            alerts=list(record.alerts),
            created_at=record.created_at,
            last_active_at=record.last_active_at,
            thumbnail_url=record.thumbnail_url,
        )


class StreamDetail(BaseModel):
    """Lazily materialized state of an open stream detail view."""

    stream: Stream
    logs: list[LogEntry] = Field(default_factory=list)
    metrics: StreamMetrics = Field(default_factory=StreamMetrics)
