"""Summary counters for a stream's log snapshot."""

from datetime import datetime, timezone
from typing import Any, Iterable

import structlog
from pydantic import ValidationError

from vidlens.models.stream import StreamMetrics
from vidlens.schemas.stream import LogEntry

logger = structlog.get_logger()

ACTIVITY_KEYWORDS = ("detected", "observed", "recognized")
ACTIVITY_PREFIX_LENGTH = 100

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _as_entry(item: Any) -> LogEntry | None:
    if isinstance(item, LogEntry):
        return item
    if not isinstance(item, dict):
        return None
    try:
        return LogEntry.model_validate(item)
    except ValidationError:
        return None


def _sort_key(entry: LogEntry) -> datetime:
    ts = entry.created_at
    if ts is None:
        return _OLDEST
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def summarize_activity(message: str) -> str | None:
    if not message:
        return None
    lowered = message.lower()
    # Only these two words trigger the sentence search.
    if "detected" in lowered or "observed" in lowered:
        for sentence in message.split(". "):
            if any(word in sentence.lower() for word in ACTIVITY_KEYWORDS):
                return sentence
    return message[:ACTIVITY_PREFIX_LENGTH] + "..."


def extract_stream_metrics(logs: Iterable[Any] | None) -> StreamMetrics:
    """
    Reduce a log collection to summary counters.

    Entries may be ``LogEntry`` instances or raw dicts; anything else is
    skipped. The input sequence is never reordered.
    """
    if logs is None or isinstance(logs, (str, bytes, dict)):
        return StreamMetrics()
    try:
        entries = [entry for entry in (_as_entry(item) for item in logs) if entry is not None]
    except TypeError:
        logger.warning("metrics_input_not_iterable", kind=type(logs).__name__)
        return StreamMetrics()

    if not entries:
        return StreamMetrics()

    errors = sum(1 for entry in entries if entry.log_type == "error")
    warnings = sum(1 for entry in entries if entry.log_type == "warning")
    frames = max((entry.frame_id for entry in entries if entry.frame_id is not None), default=0)

    latest = max(entries, key=_sort_key)

    return StreamMetrics(
        total_logs=len(entries),
        error_count=errors,
        warning_count=warnings,
        frames_processed=max(frames, 0),
        last_processed_time=latest.created_at,
        recent_activity=summarize_activity(latest.message),
    )
