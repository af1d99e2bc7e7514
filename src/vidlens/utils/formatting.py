_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def format_bytes(size: int | float | None, decimals: int = 2) -> str:
    if not size or size <= 0:
        return "0 Bytes"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(size / 1024**exponent, max(decimals, 0))
    text = f"{value:.{max(decimals, 0)}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[exponent]}"


def format_duration(seconds: int | float | None) -> str:
    if not seconds or seconds <= 0:
        return "0:00"
    minutes, remaining = divmod(int(seconds), 60)
    return f"{minutes}:{remaining:02d}"


def format_offset(seconds: int | float | None) -> str:
    """Alert position inside a video, ``m:ss``."""
    if seconds is None:
        return "Unknown time"
    minutes, remaining = divmod(int(seconds), 60)
    return f"{minutes}:{remaining:02d}"
