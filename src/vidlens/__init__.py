"""Async client for video analysis jobs, live streams and grounded chat."""

__version__ = "1.0.0"
