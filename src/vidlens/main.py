"""
vidlens console runner - tracks analysis jobs and live streams from a terminal.
"""

import argparse
import asyncio
import logging
import signal
import sys

import structlog

from vidlens.core.config import settings
from vidlens.models.job import Job, JobState
from vidlens.services.backend import BackendClient
from vidlens.services.url_normalizer import normalize_stream_url
from vidlens.tasks.job_tracker import JobTracker
from vidlens.tasks.stream_tracker import StreamTracker
from vidlens.tasks.video_library import VideoLibrary
from vidlens.utils.formatting import format_bytes, format_duration, format_offset

logger = structlog.get_logger()


def configure_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


class JobPrinter:
    """Prints progress changes and log lines that were not printed yet."""

    def __init__(self, out=sys.stdout) -> None:
        self.out = out
        self._printed_logs = 0
        self._last = None

    def __call__(self, job: Job) -> None:
        snapshot = (job.state, job.upload_progress, job.processing_progress)
        if snapshot != self._last:
            self._last = snapshot
            if job.state == JobState.UPLOADING:
                print(f"Uploading... {job.upload_progress}%", file=self.out)
            elif job.state == JobState.PROCESSING:
                print(f"Processing video... {job.processing_progress}%", file=self.out)
            elif job.state == JobState.COMPLETE:
                print("Analysis complete.", file=self.out)
            elif job.state == JobState.ERROR:
                print(f"Error: {job.error}", file=self.out)

        # Snapshots may shrink when the backend restarts an analysis.
        if len(job.logs) < self._printed_logs:
            self._printed_logs = 0
        for line in job.logs[self._printed_logs:]:
            print(f"  | {line}", file=self.out)
        self._printed_logs = len(job.logs)


async def run_analyze(path: str, questions: list[str], stop: asyncio.Event) -> int:
    async with BackendClient() as backend, JobTracker(backend) as tracker:
        tracker.add_listener(JobPrinter())
        submit = asyncio.create_task(tracker.submit(path))
        stopper = asyncio.create_task(stop.wait())
        await asyncio.wait({submit, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if not submit.done():
            tracker.reset()
        if not await submit:
            stopper.cancel()
            print(tracker.error or "Upload aborted", file=sys.stderr)
            return 1

        while tracker.state == JobState.PROCESSING and not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
        stopper.cancel()

        if tracker.state != JobState.COMPLETE:
            logger.info("analyze_interrupted", job_id=tracker.job.id)
            return 1

        for question in questions:
            reply = await tracker.ask(question)
            if reply is not None:
                print(f"Q: {question}\nA: {reply.text}")
        return 0


async def run_streams() -> int:
    async with BackendClient() as backend, StreamTracker(backend) as tracker:
        if not await tracker.refresh():
            print(tracker.error, file=sys.stderr)
            return 1
        for stream in tracker.streams.values():
            detail = await tracker.open_detail(stream.stream_id)
            metrics = detail.metrics if detail else None
            print(f"{stream.stream_id}  {stream.state.value:<9} {stream.name}")
            print(f"    {stream.playback_url}")
            if metrics is not None:
                print(
                    f"    logs={metrics.total_logs} errors={metrics.error_count} "
                    f"warnings={metrics.warning_count} frames={metrics.frames_processed}"
                )
                if metrics.recent_activity:
                    print(f"    {metrics.recent_activity}")
            tracker.close_detail()
        return 0


async def run_videos(video_id: str | None = None) -> int:
    async with BackendClient() as backend:
        library = VideoLibrary(backend)
        if video_id is None:
            if not await library.refresh():
                print(library.error, file=sys.stderr)
                return 1
            for video in library.videos:
                print(f"{video.video_id}  {video.status or 'unknown':<10} alerts={video.alert_count}")
            return 0

        details = await library.open_detail(video_id)
        if details is None:
            print(library.error or f"Video {video_id} not found", file=sys.stderr)
            return 1
        print(f"{video_id}  {details.resolution or '-'}  {format_duration(details.duration_seconds)}")
        print(f"    size={format_bytes(details.size_bytes)} alerts={details.alert_count}")
        for alert in details.confirmed_alerts():
            print(f"    [{format_offset(alert.timestamp)}] {alert.description}")
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vidlens", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="upload a video and follow its analysis")
    analyze.add_argument("file")
    analyze.add_argument("--ask", action="append", default=[], metavar="QUESTION")

    sub.add_parser("streams", help="list registered streams with log metrics")

    videos = sub.add_parser("videos", help="list processed videos, or show one with its confirmed alerts")
    videos.add_argument("--show", metavar="VIDEO_ID")

    normalize = sub.add_parser("normalize", help="print the canonical playback URL")
    normalize.add_argument("url")
    return parser


async def _main(args: argparse.Namespace) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            pass

    if args.command == "analyze":
        return await run_analyze(args.file, args.ask, stop)
    if args.command == "videos":
        return await run_videos(args.show)
    return await run_streams()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.debug)

    if args.command == "normalize":
        print(normalize_stream_url(args.url))
        return 0

    logger.info("runner_starting", command=args.command, api=settings.api_base_url)
    code = asyncio.run(_main(args))
    logger.info("runner_stopped", code=code)
    return code


if __name__ == "__main__":
    sys.exit(main())
