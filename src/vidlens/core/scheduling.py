"""
Keyed polling cycles.

Every recurring request the trackers issue runs as a `PollHandle` owned by a
`PollScheduler`. A key identifies one cycle for one resource, e.g.
``("job-status", "video_1700000000000_42")``; scheduling a key that already has
a live cycle cancels the old one first, so two timers never poll the same
resource for the same purpose.
"""

import asyncio
from typing import Awaitable, Callable, Hashable, Iterable

import structlog

logger = structlog.get_logger()

Tick = Callable[[], Awaitable[None]]


class StopPolling(Exception):
    """Raised from a tick to end its own cycle."""


class PollHandle:
    """Handle for one scheduled polling cycle."""

    def __init__(
        self,
        key: Hashable,
        interval: float,
        tick: Tick,
        *,
        immediate: bool = False,
        stop_on: tuple[type[BaseException], ...] = (),
        on_finished: Callable[["PollHandle"], None] | None = None,
    ) -> None:
        self.key = key
        self.interval = interval
        self.ticks = 0
        self._tick = tick
        self._immediate = immediate
        self._stop_on = (StopPolling,) + tuple(stop_on)
        self._on_finished = on_finished
        self._active = True
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> "PollHandle":
        self._task = asyncio.create_task(self._run(), name=f"poll:{self.key}")
        return self

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("poll_cancelled", key=str(self.key), ticks=self.ticks)

    async def wait(self) -> None:
        """Wait for the underlying task to finish after cancellation."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        if not self._immediate:
            await asyncio.sleep(self.interval)

        while self._active:
            try:
                await self._tick()
            except self._stop_on as e:
                logger.info("poll_stopped", key=str(self.key), reason=str(e) or type(e).__name__)
                self._active = False
                break
            except Exception as e:
                logger.warning("poll_tick_failed", key=str(self.key), error=str(e))
            finally:
                self.ticks += 1

            if not self._active:
                break
            await asyncio.sleep(self.interval)

        if self._on_finished is not None:
            self._on_finished(self)


class PollScheduler:
    """Owns every polling cycle of one tracker, keyed by resource."""

    def __init__(self) -> None:
        self._handles: dict[Hashable, PollHandle] = {}

    def schedule(
        self,
        key: Hashable,
        interval: float,
        tick: Tick,
        *,
        immediate: bool = False,
        stop_on: tuple[type[BaseException], ...] = (),
    ) -> PollHandle:
        self.cancel(key)
        handle = PollHandle(
            key, interval, tick, immediate=immediate, stop_on=stop_on, on_finished=self._forget
        )
        self._handles[key] = handle
        logger.debug("poll_scheduled", key=str(key), interval=interval)
        return handle.start()

    def _forget(self, handle: PollHandle) -> None:
        # A cycle that ended on its own leaves the map; a newer handle for the key stays.
        if self._handles.get(handle.key) is handle:
            del self._handles[handle.key]

    def get(self, key: Hashable) -> PollHandle | None:
        return self._handles.get(key)

    def is_active(self, key: Hashable) -> bool:
        handle = self._handles.get(key)
        return handle is not None and handle.active

    def active_keys(self) -> list[Hashable]:
        return [key for key, handle in self._handles.items() if handle.active]

    def cancel(self, key: Hashable) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        was_active = handle.active
        handle.cancel()
        return was_active

    def cancel_many(self, keys: Iterable[Hashable]) -> None:
        # No await between cancellations: the whole group stops in one step.
        for key in list(keys):
            self.cancel(key)

    def cancel_all(self) -> None:
        self.cancel_many(self._handles.keys())

    async def shutdown(self) -> None:
        handles = list(self._handles.values())
        self.cancel_all()
        await asyncio.gather(*(handle.wait() for handle in handles))
