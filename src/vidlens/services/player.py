"""
Live stream player adapter.

Wraps an external playback library that is imported on demand. The library
handle is process-wide and loaded at most once (`get_loader()`); each
`PlayerAdapter` owns at most one live player instance and falls back to an
embedded frame whenever native playback cannot proceed.
"""

import asyncio
import enum
import html
import importlib
import sys
from types import ModuleType
from typing import Any, Callable

import structlog

from vidlens.core.config import settings

logger = structlog.get_logger()

MSG_PREPARING = "Preparing stream player..."
MSG_CONNECTING = "Connecting to stream..."
MSG_LOADING = "Stream is loading..."
MSG_STILL_CONNECTING = "Still connecting... This may take a moment"
MSG_RECONNECTING = "Reconnecting to stream..."
MSG_STREAM_ENDED = "Stream has ended"


class PlayerLoadError(Exception):
    """The playback library could not be imported."""


class PlayerStateError(RuntimeError):
    """Operation not allowed in the adapter's current state."""


class PlayerState(str, enum.Enum):
    UNLOADED = "UNLOADED"
    LOADING = "LOADING"
    READY = "READY"
    ATTACHED = "ATTACHED"
    PLAYING = "PLAYING"
    ERROR = "ERROR"
    FALLBACK_IFRAME = "FALLBACK_IFRAME"


class PlaybackLibraryLoader:
    """Load-once guard around the playback library module."""

    def __init__(self, module_name: str, import_fn: Callable[[str], Any] = importlib.import_module) -> None:
        self.module_name = module_name
        self._import_fn = import_fn
        self._handle: Any = None
        self._inflight: asyncio.Task | None = None
        self.load_attempts = 0

    @property
    def ready(self) -> bool:
        return self.handle is not None

    @property
    def handle(self) -> Any:
        if self._handle is None:
            self._handle = sys.modules.get(self.module_name)
        return self._handle

    async def load(self) -> Any:
        if self.handle is not None:
            return self._handle

        if self._inflight is None or self._inflight.done():
            self.load_attempts += 1
            logger.info("player_library_loading", module=self.module_name)
            self._inflight = asyncio.create_task(asyncio.to_thread(self._import_fn, self.module_name))

        inflight = self._inflight
        try:
            handle = await asyncio.shield(inflight)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._inflight is inflight:
                self._inflight = None
            logger.error("player_library_load_failed", module=self.module_name, error=str(e))
            raise PlayerLoadError(f"Failed to load {self.module_name}: {e}") from e

        if handle is None:
            raise PlayerLoadError(f"{self.module_name} not available after load")
        self._handle = handle
        logger.info("player_library_loaded", module=self.module_name)
        return handle

    def reset(self) -> None:
        self._handle = None
        self._inflight = None


_loader: PlaybackLibraryLoader | None = None


def get_loader() -> PlaybackLibraryLoader:
    global _loader
    if _loader is None:
        _loader = PlaybackLibraryLoader(settings.player_library_module)
    return _loader


class LibraryFaultGuard:
    """
    Event-loop exception handler that drops faults raised inside the playback
    library so they are not reported as application errors.
    """

    SCRIPT_ERROR = "Script error."

    def __init__(self, module_name: str) -> None:
        self.module_name = module_name
        self.suppressed = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous: Callable | None = None

    def _from_library(self, name: str) -> bool:
        return name == self.module_name or name.startswith(self.module_name + ".")

    def is_library_fault(self, context: dict) -> bool:
        exc = context.get("exception")
        if exc is None:
            return context.get("message") == self.SCRIPT_ERROR
        if self._from_library(type(exc).__module__):
            return True
        tb = exc.__traceback__
        while tb is not None:
            if self._from_library(tb.tb_frame.f_globals.get("__name__", "")):
                return True
            tb = tb.tb_next
        return False

    def handle(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        if self.is_library_fault(context):
            self.suppressed += 1
            logger.debug("player_library_fault_suppressed", message=context.get("message"))
            return
        if self._previous is not None:
            self._previous(loop, context)
        else:
            loop.default_exception_handler(context)

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._loop is loop:
            return
        self.uninstall()
        self._loop = loop
        self._previous = loop.get_exception_handler()
        loop.set_exception_handler(self.handle)

    def uninstall(self) -> None:
        if self._loop is None:
            return
        if self._loop.get_exception_handler() == self.handle:
            self._loop.set_exception_handler(self._previous)
        self._loop = None
        self._previous = None


class PlayerAdapter:
    """Readiness state machine for one playback surface."""

    def __init__(
        self,
        surface: Any = None,
        loader: PlaybackLibraryLoader | None = None,
        soft_timeout: float | None = None,
        retry_delay: float | None = None,
    ) -> None:
        self.surface = surface
        self._loader = loader or get_loader()
        self._soft_timeout = settings.player_soft_timeout_seconds if soft_timeout is None else soft_timeout
        self._retry_delay = settings.player_retry_delay_seconds if retry_delay is None else retry_delay
        self.guard = LibraryFaultGuard(self._loader.module_name)

        self.state = PlayerState.UNLOADED
        self.url: str | None = None
        self.message: str | None = None
        self.error: str | None = None
        self.retriable = True
        self._player: Any = None
        self._soft_timer: asyncio.TimerHandle | None = None

    @property
    def player(self) -> Any:
        return self._player

    # Library readiness

    async def prepare(self) -> PlayerState:
        self.guard.install(asyncio.get_running_loop())
        if self.state not in (PlayerState.UNLOADED, PlayerState.LOADING, PlayerState.ERROR):
            return self.state

        if self._loader.ready:
            self.state = PlayerState.READY
            return self.state

        self.state = PlayerState.LOADING
        self.message = MSG_PREPARING
        try:
            await self._loader.load()
        except PlayerLoadError as e:
            self._fail(f"Failed to load player: {e}")
            return self.state

        if self.state == PlayerState.LOADING:
            self.state = PlayerState.READY
            self.message = None
        return self.state

    # Attach cycle

    async def attach(self, url: str) -> PlayerState:
        if self.state in (PlayerState.UNLOADED, PlayerState.LOADING):
            raise PlayerStateError(f"cannot attach while {self.state.value}")
        return self._attach(url)

    def _events(self, library: Any) -> tuple[str, str, str]:
        names = getattr(library, "PlayerState", None)
        return (
            getattr(names, "PLAYING", "playing"),
            getattr(names, "ENDED", "ended"),
            getattr(names, "ERROR", "error"),
        )

    def _attach(self, url: str) -> PlayerState:
        self.dispose()
        self.url = url
        self.error = None
        self.retriable = True
        self.message = MSG_CONNECTING

        library = self._loader.handle
        if library is None:
            return self._fall_back("library missing")
        if not getattr(library, "is_player_supported", False):
            return self._fall_back("player not supported")

        try:
            player = library.create()
        except Exception as e:
            logger.error("player_create_failed", error=str(e))
            player = None
        if player is None:
            self.error = "Failed to initialize player"
            return self._fall_back("create failed")
        self._player = player

        playing, ended, failed = self._events(library)
        try:
            player.add_event_listener(playing, lambda *args: self._on_event(player, "playing", args))
            player.add_event_listener(ended, lambda *args: self._on_event(player, "ended", args))
            player.add_event_listener(failed, lambda *args: self._on_event(player, "error", args))
        except Exception as e:
            logger.error("player_listeners_failed", error=str(e))
            self.error = "Failed to initialize player"
            return self._fall_back("create failed")

        try:
            player.attach(self.surface)
            player.load(url)
            player.play()
        except Exception as e:
            logger.error("player_load_failed", url=url, error=str(e))
            self.error = f"Failed to load stream: {e or 'Unknown error'}"
            return self._fall_back("load failed")

        self.state = PlayerState.ATTACHED
        self.message = MSG_LOADING
        self._soft_timer = asyncio.get_running_loop().call_later(
            self._soft_timeout, self._on_soft_timeout, player
        )
        logger.info("player_attached", url=url)
        return self.state

    def _on_soft_timeout(self, player: Any) -> None:
        self._soft_timer = None
        if player is self._player and self.state == PlayerState.ATTACHED:
            self.message = MSG_STILL_CONNECTING

    def _on_event(self, source: Any, event: str, args: tuple) -> None:
        if source is not self._player or self.state == PlayerState.FALLBACK_IFRAME:
            logger.debug("player_event_ignored", event=event)
            return

        if event == "playing":
            self._cancel_soft_timer()
            self.state = PlayerState.PLAYING
            self.message = None
            self.error = None
        elif event == "ended":
            self._fail(MSG_STREAM_ENDED, retriable=False)
        elif event == "error":
            payload = args[0] if args else None
            if isinstance(payload, dict):
                code = payload.get("code")
            else:
                code = getattr(payload, "code", None)
            self._fail(f"Stream playback error: {code or 'Unknown'}")

    def _fail(self, error: str, retriable: bool = True) -> None:
        self._cancel_soft_timer()
        self.state = PlayerState.ERROR
        self.error = error
        self.retriable = retriable
        self.message = None
        logger.warning("player_error", error=error, url=self.url)

    def _fall_back(self, reason: str) -> PlayerState:
        self.dispose()
        self.state = PlayerState.FALLBACK_IFRAME
        self.message = None
        logger.info("player_fallback", reason=reason, url=self.url)
        return self.state

    async def retry(self) -> PlayerState:
        self.dispose()
        self.error = None
        self.message = MSG_RECONNECTING

        library = self._loader.handle
        if library is None or not getattr(library, "is_player_supported", False):
            return self._fall_back("retry without native support")

        url = self.url
        if not url:
            self.state = PlayerState.READY
            return self.state

        self.state = PlayerState.READY
        await asyncio.sleep(self._retry_delay)
        # Fallback, close or a new attach during the delay supersede this retry.
        if self.state != PlayerState.READY or self.url != url or self._player is not None:
            return self.state
        return self._attach(url)

    def use_fallback(self) -> PlayerState:
        return self._fall_back("requested")

    def embed_html(self) -> str:
        src = html.escape(self.url or "", quote=True)
        return (
            f'<iframe src="{src}" allow="autoplay; fullscreen" allowfullscreen '
            'title="Stream Player Fallback" style="width:100%;height:100%;border:none"></iframe>'
        )

    # Teardown

    def _cancel_soft_timer(self) -> None:
        if self._soft_timer is not None:
            self._soft_timer.cancel()
            self._soft_timer = None

    def dispose(self) -> None:
        self._cancel_soft_timer()
        player, self._player = self._player, None
        if player is None:
            return
        try:
            if callable(getattr(player, "destroy", None)):
                player.destroy()
            elif callable(getattr(player, "pause", None)):
                player.pause()
        except Exception as e:
            logger.warning("player_cleanup_failed", error=str(e))

    def close(self) -> None:
        self.dispose()
        self.guard.uninstall()
        self.state = PlayerState.UNLOADED
        self.url = None
        self.message = None
