import structlog

from vidlens.models.chat import ChatMessage
from vidlens.schemas import VideoDetails, VideoRecord
from vidlens.services.backend import BackendClient, BackendError
from vidlens.services.chat import ChatSession

logger = structlog.get_logger()

MSG_CHAT_FAILED = "Failed to get a response for this video."


class VideoLibrary:
    """Processed videos: listing, one open detail view, deletion and per-video chat."""

    def __init__(self, backend: BackendClient) -> None:
        self.backend = backend
        self.videos: list[VideoRecord] = []
        self.selected_id: str | None = None
        self.details: VideoDetails | None = None
        self.logs: list[str] = []
        self.chat = ChatSession(backend.ask_video, MSG_CHAT_FAILED)
        self.error: str | None = None

    async def refresh(self) -> bool:
        try:
            self.videos = await self.backend.list_videos()
        except BackendError as e:
            logger.error("videos_fetch_failed", error=str(e))
            self.error = "Failed to load videos"
            return False
        return True

    async def open_detail(self, video_id: str) -> VideoDetails | None:
        self.close_detail()
        self.selected_id = video_id
        self.chat.bind(video_id)

        try:
            details = await self.backend.get_video_details(video_id)
        except BackendError as e:
            logger.error("video_details_failed", video_id=video_id, error=str(e))
            if self.selected_id == video_id:
                self.error = "Failed to load video details"
            return None

        try:
            logs = await self.backend.get_video_logs(video_id)
        except BackendError as e:
            logger.warning("video_logs_failed", video_id=video_id, error=str(e))
            logs = []

        if self.selected_id != video_id:
            return None
        self.details = details
        self.logs = list(logs)
        return details

    def close_detail(self) -> None:
        self.selected_id = None
        self.details = None
        self.logs = []
        self.chat.bind(None)

    def new_chat(self) -> None:
        self.chat.clear()

    async def delete(self, video_id: str) -> bool:
        try:
            await self.backend.delete_video(video_id)
        except BackendError as e:
            logger.error("video_delete_failed", video_id=video_id, error=str(e))
            self.error = "Failed to delete video"
            return False

        self.videos = [video for video in self.videos if video.video_id != video_id]
        if self.selected_id == video_id:
            self.close_detail()
        return True

    async def ask(self, question: str) -> ChatMessage | None:
        if self.selected_id is None:
            return None
        return await self.chat.ask(question)
