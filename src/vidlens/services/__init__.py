from .backend import BackendClient, BackendError, ResourceGone
from .chat import ChatSession
from .metrics import extract_stream_metrics
from .player import PlayerAdapter, PlayerState, get_loader
from .url_normalizer import normalize_stream_url

__all__ = [
    "BackendClient",
    "BackendError",
    "ChatSession",
    "PlayerAdapter",
    "PlayerState",
    "ResourceGone",
    "extract_stream_metrics",
    "get_loader",
    "normalize_stream_url",
]
