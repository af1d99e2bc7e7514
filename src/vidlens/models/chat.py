import enum

from pydantic import BaseModel, ConfigDict


class Sender(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: Sender
    text: str
