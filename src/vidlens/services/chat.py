import asyncio
from typing import Awaitable, Callable

import structlog

from vidlens.models.chat import ChatMessage, Sender
from vidlens.services.backend import BackendError

logger = structlog.get_logger()

AskFn = Callable[[str, str], Awaitable[str]]

STREAM_GREETING = "Hello! I can answer questions about what I observe in this stream. How can I help you?"


class ChatSession:
    """
    Question/answer exchange for one job, video or stream at a time.

    ``ask_fn(context_id, question)`` performs the backend call. Failures never
    escape ``ask``: they are appended as an assistant message instead.
    """

    def __init__(self, ask_fn: AskFn, failure_message: str, use_error_detail: bool = True) -> None:
        self._ask_fn = ask_fn
        self._failure_message = failure_message
        self._use_error_detail = use_error_detail
        self.context_id: str | None = None
        self.messages: list[ChatMessage] = []
        self.pending = False

    def bind(self, context_id: str | None, *, clear: bool = True) -> None:
        if clear and context_id != self.context_id:
            self.messages = []
        self.context_id = context_id

    def clear(self) -> None:
        self.messages = []

    def say(self, text: str) -> ChatMessage:
        """Append an assistant-side message without calling the backend."""
        message = ChatMessage(sender=Sender.ASSISTANT, text=text)
        self.messages.append(message)
        return message

    async def ask(self, question: str) -> ChatMessage | None:
        question = (question or "").strip()
        context_id = self.context_id
        if not question or context_id is None:
            return None

        self.messages.append(ChatMessage(sender=Sender.USER, text=question))
        self.pending = True
        try:
            answer = await self._ask_fn(context_id, question)
        except asyncio.CancelledError:
            raise
        except BackendError as e:
            logger.warning("chat_failed", context_id=context_id, error=str(e))
            answer = (e.detail if self._use_error_detail and e.detail else None) or self._failure_message
        except Exception as e:
            logger.error("chat_error", context_id=context_id, error=str(e))
            answer = self._failure_message
        finally:
            self.pending = False

        if context_id != self.context_id:
            # The conversation moved on while waiting; the reply belongs to a closed context.
            logger.info("chat_reply_discarded", context_id=context_id)
            return None
        return self.say(answer)
