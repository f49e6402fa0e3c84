"""Conversation store: the transcript and each message's lifecycle.

Per message: ``streaming -> complete | error``.  Nothing leaves a final
state except ``regenerate``, which restarts the same message id as a new
streaming cycle.  Mutators aimed at a message that is no longer streaming
are silent no-ops so chunks arriving after a cancel cannot touch the
finished content.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from deepterm.core.context.models import ChatContext
from deepterm.core.exceptions import UnknownMessage

from .models import (
    DEFAULT_ERROR_REASON,
    ERROR_CONTENT_PREFIX,
    ROLE_ASSISTANT,
    ROLE_USER,
    STATUS_COMPLETE,
    STATUS_ERROR,
    STATUS_STREAMING,
    ChatMessage,
    ChatTurn,
    Feedback,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 10

MessageListener = Callable[[ChatMessage], None]


class ConversationStore:
    """In-memory, ordered transcript.

    Listeners receive a copy of a message after every change to it.
    """

    def __init__(self, history_window: int = DEFAULT_HISTORY_WINDOW) -> None:
        self._history_window = history_window
        self._messages: list[ChatMessage] = []
        self._by_id: dict[str, ChatMessage] = {}
        self._streaming_id: str | None = None
        self._listeners: list[MessageListener] = []

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(m.model_copy() for m in self._messages)

    @property
    def streaming_message_id(self) -> str | None:
        return self._streaming_id

    @property
    def is_streaming(self) -> bool:
        return self._streaming_id is not None

    def __len__(self) -> int:
        return len(self._messages)

    def get(self, message_id: str) -> ChatMessage:
        return self._lookup(message_id).model_copy()

    def preceding_user_message(self, message_id: str) -> ChatMessage | None:
        """The user message directly before assistant message *message_id*."""
        message = self._by_id.get(message_id)
        if message is None or message.role != ROLE_ASSISTANT:
            return None
        index = self._messages.index(message)
        if index == 0 or self._messages[index - 1].role != ROLE_USER:
            return None
        return self._messages[index - 1].model_copy()

    def request_history(self, message_id: str) -> list[ChatTurn]:
        """Turns sent upstream to (re)generate *message_id*.

        The last ``history_window`` messages before the paired user
        message, followed by that user message.
        """
        user = self.preceding_user_message(message_id)
        if user is None:
            raise UnknownMessage(message_id)
        index = self._messages.index(self._by_id[user.id])
        prior = self._messages[:index][-self._history_window :]
        turns = [ChatTurn(role=m.role, content=m.content) for m in prior]
        turns.append(ChatTurn(role=ROLE_USER, content=user.content))
        return turns

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: MessageListener) -> Callable[[], None]:
        """Subscribe to message changes; returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self, message: ChatMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message.model_copy())
            except Exception:
                logger.exception("Message listener failed")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def send(self, text: str, context: ChatContext | None = None) -> str:
        """Append a user message and its streaming assistant placeholder.

        Returns the assistant message id.
        """
        user = ChatMessage(role=ROLE_USER, content=text, status=STATUS_COMPLETE)
        assistant = ChatMessage(
            role=ROLE_ASSISTANT,
            status=STATUS_STREAMING,
            context=context.model_copy(deep=True) if context is not None else None,
        )
        for message in (user, assistant):
            self._messages.append(message)
            self._by_id[message.id] = message
        self._streaming_id = assistant.id
        self._notify(user)
        self._notify(assistant)
        return assistant.id

    def append_chunk(self, message_id: str, text: str) -> bool:
        message = self._streaming(message_id)
        if message is None or not text:
            return False
        message.content += text
        self._notify(message)
        return True

    def set_model(self, message_id: str, model: str) -> bool:
        message = self._streaming(message_id)
        if message is None:
            return False
        message.model = model
        self._notify(message)
        return True

    def complete(self, message_id: str) -> bool:
        message = self._streaming(message_id)
        if message is None:
            return False
        message.status = STATUS_COMPLETE
        self._finish(message)
        return True

    def fail(self, message_id: str, reason: str | None = None) -> bool:
        """Finish with an error shown inline as the message content."""
        message = self._streaming(message_id)
        if message is None:
            return False
        message.status = STATUS_ERROR
        message.content = f"{ERROR_CONTENT_PREFIX}{reason or DEFAULT_ERROR_REASON}"
        self._finish(message)
        return True

    def set_feedback(self, message_id: str, value: Feedback | None) -> Feedback | None:
        """Toggle feedback: repeating the current value clears it.

        Raises ``UnknownMessage`` for an unknown id and ``ValueError`` while
        the message is still streaming.
        """
        message = self._lookup(message_id)
        if message.status == STATUS_STREAMING:
            raise ValueError(f"Message {message_id} is still streaming")
        message.feedback = None if message.feedback == value else value
        self._notify(message)
        return message.feedback

    def regenerate(
        self, message_id: str, context: ChatContext | None = None
    ) -> list[ChatTurn] | None:
        """Restart *message_id* as an empty streaming message.

        No-op returning ``None`` when no user message directly precedes
        it.  Otherwise returns the truncated history to replay.  A given
        *context* replaces the one captured at send time.
        """
        if self.preceding_user_message(message_id) is None:
            return None
        message = self._by_id[message_id]
        message.content = ""
        message.status = STATUS_STREAMING
        message.feedback = None
        if context is not None:
            message.context = context.model_copy(deep=True)
        self._streaming_id = message_id
        self._notify(message)
        return self.request_history(message_id)

    def clear(self) -> None:
        """Drop every message.  Listeners are not notified.

        Streams still running keep their responses open; stop them first
        (``ChatController.clear`` does both).
        """
        self._messages.clear()
        self._by_id.clear()
        self._streaming_id = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, message_id: str) -> ChatMessage:
        try:
            return self._by_id[message_id]
        except KeyError:
            raise UnknownMessage(message_id) from None

    def _streaming(self, message_id: str) -> ChatMessage | None:
        message = self._by_id.get(message_id)
        if message is None or message.status != STATUS_STREAMING:
            return None
        return message

    def _finish(self, message: ChatMessage) -> None:
        if self._streaming_id == message.id:
            # Fall back to the newest message that is still streaming.
            self._streaming_id = next(
                (
                    m.id
                    for m in reversed(self._messages)
                    if m.status == STATUS_STREAMING
                ),
                None,
            )
        self._notify(message)
