"""Conversation messages and the outbound chat request."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from deepterm.core.context.models import ChatContext
from deepterm.infra.id_utils import MESSAGE_ID_PREFIX, generate_id

from .constants import STATUS_STREAMING

Role = Literal["user", "assistant"]
Status = Literal["streaming", "complete", "error"]
Feedback = Literal["positive", "negative"]


def _new_message_id() -> str:
    return generate_id(MESSAGE_ID_PREFIX)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    """One entry of the transcript.

    Only ``ConversationStore`` mutates these; everything it hands out is
    a copy.
    """

    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(default_factory=_new_message_id)
    role: Role
    content: str = ""
    status: Status = STATUS_STREAMING
    context: ChatContext | None = Field(
        default=None,
        description="Copy of the context active when the message was created",
    )
    model: str | None = None
    feedback: Feedback | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class ChatTurn(BaseModel):
    """A ``{role, content}`` pair as sent upstream."""

    role: Role
    content: str


class ChatRequest(BaseModel):
    """Body of the streaming chat request."""

    model_config = ConfigDict(protected_namespaces=())

    messages: list[ChatTurn]
    context: ChatContext = Field(default_factory=ChatContext)
    stream: bool = True
    model: str | None = None

    def to_payload(self) -> dict:
        payload = {
            "messages": [turn.model_dump() for turn in self.messages],
            "context": self.context.to_payload(),
            "stream": self.stream,
        }
        if self.model:
            payload["model"] = self.model
        return payload
