"""Exceptions raised across the assistant engine."""

from __future__ import annotations


class DeeptermError(Exception):
    """Base class for engine errors."""


class UpstreamError(DeeptermError):
    """A dashboard data query returned a non-success response."""

    def __init__(self, path: str, status_code: int | None = None) -> None:
        detail = f"HTTP {status_code}" if status_code is not None else "no response"
        super().__init__(f"Upstream query {path} failed ({detail})")
        self.path = path
        self.status_code = status_code


class AssistantRequestError(DeeptermError):
    """The assistant backend rejected a chat request or reported an error."""


class UnknownMessage(DeeptermError):
    """No message with the given id exists in the conversation."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Unknown message: {message_id}")
        self.message_id = message_id
