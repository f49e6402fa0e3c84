"""Renders assistant messages to a terminal as they stream."""

from typing import TextIO

from deepterm.core.chat.models import (
    ROLE_ASSISTANT,
    STATUS_ERROR,
    STATUS_STREAMING,
    ChatMessage,
)


class StreamFormatter:
    """Store listener that writes only what changed since the last call.

    Tracks, per live assistant message, how much content is already on
    screen.  A regenerated message starts over from an empty string.
    """

    def __init__(self, output: TextIO):
        self.output = output
        self._live: dict[str, int] = {}

    def on_message(self, message: ChatMessage) -> None:
        if message.role != ROLE_ASSISTANT:
            return

        if message.status == STATUS_STREAMING:
            shown = self._live.get(message.id, 0)
            if len(message.content) < shown:
                shown = 0
            self._print(message.content[shown:])
            self._live[message.id] = len(message.content)
            return

        # Feedback changes on finished messages also notify; ignore them.
        if message.id not in self._live:
            return
        del self._live[message.id]
        if message.status == STATUS_ERROR:
            self._print(f"\n{message.content}")
        self._print("\n")

    def _print(self, text: str) -> None:
        if not text:
            return
        self.output.write(text)
        self.output.flush()
