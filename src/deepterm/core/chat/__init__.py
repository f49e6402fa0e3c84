"""Conversation engine: store, stream decoder, transport and controller.

* ``ConversationStore``: ordered transcript and per-message lifecycle.
* ``decode_stream``: ``data:``-line protocol -> ``StreamEvent``.
* ``AssistantClient``: streaming POST to the assistant backend.
* ``ChatController``: send, cancel and regenerate on top of the above.
"""

from .controller import ChatController
from .decoder import LineBuffer, decode_line, decode_payload, decode_stream
from .store import ConversationStore
from .transport import AssistantClient

__all__ = [
    "AssistantClient",
    "ChatController",
    "ConversationStore",
    "LineBuffer",
    "decode_line",
    "decode_payload",
    "decode_stream",
]
