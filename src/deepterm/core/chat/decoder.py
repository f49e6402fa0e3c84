"""Line-oriented stream decoder: response frames -> ``StreamEvent``.

Framing: UTF-8 text split on ``\\n``.  Only lines starting with
``data: `` carry events; the trimmed remainder is either ``[DONE]`` or a
JSON object.  Frames may cut a line (or a multi-byte character) anywhere,
so text is decoded incrementally and a line is parsed only once its
newline has arrived.

Decoding never raises on a bad line: unparseable payloads and unknown
event shapes are dropped so one corrupted frame cannot poison the rest of
the answer.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable

from pydantic import ValidationError

from deepterm.core.metrics import STREAM_EVENTS_TOTAL, STREAM_MALFORMED_FRAMES_TOTAL

from .models import (
    EVENT_TYPE_CONTENT,
    EVENT_TYPE_METADATA,
    STREAM_DATA_PREFIX,
    STREAM_DONE_SENTINEL,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    MetadataEvent,
    StreamEvent,
)

logger = logging.getLogger(__name__)


class LineBuffer:
    """Reassembles complete lines from arbitrarily split frames."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        """Text received after the last newline (an incomplete line)."""
        return self._pending

    def feed(self, frame: bytes | str) -> list[str]:
        """Add a frame and return every line it completed, in order."""
        text = self._decoder.decode(frame) if isinstance(frame, bytes) else frame
        if not text:
            return []
        *lines, self._pending = (self._pending + text).split("\n")
        return lines


def decode_payload(payload: str) -> StreamEvent | None:
    """Map one JSON payload to an event, or ``None`` if it is unusable.

    ``{"error": ...}`` wins over everything else.  Payloads without a
    ``type`` are classified by their keys, which is what the backend sends
    for model info (``{model, modelName}``) and tokens (``{content}``).
    """
    try:
        data = json.loads(payload)
    except ValueError:
        STREAM_MALFORMED_FRAMES_TOTAL.inc()
        logger.debug("Skipping malformed stream payload: %r", payload)
        return None
    if not isinstance(data, dict):
        STREAM_MALFORMED_FRAMES_TOTAL.inc()
        logger.debug("Skipping non-object stream payload: %r", payload)
        return None

    if data.get("error") is not None:
        return ErrorEvent(message=str(data["error"]))

    kind = data.get("type")
    try:
        if kind == EVENT_TYPE_METADATA or (kind is None and "model" in data):
            return MetadataEvent.model_validate(data)
        if kind == EVENT_TYPE_CONTENT or (kind is None and "content" in data):
            return ContentEvent.model_validate(data)
    except ValidationError:
        STREAM_MALFORMED_FRAMES_TOTAL.inc()
        logger.debug("Skipping invalid %s payload: %r", kind or "untyped", payload)
        return None

    logger.debug("Dropping unknown stream event: %r", payload)
    return None


def decode_line(line: str) -> StreamEvent | None:
    """Decode one complete line; ``None`` for anything that is not an event."""
    stripped = line.strip()
    if not stripped.startswith(STREAM_DATA_PREFIX):
        return None
    payload = stripped[len(STREAM_DATA_PREFIX) :].strip()
    if payload == STREAM_DONE_SENTINEL:
        return DoneEvent()
    return decode_payload(payload)


async def decode_stream(
    frames: AsyncIterable[bytes | str],
) -> AsyncGenerator[StreamEvent, None]:
    """Yield events from *frames* in arrival order.

    Stops after ``DoneEvent``.  If the body ends without the sentinel the
    generator simply finishes; a trailing partial line is discarded.
    """
    buffer = LineBuffer()
    async for frame in frames:
        for line in buffer.feed(frame):
            event = decode_line(line)
            if event is None:
                continue
            STREAM_EVENTS_TOTAL.labels(event_type=event.type).inc()
            yield event
            if isinstance(event, DoneEvent):
                return

    if buffer.pending.strip():
        logger.debug("Discarding incomplete trailing line: %r", buffer.pending)
