"""Drives assistant streams into the conversation store.

One asyncio task per streaming message.  Cancelling a task is observed
at its next suspension point, normally the wait for the next network
frame, and finalizes the message as ``complete``.  Regeneration cancels
and awaits the previous task for the same message before starting a new
one, so two decoders never write to one message.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Callable
from contextlib import aclosing

from deepterm.core.context.models import ChatContext
from deepterm.core.metrics import STREAM_DURATION_SECONDS, STREAM_OUTCOMES_TOTAL
from deepterm.infra.telemetry import (
    ATTR_CHAT_HISTORY_LEN,
    ATTR_CHAT_MESSAGE_ID,
    ATTR_CHAT_OUTCOME,
    ATTR_CHAT_REGENERATE,
    SPAN_CHAT_STREAM,
    tracer,
)

from .decoder import decode_stream
from .models import (
    ChatMessage,
    ChatRequest,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    MetadataEvent,
)
from .store import ConversationStore
from .transport import AssistantClient

logger = logging.getLogger(__name__)

OUTCOME_COMPLETE = "complete"
OUTCOME_ERROR = "error"
OUTCOME_CANCELLED = "cancelled"


class ChatController:
    """Issues, cancels and regenerates assistant requests.

    Parameters
    ----------
    store
        Conversation the streams write into.
    transport
        Assistant backend client.
    context_provider
        Returns the merged context to attach to the next request.
    model
        Model id requested from the backend, if any.
    """

    def __init__(
        self,
        store: ConversationStore,
        transport: AssistantClient,
        context_provider: Callable[[], ChatContext],
        *,
        model: str | None = None,
    ) -> None:
        self._store = store
        self._transport = transport
        self._context_provider = context_provider
        self._model = model
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def active_message_ids(self) -> tuple[str, ...]:
        return tuple(mid for mid, task in self._tasks.items() if not task.done())

    async def send(self, text: str) -> str:
        """Start a new exchange; returns the assistant message id."""
        context = self._context_provider()
        message_id = self._store.send(text, context)
        request = ChatRequest(
            messages=self._store.request_history(message_id),
            context=context,
            model=self._model,
        )
        self._start(message_id, request, regenerate=False)
        return message_id

    async def regenerate(self, message_id: str) -> bool:
        """Re-ask the user turn before *message_id*.

        Returns ``False`` (and changes nothing) when no user message
        directly precedes it.
        """
        if self._store.preceding_user_message(message_id) is None:
            logger.debug("Nothing to regenerate for %s", message_id)
            return False
        await self.cancel(message_id)

        context = self._context_provider()
        history = self._store.regenerate(message_id, context)
        if history is None:
            return False
        request = ChatRequest(messages=history, context=context, model=self._model)
        self._start(message_id, request, regenerate=True)
        return True

    async def cancel(self, message_id: str | None = None) -> bool:
        """Stop the stream for *message_id* (default: the streaming one).

        Returns once the stream task has finished.  ``False`` when there
        was nothing to cancel.
        """
        message_id = message_id or self._store.streaming_message_id
        if message_id is None:
            return False
        task = self._tasks.get(message_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.wait({task})
        # A task cancelled before its first step never reaches its handler.
        self._store.complete(message_id)
        logger.info("Cancelled assistant stream", extra={"message_id": message_id})
        return True

    async def wait(self, message_id: str) -> ChatMessage:
        """Wait for the stream of *message_id* to finish; returns the message."""
        task = self._tasks.get(message_id)
        if task is not None:
            await asyncio.wait({task})
        return self._store.get(message_id)

    async def clear(self) -> None:
        """Cancel every live stream, then empty the conversation."""
        await self._cancel_all()
        self._store.clear()

    async def aclose(self) -> None:
        """Cancel every live stream and close the transport."""
        await self._cancel_all()
        await self._transport.aclose()

    async def _cancel_all(self) -> None:
        for message_id in self.active_message_ids:
            await self.cancel(message_id)

    def _start(
        self, message_id: str, request: ChatRequest, *, regenerate: bool
    ) -> None:
        current = self._tasks.get(message_id)
        if current is not None and not current.done():
            raise RuntimeError(f"Message {message_id} already has a live stream")
        task = asyncio.create_task(
            self._drive(message_id, request, regenerate),
            name=f"chat-stream-{message_id}",
        )
        self._tasks[message_id] = task
        task.add_done_callback(functools.partial(self._forget, message_id))

    def _forget(self, message_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(message_id) is task:
            del self._tasks[message_id]

    async def _drive(
        self, message_id: str, request: ChatRequest, regenerate: bool
    ) -> None:
        start = time.monotonic()
        outcome = OUTCOME_ERROR
        with tracer.start_as_current_span(SPAN_CHAT_STREAM) as span:
            span.set_attribute(ATTR_CHAT_MESSAGE_ID, message_id)
            span.set_attribute(ATTR_CHAT_HISTORY_LEN, len(request.messages))
            span.set_attribute(ATTR_CHAT_REGENERATE, regenerate)
            try:
                outcome = await self._consume(message_id, request)
            except asyncio.CancelledError:
                outcome = OUTCOME_CANCELLED
                self._store.complete(message_id)
                raise
            except Exception as exc:
                outcome = OUTCOME_ERROR
                span.record_exception(exc)
                logger.warning("Assistant stream failed", exc_info=True)
                self._store.fail(message_id, str(exc) or None)
            finally:
                span.set_attribute(ATTR_CHAT_OUTCOME, outcome)
                STREAM_OUTCOMES_TOTAL.labels(outcome=outcome).inc()
                STREAM_DURATION_SECONDS.observe(time.monotonic() - start)

    async def _consume(self, message_id: str, request: ChatRequest) -> str:
        """Fold the decoded stream into the store; returns the outcome."""
        async with (
            aclosing(self._transport.stream(request)) as frames,
            aclosing(decode_stream(frames)) as events,
        ):
            async for event in events:
                if isinstance(event, ContentEvent):
                    self._store.append_chunk(message_id, event.content)
                elif isinstance(event, MetadataEvent):
                    model = event.model_name or event.model
                    if model:
                        self._store.set_model(message_id, model)
                elif isinstance(event, ErrorEvent):
                    self._store.fail(message_id, event.message)
                    return OUTCOME_ERROR
                elif isinstance(event, DoneEvent):
                    break
        self._store.complete(message_id)
        return OUTCOME_COMPLETE
