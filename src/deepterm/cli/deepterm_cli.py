"""Main CLI loop for interactive chat."""

import asyncio
import json
import logging
import signal
import sys
from typing import TextIO

from deepterm.configs.config import AppConfig, get_app_config
from deepterm.core.chat import AssistantClient, ChatController, ConversationStore
from deepterm.core.chat.models import (
    FEEDBACK_NEGATIVE,
    FEEDBACK_POSITIVE,
    ROLE_ASSISTANT,
)
from deepterm.core.context import (
    ChatContext,
    ContextAggregator,
    ContextHolder,
    GlobalContextUpdater,
    MarketDataClient,
)
from deepterm.core.context.models import (
    CONTEXT_TYPE_STOCK,
    VALID_CONTEXT_TYPES,
    PageContext,
    StockContext,
)
from deepterm.core.exceptions import UnknownMessage
from deepterm.infra.logging import setup_logging
from deepterm.infra.telemetry import init_telemetry

from .formatter import StreamFormatter

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /regen                 regenerate the last answer
  /good, /bad            toggle feedback on the last answer
  /page <type> [symbol]  set the page context (e.g. /page stock AAPL)
  /context               show the merged context that the next turn sends
  /clear                 clear the conversation
  /help                  show this help
  exit, quit             leave
Press Ctrl-C while an answer streams to stop it.
"""


class DeeptermCLI:
    """Interactive terminal front end for the chat controller."""

    def __init__(
        self,
        config: AppConfig,
        input_stream: TextIO = sys.stdin,
        output_stream: TextIO = sys.stdout,
        market: MarketDataClient | None = None,
        assistant: AssistantClient | None = None,
    ):
        """Initialize the CLI.

        Parameters
        ----------
        config
            Application configuration.
        input_stream
            Input stream for user input (default: stdin).
        output_stream
            Output stream for answers (default: stdout).
        market, assistant
            Pre-built HTTP clients; built from ``config`` when omitted.
        """
        self.config = config
        self.input_stream = input_stream
        self.output_stream = output_stream

        self.market = market or MarketDataClient(config.upstream)
        self.holder = ContextHolder()
        self.updater = GlobalContextUpdater(
            ContextAggregator(self.market, config.context),
            self.holder,
            config.context,
        )
        self.store = ConversationStore(history_window=config.chat.history_window)
        self.controller = ChatController(
            self.store,
            assistant or AssistantClient(config.chat),
            self.holder.current,
            model=config.chat.model,
        )
        self.formatter = StreamFormatter(output_stream)
        self.store.add_listener(self.formatter.on_message)
        self._pending_cancel: asyncio.Task | None = None

    async def run(self) -> None:
        """Run the interactive CLI loop."""
        self._print_welcome()
        self.holder.mark_page_ready()
        self.updater.start()
        try:
            while True:
                try:
                    query = await self._get_user_input()
                except EOFError:
                    self._print("\nGoodbye!\n")
                    break
                if not query:
                    continue
                if query.lower() in ("exit", "quit", "q"):
                    self._print("Goodbye!\n")
                    break
                await self.handle(query)
        finally:
            await self.updater.stop()
            await self.controller.aclose()
            await self.market.aclose()

    async def handle(self, query: str) -> None:
        """Dispatch one line of input."""
        if not query.startswith("/"):
            message_id = await self.controller.send(query)
            await self._await_answer(message_id)
            return

        command, *args = query.split()
        if command == "/regen":
            await self._regenerate()
        elif command in ("/good", "/bad"):
            value = FEEDBACK_POSITIVE if command == "/good" else FEEDBACK_NEGATIVE
            self._feedback(value)
        elif command == "/page":
            self._set_page(args)
        elif command == "/context":
            payload = self.holder.current().to_payload()
            self._print(f"{json.dumps(payload, indent=2)}\n")
        elif command == "/clear":
            await self.controller.clear()
            self._print("Conversation cleared.\n")
        elif command == "/help":
            self._print(HELP_TEXT)
        else:
            self._print(f"Unknown command {command}. Type /help for commands.\n")

    def _last_answer_id(self) -> str | None:
        for message in reversed(self.store.messages):
            if message.role == ROLE_ASSISTANT:
                return message.id
        return None

    async def _regenerate(self) -> None:
        message_id = self._last_answer_id()
        if message_id is None or not await self.controller.regenerate(message_id):
            self._print("Nothing to regenerate.\n")
            return
        await self._await_answer(message_id)

    def _feedback(self, value: str) -> None:
        message_id = self._last_answer_id()
        if message_id is None:
            self._print("No answer to rate yet.\n")
            return
        try:
            current = self.store.set_feedback(message_id, value)
        except (UnknownMessage, ValueError) as e:
            self._print(f"Cannot rate this answer: {e}\n")
            return
        self._print(f"Feedback: {current or 'cleared'}\n")

    def _set_page(self, args: list[str]) -> None:
        if not args or args[0] not in VALID_CONTEXT_TYPES:
            types = "|".join(sorted(VALID_CONTEXT_TYPES))
            self._print(f"Usage: /page <{types}> [symbol]\n")
            return
        page_type = args[0]
        stock = None
        if page_type == CONTEXT_TYPE_STOCK and len(args) > 1:
            stock = StockContext(symbol=args[1].upper())
        self.holder.set_page_context(
            ChatContext(
                type=page_type,
                stock=stock,
                page_context=PageContext(current_page=page_type),
            )
        )
        self._print(f"Page context: {page_type}{f' {stock.symbol}' if stock else ''}\n")

    async def _await_answer(self, message_id: str) -> None:
        """Wait for an answer, turning Ctrl-C into a cancel of that stream."""
        loop = asyncio.get_running_loop()

        def on_interrupt() -> None:
            self._pending_cancel = loop.create_task(self.controller.cancel(message_id))

        try:
            loop.add_signal_handler(signal.SIGINT, on_interrupt)
            installed = True
        except (NotImplementedError, RuntimeError):
            # No loop signal handlers on Windows or outside the main thread.
            installed = False

        self._print("\n")
        try:
            await self.controller.wait(message_id)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)
        self._print("\n")

    async def _get_user_input(self) -> str:
        """Read one line without blocking the event loop."""
        self._print("> ")
        line = await asyncio.to_thread(self.input_stream.readline)
        if not line:
            raise EOFError
        return line.strip()

    def _print_welcome(self) -> None:
        self._print("DeepTerm assistant - interactive chat\n")
        self._print(f"Assistant: {self.config.chat.endpoint}\n")
        self._print(f"Market data: {self.config.upstream.base_url}\n")
        self._print("Type your question, /help for commands, 'exit' to leave.\n\n")

    def _print(self, text: str) -> None:
        """Print text to output stream."""
        self.output_stream.write(text)
        self.output_stream.flush()


async def main(
    endpoint: str | None = None,
    upstream: str | None = None,
    model: str | None = None,
    debug: bool = False,
) -> None:
    """Main entry point for the CLI.

    Parameters
    ----------
    endpoint
        Assistant chat endpoint overriding the configured one.
    upstream
        Dashboard data API base URL overriding the configured one.
    model
        Model id overriding the configured one.
    debug
        Enable debug logging.
    """
    config = get_app_config()
    if endpoint:
        config.chat = config.chat.model_copy(update={"endpoint": endpoint})
    if model:
        config.chat = config.chat.model_copy(update={"model": model})
    if upstream:
        config.upstream = config.upstream.model_copy(update={"base_url": upstream})
    if debug:
        config.logging = config.logging.model_copy(update={"level": "DEBUG"})

    setup_logging(config.logging, stream=sys.stderr)
    init_telemetry(config.tracing)

    cli = DeeptermCLI(config)
    await cli.run()
