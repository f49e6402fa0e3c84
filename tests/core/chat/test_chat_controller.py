"""Tests for the chat controller driving mocked assistant streams."""

import asyncio
import json

import httpx
import pytest

from deepterm.configs.system import ChatConfig
from deepterm.core.chat.controller import ChatController
from deepterm.core.chat.models import STATUS_COMPLETE, STATUS_ERROR, STATUS_STREAMING
from deepterm.core.chat.store import ConversationStore
from deepterm.core.chat.transport import AssistantClient
from deepterm.core.context.models import ChatContext, StockContext

ENDPOINT = "http://assistant.test/api/chat"


def _lines(*payloads: dict | str) -> bytes:
    out = []
    for payload in payloads:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        out.append(f"data: {text}\n")
    return "".join(out).encode()


def _make_controller(handler, *, context=None, model=None):
    store = ConversationStore()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = AssistantClient(ChatConfig(endpoint=ENDPOINT), client=client)
    controller = ChatController(
        store,
        transport,
        lambda: context or ChatContext(),
        model=model,
    )
    return controller, store


async def _wait_for(predicate) -> None:
    for _ in range(500):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition never became true")


class TestSend:
    @pytest.mark.asyncio
    async def test_well_formed_stream_completes(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            body = _lines(
                {"model": "m-1", "modelName": "Model One"},
                {"content": "Hello"},
                {"type": "content", "content": ", world"},
                "[DONE]",
            )
            return httpx.Response(200, content=body)

        context = ChatContext(type="stock", stock=StockContext(symbol="AAPL"))
        controller, store = _make_controller(handler, context=context)

        message_id = await controller.send("What is AAPL's P/E?")
        message = await controller.wait(message_id)

        assert message.status == STATUS_COMPLETE
        assert message.content == "Hello, world"
        assert message.model == "Model One"
        assert store.streaming_message_id is None

        payload = json.loads(requests[0].content)
        assert str(requests[0].url) == ENDPOINT
        assert payload["stream"] is True
        assert payload["messages"] == [
            {"role": "user", "content": "What is AAPL's P/E?"}
        ]
        assert payload["context"]["type"] == "stock"
        assert payload["context"]["stock"]["symbol"] == "AAPL"
        assert "model" not in payload
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_selected_model_is_sent(self):
        payloads: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, content=_lines("[DONE]"))

        controller, _ = _make_controller(handler, model="gpt-x")
        await controller.wait(await controller.send("hi"))
        assert payloads[0]["model"] == "gpt-x"
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_malformed_lines_do_not_corrupt_content(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = (
                _lines({"content": "a"})
                + b"data: {broken\n"
                + b"garbage without prefix\n"
                + _lines({"content": "b"}, "[DONE]")
            )
            return httpx.Response(200, content=body)

        controller, _ = _make_controller(handler)
        message = await controller.wait(await controller.send("hi"))
        assert message.status == STATUS_COMPLETE
        assert message.content == "ab"
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_body_ending_without_sentinel_completes(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_lines({"content": "partial"}))

        controller, _ = _make_controller(handler)
        message = await controller.wait(await controller.send("hi"))
        assert message.status == STATUS_COMPLETE
        assert message.content == "partial"
        await controller.aclose()


class TestFailures:
    @pytest.mark.asyncio
    async def test_error_event_fails_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = _lines({"content": "Some"}, {"error": "Rate limited"}, "[DONE]")
            return httpx.Response(200, content=body)

        controller, _ = _make_controller(handler)
        message = await controller.wait(await controller.send("hi"))
        assert message.status == STATUS_ERROR
        assert message.content == "Error: Rate limited"
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_non_success_status_uses_error_field(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Context too large"})

        controller, _ = _make_controller(handler)
        message = await controller.wait(await controller.send("hi"))
        assert message.status == STATUS_ERROR
        assert message.content == "Error: Context too large"
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_non_success_status_without_error_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="upstream unavailable")

        controller, _ = _make_controller(handler)
        message = await controller.wait(await controller.send("hi"))
        assert message.content == "Error: Request failed: 503"
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_fails_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        controller, store = _make_controller(handler)
        message = await controller.wait(await controller.send("hi"))
        assert message.status == STATUS_ERROR
        assert message.content == "Error: connection refused"
        assert not store.is_streaming
        await controller.aclose()


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_mid_stream_completes_and_ignores_late_chunks(self):
        release = asyncio.Event()

        async def body():
            yield _lines({"content": "Hel"})
            await release.wait()
            yield _lines({"content": "lo"}, "[DONE]")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body())

        controller, store = _make_controller(handler)
        message_id = await controller.send("hi")
        await _wait_for(lambda: store.get(message_id).content == "Hel")

        assert await controller.cancel(message_id) is True
        release.set()

        message = store.get(message_id)
        assert message.status == STATUS_COMPLETE
        assert message.content == "Hel"
        assert store.append_chunk(message_id, "late") is False
        assert store.get(message_id).content == "Hel"
        assert controller.active_message_ids == ()
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_cancel_defaults_to_streaming_message(self):
        release = asyncio.Event()

        async def body():
            await release.wait()
            yield _lines("[DONE]")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body())

        controller, store = _make_controller(handler)
        message_id = await controller.send("hi")
        assert await controller.cancel() is True
        assert store.get(message_id).status == STATUS_COMPLETE
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_default_cancel_reaches_older_stream(self):
        release = asyncio.Event()
        calls = 0

        async def held_body():
            yield _lines({"content": "slow"})
            await release.wait()
            yield _lines("[DONE]")

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(200, content=held_body())
            return httpx.Response(200, content=_lines({"content": "fast"}, "[DONE]"))

        controller, store = _make_controller(handler)
        older = await controller.send("a")
        await _wait_for(lambda: store.get(older).content == "slow")
        newer = await controller.send("b")
        await controller.wait(newer)

        assert store.streaming_message_id == older
        assert await controller.cancel() is True
        assert store.get(older).status == STATUS_COMPLETE
        assert store.streaming_message_id is None
        assert controller.active_message_ids == ()
        release.set()
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_clear_cancels_live_streams(self):
        release = asyncio.Event()

        async def body():
            yield _lines({"content": "part"})
            await release.wait()
            yield _lines("[DONE]")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body())

        controller, store = _make_controller(handler)
        message_id = await controller.send("hi")
        await _wait_for(lambda: store.get(message_id).content == "part")

        await controller.clear()

        assert controller.active_message_ids == ()
        assert len(store) == 0
        assert store.streaming_message_id is None
        release.set()
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_cancel_before_first_step(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_lines({"content": "x"}, "[DONE]"))

        controller, store = _make_controller(handler)
        message_id = await controller.send("hi")
        # No await between send and cancel: the task has not started yet.
        assert await controller.cancel(message_id) is True
        message = store.get(message_id)
        assert message.status == STATUS_COMPLETE
        assert message.content == ""
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_cancel_with_nothing_in_flight(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_lines("[DONE]"))

        controller, _ = _make_controller(handler)
        assert await controller.cancel() is False
        message_id = await controller.send("hi")
        await controller.wait(message_id)
        assert await controller.cancel(message_id) is False
        await controller.aclose()


class TestRegenerate:
    @pytest.mark.asyncio
    async def test_regenerate_replays_truncated_history(self):
        payloads: list[dict] = []
        answers = iter(["one", "two", "three", "two again"])

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            body = _lines({"content": next(answers)}, "[DONE]")
            return httpx.Response(200, content=body)

        controller, store = _make_controller(handler)
        await controller.wait(await controller.send("first"))
        second = await controller.send("second")
        await controller.wait(second)
        await controller.wait(await controller.send("third"))

        assert await controller.regenerate(second) is True
        message = await controller.wait(second)

        assert message.status == STATUS_COMPLETE
        assert message.content == "two again"
        assert [m["content"] for m in payloads[-1]["messages"]] == [
            "first",
            "one",
            "second",
        ]
        assert len(store.messages) == 6
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_regenerate_while_streaming_cancels_old_stream_first(self):
        release = asyncio.Event()
        calls = 0

        async def slow_body():
            yield _lines({"content": "stale"})
            await release.wait()
            yield _lines({"content": " never"}, "[DONE]")

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(200, content=slow_body())
            return httpx.Response(200, content=_lines({"content": "fresh"}, "[DONE]"))

        controller, store = _make_controller(handler)
        message_id = await controller.send("hi")
        await _wait_for(lambda: store.get(message_id).content == "stale")

        assert await controller.regenerate(message_id) is True
        assert store.get(message_id).status == STATUS_STREAMING
        release.set()
        message = await controller.wait(message_id)

        assert message.content == "fresh"
        assert message.status == STATUS_COMPLETE
        assert calls == 2
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_regenerate_without_user_message_is_noop(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_lines({"content": "a"}, "[DONE]"))

        controller, store = _make_controller(handler)
        message_id = await controller.send("q")
        await controller.wait(message_id)
        user_id = store.messages[0].id
        before = store.messages

        assert await controller.regenerate(user_id) is False
        assert await controller.regenerate("msg_missing") is False
        assert store.messages == before
        await controller.aclose()
