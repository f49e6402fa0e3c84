"""Tests for the versioned context holder and the refresh loop."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from deepterm.configs.system import ContextConfig
from deepterm.core.context.models import (
    ChatContext,
    GlobalContextState,
    GlobalMarketData,
    IndexQuote,
    StockContext,
)
from deepterm.core.context.updater import ContextHolder, GlobalContextUpdater

STATE = GlobalContextState(
    market_data=GlobalMarketData(indices=(IndexQuote(symbol="^GSPC", price=1.0),)),
    last_updated=50.0,
)


def _config(**overrides) -> ContextConfig:
    values = {
        "initial_delay": timedelta(seconds=10),
        "refresh_interval": timedelta(seconds=10),
    }
    values.update(overrides)
    return ContextConfig(**values)


async def _wait_for(predicate) -> None:
    for _ in range(500):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition never became true")


class TestContextHolder:
    def test_page_changes_bump_version(self):
        holder = ContextHolder()
        assert holder.version == 0
        holder.set_page_context(ChatContext(type="market"))
        assert holder.version == 1
        assert holder.snapshot().context.type == "market"

    def test_update_page_context_keeps_other_fields(self):
        holder = ContextHolder(ChatContext(type="stock"))
        holder.update_page_context(stock=StockContext(symbol="AAPL"))
        current = holder.current()
        assert current.type == "stock"
        assert current.stock.symbol == "AAPL"

    def test_global_refresh_never_changes_page_fields(self):
        holder = ContextHolder()
        holder.set_page_context(
            ChatContext(type="stock", stock=StockContext(symbol="AAPL"))
        )
        holder.apply_global(STATE)
        snapshot = holder.snapshot()
        assert snapshot.context.type == "stock"
        assert snapshot.context.stock.symbol == "AAPL"
        assert snapshot.context.market is not None
        assert holder.page_context.market is None

    def test_apply_global_ignores_same_or_older_state(self):
        holder = ContextHolder()
        assert holder.apply_global(STATE) is True
        version = holder.version
        assert holder.apply_global(STATE) is False
        older = GlobalContextState(last_updated=10.0)
        assert holder.apply_global(older) is False
        assert holder.global_state is STATE
        assert holder.version == version

    def test_snapshots_are_values(self):
        holder = ContextHolder(ChatContext(type="stock"))
        before = holder.snapshot()
        holder.set_page_context(ChatContext(type="news"))
        assert before.context.type == "stock"
        assert holder.snapshot().version == before.version + 1

    def test_clear_page_context(self):
        holder = ContextHolder(ChatContext(type="stock"))
        holder.clear_page_context()
        assert holder.current().type == "general"


class TestGlobalContextUpdater:
    @pytest.mark.asyncio
    async def test_refresh_applies_aggregated_state(self):
        aggregator = AsyncMock()
        aggregator.aggregate.return_value = STATE
        holder = ContextHolder()
        updater = GlobalContextUpdater(aggregator, holder, _config())

        snapshot = await updater.refresh()

        assert holder.global_state is STATE
        assert snapshot.context.market.indices[0].symbol == "^GSPC"

    @pytest.mark.asyncio
    async def test_first_refresh_waits_for_page_ready(self):
        aggregator = AsyncMock()
        aggregator.aggregate.return_value = STATE
        holder = ContextHolder()

        async with GlobalContextUpdater(aggregator, holder, _config()):
            await asyncio.sleep(0.05)
            assert aggregator.aggregate.await_count == 0
            holder.set_page_context(
                ChatContext(type="stock", stock=StockContext(symbol="AAPL"))
            )
            await _wait_for(lambda: aggregator.aggregate.await_count == 1)

        current = holder.current()
        assert current.type == "stock"
        assert current.stock.symbol == "AAPL"
        assert current.market is not None

    @pytest.mark.asyncio
    async def test_first_refresh_falls_back_to_initial_delay(self):
        aggregator = AsyncMock()
        aggregator.aggregate.return_value = STATE
        holder = ContextHolder()
        config = _config(initial_delay=timedelta(milliseconds=20))

        async with GlobalContextUpdater(aggregator, holder, config):
            await _wait_for(lambda: aggregator.aggregate.await_count == 1)

        assert holder.global_state is STATE

    @pytest.mark.asyncio
    async def test_failed_refresh_does_not_stop_the_loop(self):
        aggregator = AsyncMock()
        aggregator.aggregate.side_effect = [RuntimeError("boom"), STATE, STATE]
        holder = ContextHolder()
        holder.mark_page_ready()
        config = _config(refresh_interval=timedelta(milliseconds=10))

        async with GlobalContextUpdater(aggregator, holder, config):
            await _wait_for(lambda: holder.global_state is STATE)

    @pytest.mark.asyncio
    async def test_start_twice_raises_and_stop_is_idempotent(self):
        aggregator = AsyncMock()
        aggregator.aggregate.return_value = STATE
        updater = GlobalContextUpdater(aggregator, ContextHolder(), _config())

        updater.start()
        assert updater.running
        with pytest.raises(RuntimeError):
            updater.start()
        await updater.stop()
        await updater.stop()
        assert not updater.running
