"""Versioned chat context and the background global-context refresher.

``ContextHolder`` keeps the page-driven context and the latest global
snapshot side by side and merges them on read, so a timer-driven refresh
can never overwrite what a page set.  Each change bumps ``version``;
requests take a ``ContextSnapshot`` by value.

``GlobalContextUpdater`` runs the periodic refresh.  Its first pass waits
for the page to report that its context is set, and falls back to
``initial_delay`` when no page ever does.  The delay is only a
mitigation for pages that never signal readiness, not an ordering
guarantee.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from deepterm.configs.system import ContextConfig

from .aggregator import ContextAggregator
from .merge import merge_context
from .models import ChatContext, ContextSnapshot, GlobalContextState

logger = logging.getLogger(__name__)


class ContextHolder:
    """Owns the page context and the last applied global snapshot."""

    def __init__(self, page: ChatContext | None = None) -> None:
        self._page = page or ChatContext()
        self._global: GlobalContextState | None = None
        self._version = 0
        self._page_ready = asyncio.Event()

    @property
    def version(self) -> int:
        return self._version

    @property
    def page_context(self) -> ChatContext:
        return self._page

    @property
    def global_state(self) -> GlobalContextState | None:
        return self._global

    def set_page_context(self, context: ChatContext, *, ready: bool = True) -> None:
        """Replace the page context (page navigation)."""
        self._page = context
        self._version += 1
        if ready:
            self.mark_page_ready()

    def update_page_context(self, **fields: Any) -> None:
        """Shallow-update page fields, e.g. ``update_page_context(stock=...)``."""
        self.set_page_context(
            ChatContext.model_validate({**dict(self._page), **fields})
        )

    def clear_page_context(self) -> None:
        self.set_page_context(ChatContext(), ready=False)
        self._page_ready.clear()

    def mark_page_ready(self) -> None:
        self._page_ready.set()

    async def wait_page_ready(self) -> None:
        await self._page_ready.wait()

    def apply_global(self, state: GlobalContextState) -> bool:
        """Adopt *state* unless it is older than what is already held.

        Returns ``True`` when the held snapshot changed.
        """
        current = self._global
        if current is state:
            return False
        if current is not None and state.last_updated < current.last_updated:
            logger.debug("Ignoring stale global snapshot.")
            return False
        self._global = state
        self._version += 1
        return True

    def snapshot(self) -> ContextSnapshot:
        """The merged context at the current version."""
        return ContextSnapshot(
            version=self._version,
            context=merge_context(self._page, self._global),
        )

    def current(self) -> ChatContext:
        return self.snapshot().context


class GlobalContextUpdater:
    """Periodically refreshes the global snapshot into a ``ContextHolder``.

    Usage::

        async with GlobalContextUpdater(aggregator, holder, config):
            ...  # holder.current() now carries global data
    """

    def __init__(
        self,
        aggregator: ContextAggregator,
        holder: ContextHolder,
        config: ContextConfig | None = None,
    ) -> None:
        self._aggregator = aggregator
        self._holder = holder
        self._config = config or ContextConfig()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> ContextSnapshot:
        """Run one aggregation pass and apply it."""
        state = await self._aggregator.aggregate()
        if self._holder.apply_global(state):
            market = state.market_data
            logger.info(
                "Global context updated",
                extra={
                    "has_indices": bool(market.indices),
                    "has_sectors": bool(market.sectors),
                    "has_movers": bool(market.top_gainers or market.top_losers),
                    "has_economic": state.economic_indicators is not None,
                    "has_news": bool(state.recent_news),
                    "has_watchlist": bool(state.watchlist),
                    "has_portfolio": state.portfolio is not None,
                    "has_risk_profile": state.user_risk_profile is not None,
                    "page_type": self._holder.page_context.type,
                },
            )
        return self._holder.snapshot()

    async def _wait_for_page(self) -> None:
        try:
            async with asyncio.timeout(self._config.initial_delay.total_seconds()):
                await self._holder.wait_page_ready()
        except TimeoutError:
            logger.debug("Page context not signalled ready; refreshing anyway.")

    async def run(self) -> None:
        """Refresh forever at ``refresh_interval`` until cancelled."""
        await self._wait_for_page()
        interval = self._config.refresh_interval.total_seconds()
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Global context refresh failed")
            await asyncio.sleep(interval)

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError("GlobalContextUpdater is already running.")
        self._task = asyncio.create_task(self.run(), name="global-context-refresh")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})

    async def __aenter__(self) -> GlobalContextUpdater:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
