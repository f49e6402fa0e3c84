"""Merge a global snapshot into the page-driven chat context.

Precedence:

* ``type`` always comes from the page.
* Page-set payloads (``stock``, ``portfolio``, ``news_context``,
  ``screener_results``, ``page_context``) win; the snapshot only fills
  the ones the page left empty.
* Cross-cutting fields (``market``, ``terminal_context``,
  ``economic_indicators``, ``user_risk_profile``, ``watchlist``) are
  overlaid from the snapshot whenever it carries them.
"""

from collections import Counter

from .models import (
    ChatContext,
    GlobalContextState,
    GlobalMarketData,
    MarketContext,
    MarketIndexValue,
    MoverChange,
    NewsContext,
    NewsItem,
    SentimentBreakdown,
    TerminalContext,
)


def build_market_context(market_data: GlobalMarketData) -> MarketContext | None:
    if market_data.indices is None:
        return None
    return MarketContext(
        indices=tuple(
            MarketIndexValue(
                symbol=i.symbol,
                name=i.name,
                value=i.price,
                change=i.change,
                change_percent=i.change_percent,
            )
            for i in market_data.indices
        ),
        market_status=market_data.market_status,
        vix=market_data.vix,
        treasury_yield_10y=market_data.treasury_yield_10y,
        top_gainers=(
            tuple(
                MoverChange(symbol=g.symbol, change=g.change_percent)
                for g in market_data.top_gainers
            )
            if market_data.top_gainers is not None
            else None
        ),
        top_losers=(
            tuple(
                MoverChange(symbol=m.symbol, change=m.change_percent)
                for m in market_data.top_losers
            )
            if market_data.top_losers is not None
            else None
        ),
        sector_performance=(
            {s.name: s.change for s in market_data.sectors}
            if market_data.sectors is not None
            else None
        ),
    )


def build_terminal_context(market_data: GlobalMarketData) -> TerminalContext | None:
    terminal = TerminalContext(
        indices=market_data.indices,
        sectors=market_data.sectors,
        top_gainers=market_data.top_gainers,
        top_losers=market_data.top_losers,
    )
    if terminal == TerminalContext():
        return None
    return terminal


def build_news_context(news: tuple[NewsItem, ...] | None) -> NewsContext | None:
    if not news:
        return None
    counts = Counter(item.sentiment for item in news)
    return NewsContext(
        recent_news=news,
        news_count=len(news),
        sentiment_breakdown=SentimentBreakdown(
            bullish=counts["bullish"],
            bearish=counts["bearish"],
            neutral=counts["neutral"],
        ),
    )


def merge_context(page: ChatContext, state: GlobalContextState | None) -> ChatContext:
    """Return a new context; neither input is modified."""
    if state is None:
        return page

    overlay = {
        "market": build_market_context(state.market_data),
        "terminal_context": build_terminal_context(state.market_data),
        "economic_indicators": state.economic_indicators,
        "user_risk_profile": state.user_risk_profile,
        "watchlist": state.watchlist,
    }
    update = {k: v for k, v in overlay.items() if v is not None}

    if page.portfolio is None and state.portfolio is not None:
        update["portfolio"] = state.portfolio
    if page.news_context is None:
        news_context = build_news_context(state.recent_news)
        if news_context is not None:
            update["news_context"] = news_context

    return page.model_copy(update=update)
