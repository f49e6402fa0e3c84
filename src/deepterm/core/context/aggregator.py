"""Global context aggregation.

``ContextAggregator.aggregate`` fans out every dashboard query at once,
waits for all of them to settle, and folds whatever succeeded into a
frozen ``GlobalContextState``.  A failing source only blanks its own
field.  Results are cached for ``freshness_window``; a call that arrives
while a pass is already running gets the last known snapshot back
immediately instead of starting a second pass.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from deepterm.configs.system import ContextConfig
from deepterm.core.metrics import (
    CONTEXT_AGGREGATION_SECONDS,
    CONTEXT_CACHE_LOOKUPS_TOTAL,
    CONTEXT_SOURCE_FETCHES_TOTAL,
)
from deepterm.infra.telemetry import (
    ATTR_CONTEXT_CACHE,
    ATTR_CONTEXT_FAILED_SOURCES,
    ATTR_CONTEXT_SYMBOL_COUNT,
    SPAN_CONTEXT_AGGREGATE,
    SPAN_CONTEXT_WATCHLIST_QUOTES,
    tracer,
)

from .models import (
    EMPTY_GLOBAL_STATE,
    VALID_MARKET_STATUSES,
    EconomicIndicators,
    GlobalContextState,
    GlobalMarketData,
    IndexQuote,
    Mover,
    NewsItem,
    PortfolioContext,
    PortfolioHolding,
    SectorChange,
    UserRiskProfile,
    WatchlistItem,
)
from .sources import MarketDataClient

logger = logging.getLogger(__name__)

SOURCE_OVERVIEW = "overview"
SOURCE_SECTORS = "sectors"
SOURCE_MOVERS = "movers"
SOURCE_ECONOMIC = "economic"
SOURCE_NEWS = "news"
SOURCE_WATCHLIST = "watchlist"
SOURCE_RISK_PROFILE = "risk_profile"
SOURCE_PORTFOLIO = "portfolio"

CACHE_HIT = "hit"
CACHE_INFLIGHT = "inflight"
CACHE_MISS = "miss"

DEFAULT_RISK_SCORE = 50.0


# ---------------------------------------------------------------------------
# Payload parsers: pure functions that raise on shapes they cannot use
# ---------------------------------------------------------------------------


def _compact(item: dict[str, Any]) -> dict[str, Any]:
    """Drop null / empty-string values so model defaults apply."""
    return {k: v for k, v in item.items() if v is not None and v != ""}


def _number(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number or default


def _market_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial ``GlobalMarketData`` so bad values fail their source."""
    GlobalMarketData.model_validate(fields)
    return fields


def _market_status(value: Any) -> str | None:
    """``marketStatus`` arrives bare or as ``{status, nextChange, timestamp}``."""
    if isinstance(value, dict):
        value = value.get("status")
    if not isinstance(value, str):
        return None
    status = value.strip().lower()
    return status if status in VALID_MARKET_STATUSES else None


def parse_overview(data: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    raw_indices = data.get("indices")
    if raw_indices:
        indices = tuple(IndexQuote.model_validate(_compact(i)) for i in raw_indices)
        fields["indices"] = indices
        vix = next(
            (i for i in indices if i.symbol == "^VIX" or "VIX" in i.name), None
        )
        if vix is not None:
            fields["vix"] = vix.price
        treasury = next(
            (i for i in indices if i.symbol == "TLT" or "Treasury" in i.name), None
        )
        if treasury is not None:
            fields["treasury_yield_10y"] = treasury.price
    status = _market_status(data.get("marketStatus"))
    if status is not None:
        fields["market_status"] = status
    elif data.get("marketStatus"):
        logger.debug("Ignoring unrecognised market status: %r", data["marketStatus"])
    return _market_fields(fields)


def parse_sectors(data: dict[str, Any], limit: int) -> dict[str, Any]:
    raw = data.get("sectors")
    if not raw:
        return {}
    sectors = tuple(SectorChange.model_validate(_compact(s)) for s in raw[:limit])
    return _market_fields({"sectors": sectors})


def parse_movers(data: dict[str, Any], limit: int) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    if data.get("gainers"):
        fields["top_gainers"] = tuple(
            Mover.model_validate(_compact(g)) for g in data["gainers"][:limit]
        )
    if data.get("losers"):
        fields["top_losers"] = tuple(
            Mover.model_validate(_compact(m)) for m in data["losers"][:limit]
        )
    return _market_fields(fields)


def parse_economic(data: dict[str, Any]) -> EconomicIndicators:
    return EconomicIndicators.model_validate(data)


def parse_news(data: dict[str, Any], limit: int) -> tuple[NewsItem, ...]:
    items: list[NewsItem] = []
    for raw in (data.get("news") or [])[:limit]:
        try:
            items.append(NewsItem.model_validate(_compact(raw)))
        except ValueError:
            logger.debug("Skipping unusable news item: %r", raw)
    return tuple(items)


def watchlist_symbols(data: dict[str, Any], limit: int) -> list[str]:
    """Union of all watchlist symbols in first-seen order, capped at *limit*."""
    seen: dict[str, None] = {}
    watchlists = data.get("watchlists")
    if not isinstance(watchlists, list):
        return []
    for watchlist in watchlists:
        symbols = watchlist.get("symbols") if isinstance(watchlist, dict) else None
        if isinstance(symbols, list):
            for symbol in symbols:
                seen.setdefault(symbol, None)
    return list(seen)[:limit]


def parse_quote(symbol: str, data: dict[str, Any]) -> WatchlistItem | None:
    quote = (data.get("data") or {}).get("quote") or data.get("quote")
    if not quote:
        return None
    return WatchlistItem(
        symbol=symbol,
        name=quote.get("longName") or quote.get("shortName") or symbol,
        price=_number(quote.get("price")),
        change=_number(quote.get("change")),
        change_percent=_number(quote.get("changePercent")),
    )


def parse_risk_profile(data: dict[str, Any]) -> UserRiskProfile | None:
    profile = data.get("riskProfile")
    if not data.get("hasProfile") or not profile:
        return None
    return UserRiskProfile.model_validate(
        {
            **_compact(profile),
            "riskScore": _number(profile.get("riskScore"), DEFAULT_RISK_SCORE),
        }
    )


def parse_portfolio(data: dict[str, Any], limit: int) -> PortfolioContext | None:
    holdings = data.get("holdings") or []
    summary = data.get("summary")
    if not holdings or not summary:
        return None
    total_value = _number(summary.get("totalValue"))
    return PortfolioContext(
        total_value=total_value,
        total_gain_loss=_number(summary.get("totalGainLoss")),
        day_change=_number(summary.get("dayGainLoss")),
        holdings=tuple(
            PortfolioHolding(
                symbol=h["symbol"],
                shares=_number(h.get("quantity")),
                avg_cost=_number(h.get("avgBuyPrice")),
                current_value=_number(h.get("totalValue")),
                gain_loss=_number(h.get("gainLoss")),
                gain_loss_percent=_number(h.get("gainLossPercent")),
                weight=(
                    _number(h.get("totalValue")) / total_value * 100
                    if total_value > 0
                    else 0.0
                ),
            )
            for h in holdings[:limit]
        ),
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class ContextAggregator:
    """Best-effort fan-out over the dashboard data sources.

    The single-flight flag and the cached snapshot belong to the instance,
    so two aggregators never share a guard.
    """

    def __init__(
        self,
        source: MarketDataClient,
        config: ContextConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._config = config or ContextConfig()
        self._clock = clock
        self._snapshot: GlobalContextState | None = None
        self._in_flight = False

    @property
    def snapshot(self) -> GlobalContextState | None:
        """The last completed snapshot, fresh or not."""
        return self._snapshot

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def aggregate(self) -> GlobalContextState:
        """Return a fresh-enough ``GlobalContextState``.  Never raises."""
        now = self._clock()
        window = self._config.freshness_window.total_seconds()

        if self._in_flight:
            CONTEXT_CACHE_LOOKUPS_TOTAL.labels(result=CACHE_INFLIGHT).inc()
            logger.debug("Aggregation already in flight; serving last snapshot.")
            return self._snapshot or EMPTY_GLOBAL_STATE

        if self._snapshot is not None and self._snapshot.is_fresh(now, window):
            CONTEXT_CACHE_LOOKUPS_TOTAL.labels(result=CACHE_HIT).inc()
            return self._snapshot

        CONTEXT_CACHE_LOOKUPS_TOTAL.labels(result=CACHE_MISS).inc()
        self._in_flight = True
        try:
            with CONTEXT_AGGREGATION_SECONDS.time():
                state = await self._fetch(now)
        except Exception:
            logger.exception("Global context aggregation failed")
            return self._snapshot or EMPTY_GLOBAL_STATE
        finally:
            self._in_flight = False

        self._snapshot = state
        return state

    async def _fetch(self, now: float) -> GlobalContextState:
        cfg = self._config
        with tracer.start_as_current_span(SPAN_CONTEXT_AGGREGATE) as span:
            span.set_attribute(ATTR_CONTEXT_CACHE, CACHE_MISS)
            (
                overview,
                sectors,
                movers,
                economic,
                news,
                watchlist,
                risk_profile,
                portfolio,
            ) = await asyncio.gather(
                self._source.market_overview(),
                self._source.sector_performance(),
                self._source.movers(),
                self._source.economic_indicators(),
                self._source.news(cfg.news_limit),
                self._watchlist_quotes(),
                self._source.risk_profile(),
                self._source.portfolio(),
                return_exceptions=True,
            )

            failed: list[str] = []

            def settle(name: str, result: Any, parse: Callable[[Any], Any]) -> Any:
                if isinstance(result, BaseException):
                    logger.debug("Context source %s unavailable: %s", name, result)
                    failed.append(name)
                    CONTEXT_SOURCE_FETCHES_TOTAL.labels(
                        source=name, status="absent"
                    ).inc()
                    return None
                try:
                    parsed = parse(result)
                except Exception:
                    logger.warning(
                        "Error parsing %s context data", name, exc_info=True
                    )
                    failed.append(name)
                    CONTEXT_SOURCE_FETCHES_TOTAL.labels(
                        source=name, status="absent"
                    ).inc()
                    return None
                CONTEXT_SOURCE_FETCHES_TOTAL.labels(source=name, status="ok").inc()
                return parsed

            market_fields: dict[str, Any] = {}
            for fields in (
                settle(SOURCE_OVERVIEW, overview, parse_overview),
                settle(
                    SOURCE_SECTORS,
                    sectors,
                    lambda d: parse_sectors(d, cfg.sector_limit),
                ),
                settle(
                    SOURCE_MOVERS, movers, lambda d: parse_movers(d, cfg.movers_limit)
                ),
            ):
                if fields:
                    market_fields.update(fields)

            state = GlobalContextState(
                market_data=GlobalMarketData(**market_fields),
                economic_indicators=settle(SOURCE_ECONOMIC, economic, parse_economic),
                recent_news=settle(
                    SOURCE_NEWS, news, lambda d: parse_news(d, cfg.news_limit)
                ),
                watchlist=settle(SOURCE_WATCHLIST, watchlist, tuple),
                user_risk_profile=settle(
                    SOURCE_RISK_PROFILE, risk_profile, parse_risk_profile
                ),
                portfolio=settle(
                    SOURCE_PORTFOLIO,
                    portfolio,
                    lambda d: parse_portfolio(d, cfg.portfolio_holdings_limit),
                ),
                last_updated=now,
            )
            span.set_attribute(ATTR_CONTEXT_FAILED_SOURCES, failed)
            if failed:
                logger.info("Global context built without: %s", ", ".join(failed))
            return state

    async def _watchlist_quotes(self) -> list[WatchlistItem]:
        """Second-order fan-out: membership first, then one quote per symbol.

        Symbols whose quote fails are dropped rather than failing the list.
        """
        membership = await self._source.watchlists()
        symbols = watchlist_symbols(membership, self._config.watchlist_quote_limit)
        if not symbols:
            return []

        with tracer.start_as_current_span(SPAN_CONTEXT_WATCHLIST_QUOTES) as span:
            span.set_attribute(ATTR_CONTEXT_SYMBOL_COUNT, len(symbols))
            results = await asyncio.gather(
                *(self._quote(symbol) for symbol in symbols)
            )
        return [item for item in results if item is not None]

    async def _quote(self, symbol: str) -> WatchlistItem | None:
        try:
            return parse_quote(symbol, await self._source.quote(symbol))
        except Exception as e:
            logger.debug("Dropping watchlist quote for %s: %s", symbol, e)
            return None
