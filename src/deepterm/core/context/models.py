"""Context models shared by the aggregator, the merge engine and requests.

Every model is frozen and serialises with the camelCase keys the
dashboard API and the assistant backend speak (``changePercent``,
``terminalContext`` ...).  Collections are tuples so a snapshot handed to
a request cannot be edited behind the aggregator's back.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Context type constants
# ---------------------------------------------------------------------------

CONTEXT_TYPE_GENERAL = "general"
CONTEXT_TYPE_STOCK = "stock"
CONTEXT_TYPE_MARKET = "market"
CONTEXT_TYPE_PORTFOLIO = "portfolio"
CONTEXT_TYPE_SCREENER = "screener"
CONTEXT_TYPE_NEWS = "news"
CONTEXT_TYPE_TERMINAL = "terminal"

VALID_CONTEXT_TYPES = frozenset(
    {
        CONTEXT_TYPE_GENERAL,
        CONTEXT_TYPE_STOCK,
        CONTEXT_TYPE_MARKET,
        CONTEXT_TYPE_PORTFOLIO,
        CONTEXT_TYPE_SCREENER,
        CONTEXT_TYPE_NEWS,
        CONTEXT_TYPE_TERMINAL,
    }
)

ContextType = Literal[
    "general", "stock", "market", "portfolio", "screener", "news", "terminal"
]
MarketStatus = Literal["open", "closed", "pre-market", "after-hours"]
VALID_MARKET_STATUSES = frozenset({"open", "closed", "pre-market", "after-hours"})
Sentiment = Literal["bullish", "bearish", "neutral"]


class ContextModel(BaseModel):
    """Frozen base with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Upstream payload shapes (what the aggregator keeps)
# ---------------------------------------------------------------------------


class IndexQuote(ContextModel):
    symbol: str
    name: str = ""
    price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0


class SectorChange(ContextModel):
    name: str
    change: float = 0.0


class Mover(ContextModel):
    symbol: str
    name: str = ""
    price: float = 0.0
    change_percent: float = 0.0


class GlobalMarketData(ContextModel):
    """Market-wide data assembled from the overview, sector and mover queries.

    A field is ``None`` when the query feeding it failed.
    """

    indices: tuple[IndexQuote, ...] | None = None
    sectors: tuple[SectorChange, ...] | None = None
    top_gainers: tuple[Mover, ...] | None = None
    top_losers: tuple[Mover, ...] | None = None
    vix: float | None = None
    treasury_yield_10y: float | None = Field(default=None, alias="treasuryYield10Y")
    market_status: MarketStatus | None = None


class IndicatorValue(ContextModel):
    value: float | None = None
    change: float | None = None


class EconomicIndicators(ContextModel):
    gdp: IndicatorValue | None = None
    unemployment: IndicatorValue | None = None
    inflation: IndicatorValue | None = None
    federal_funds_rate: IndicatorValue | None = None
    consumer_confidence: IndicatorValue | None = None
    manufacturing_pmi: IndicatorValue | None = None
    services_pmi: IndicatorValue | None = None


class NewsItem(ContextModel):
    headline: str
    summary: str = ""
    category: str = "General"
    sentiment: Sentiment = "neutral"
    source: str = "Unknown"
    time_ago: str = "recently"
    symbol: str | None = None


class WatchlistItem(ContextModel):
    symbol: str
    name: str
    price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0


class UserRiskProfile(ContextModel):
    risk_tolerance: Literal["conservative", "moderate", "aggressive"]
    investment_horizon: Literal["short_term", "medium_term", "long_term"]
    investment_experience: Literal["beginner", "intermediate", "advanced"]
    risk_score: float = 50.0
    preferred_sectors: tuple[str, ...] | None = None
    avoid_sectors: tuple[str, ...] | None = None


class PortfolioHolding(ContextModel):
    symbol: str
    shares: float = 0.0
    avg_cost: float = 0.0
    current_value: float = 0.0
    gain_loss: float = 0.0
    gain_loss_percent: float = 0.0
    weight: float = 0.0


class PortfolioContext(ContextModel):
    holdings: tuple[PortfolioHolding, ...] | None = None
    total_value: float | None = None
    total_gain_loss: float | None = None
    day_change: float | None = None
    sector_allocation: dict[str, float] | None = None


class GlobalContextState(ContextModel):
    """Best-effort result of one aggregation pass.

    ``last_updated`` is a monotonic clock reading taken when the pass
    started; ``0.0`` marks the empty placeholder returned before any pass
    has finished.
    """

    market_data: GlobalMarketData = Field(default_factory=GlobalMarketData)
    economic_indicators: EconomicIndicators | None = None
    watchlist: tuple[WatchlistItem, ...] | None = None
    recent_news: tuple[NewsItem, ...] | None = None
    user_risk_profile: UserRiskProfile | None = None
    portfolio: PortfolioContext | None = None
    last_updated: float = 0.0

    def is_fresh(self, now: float, window_seconds: float) -> bool:
        return self.last_updated > 0 and now - self.last_updated < window_seconds


EMPTY_GLOBAL_STATE = GlobalContextState()

# ---------------------------------------------------------------------------
# Chat context (what is sent with every turn)
# ---------------------------------------------------------------------------


class StockQuote(ContextModel):
    symbol: str
    name: str = ""
    price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0
    high: float = 0.0
    low: float = 0.0
    open: float = 0.0
    previous_close: float = 0.0
    volume: float = 0.0
    market_cap: float = 0.0


class StockContext(ContextModel):
    symbol: str
    name: str | None = None
    sector: str | None = None
    industry: str | None = None
    description: str | None = None
    quote: StockQuote | None = None
    metrics: dict[str, float | None] | None = None


class MarketIndexValue(ContextModel):
    symbol: str
    name: str = ""
    value: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0


class MoverChange(ContextModel):
    symbol: str
    change: float = 0.0


class MarketContext(ContextModel):
    indices: tuple[MarketIndexValue, ...] | None = None
    top_gainers: tuple[MoverChange, ...] | None = None
    top_losers: tuple[MoverChange, ...] | None = None
    market_status: MarketStatus | None = None
    vix: float | None = None
    treasury_yield_10y: float | None = Field(default=None, alias="treasuryYield10Y")
    sector_performance: dict[str, float] | None = None


class TerminalContext(ContextModel):
    indices: tuple[IndexQuote, ...] | None = None
    sectors: tuple[SectorChange, ...] | None = None
    top_gainers: tuple[Mover, ...] | None = None
    top_losers: tuple[Mover, ...] | None = None


class SentimentBreakdown(ContextModel):
    bullish: int = 0
    bearish: int = 0
    neutral: int = 0


class NewsContext(ContextModel):
    recent_news: tuple[NewsItem, ...] = ()
    news_count: int = 0
    sentiment_breakdown: SentimentBreakdown | None = None


class ScreenerHit(ContextModel):
    symbol: str
    name: str = ""


class ScreenerResults(ContextModel):
    count: int = 0
    top_results: tuple[ScreenerHit, ...] = ()


class PageContext(ContextModel):
    current_page: str
    selected_timeframe: str | None = None


class ChatContext(ContextModel):
    """Context attached to an outgoing turn.

    ``type`` is the page-driven domain; every other field is an optional
    payload that may be present regardless of ``type``.
    """

    type: ContextType = CONTEXT_TYPE_GENERAL
    stock: StockContext | None = None
    market: MarketContext | None = None
    portfolio: PortfolioContext | None = None
    screener_results: ScreenerResults | None = None
    news_context: NewsContext | None = None
    terminal_context: TerminalContext | None = None
    economic_indicators: EconomicIndicators | None = None
    user_risk_profile: UserRiskProfile | None = None
    watchlist: tuple[WatchlistItem, ...] | None = None
    page_context: PageContext | None = None

    def to_payload(self) -> dict:
        """Wire form: camelCase keys, absent fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ContextSnapshot(ContextModel):
    """A merged context plus the holder version it was read at."""

    version: int
    context: ChatContext
