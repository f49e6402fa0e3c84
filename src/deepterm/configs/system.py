from datetime import timedelta

from pydantic import BaseModel, Field


class UpstreamConfig(BaseModel):
    """Dashboard data API the context aggregator reads from."""

    base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the dashboard data API",
    )
    timeout_seconds: float = Field(
        default=10.0, description="Per-request timeout for upstream queries"
    )


class ContextConfig(BaseModel):
    """Global context aggregation and refresh settings."""

    freshness_window: timedelta = Field(
        default=timedelta(seconds=30),
        description="How long an aggregated snapshot is served from cache",
    )
    refresh_interval: timedelta = Field(
        default=timedelta(seconds=60),
        description="Period of the background global-context refresh",
    )
    initial_delay: timedelta = Field(
        default=timedelta(milliseconds=500),
        description="Fallback wait for the page-ready signal before the "
        "first refresh",
    )
    watchlist_quote_limit: int = Field(
        default=10, description="Maximum watchlist symbols quoted per refresh"
    )
    sector_limit: int = Field(default=11, description="Sectors kept per refresh")
    movers_limit: int = Field(
        default=5, description="Gainers and losers kept per refresh"
    )
    news_limit: int = Field(default=10, description="News items kept per refresh")
    portfolio_holdings_limit: int = Field(
        default=10, description="Portfolio holdings attached to the context"
    )


class ChatConfig(BaseModel):
    """Assistant backend settings."""

    endpoint: str = Field(
        default="http://localhost:3000/api/chat",
        description="Streaming chat endpoint of the assistant backend",
    )
    history_window: int = Field(
        default=10, description="Prior messages sent upstream with each turn"
    )
    model: str | None = Field(
        default=None, description="Model id requested from the backend"
    )
    timeout_seconds: float | None = Field(
        default=None,
        description="Read timeout for the stream; None waits until cancelled",
    )


class LoggingConfig(BaseModel):
    """Root logger settings."""

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(
        default=False, description="Emit JSON lines instead of plain text"
    )


class TracingConfig(BaseModel):
    """OpenTelemetry exporter settings."""

    enabled: bool = Field(default=False, description="Enable OTLP tracing")
    endpoint: str = Field(default="", description="OTLP HTTP traces endpoint")
    service_name: str = Field(
        default="deepterm-assistant", description="service.name resource"
    )
    sample_rate: float = Field(
        default=1.0, description="Root sampling ratio between 0 and 1"
    )
