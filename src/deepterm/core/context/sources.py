"""HTTP client for the dashboard data API the aggregator fans out to.

Each method returns the decoded JSON body of a successful response and
raises on anything else; the aggregator decides what a failure means.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from deepterm.configs.system import UpstreamConfig
from deepterm.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

PATH_MARKET_OVERVIEW = "/api/market/overview"
PATH_MARKET_SECTORS = "/api/market/sectors"
PATH_MARKET_MOVERS = "/api/market/movers"
PATH_ECONOMIC_INDICATORS = "/api/economic/indicators"
PATH_MARKET_NEWS = "/api/market/news"
PATH_WATCHLISTS = "/api/watchlists"
PATH_STOCK_QUOTE = "/api/stocks/quote/{symbol}"
PATH_RISK_PROFILE = "/api/onboarding/risk-profile"
PATH_PORTFOLIO = "/api/portfolio"


class MarketDataClient:
    """Async client for the dashboard data endpoints."""

    def __init__(
        self,
        config: UpstreamConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET *path* and return its JSON body.

        Raises ``UpstreamError`` on a non-2xx status; transport errors and
        undecodable bodies propagate as raised by httpx / json.
        """
        response = await self._client.get(path, params=params)
        if not response.is_success:
            raise UpstreamError(path, response.status_code)
        return response.json()

    async def market_overview(self) -> Any:
        return await self.get_json(PATH_MARKET_OVERVIEW)

    async def sector_performance(self) -> Any:
        return await self.get_json(PATH_MARKET_SECTORS)

    async def movers(self) -> Any:
        return await self.get_json(PATH_MARKET_MOVERS)

    async def economic_indicators(self) -> Any:
        return await self.get_json(PATH_ECONOMIC_INDICATORS)

    async def news(self, limit: int) -> Any:
        return await self.get_json(PATH_MARKET_NEWS, params={"limit": limit})

    async def watchlists(self) -> Any:
        return await self.get_json(PATH_WATCHLISTS)

    async def quote(self, symbol: str) -> Any:
        return await self.get_json(PATH_STOCK_QUOTE.format(symbol=symbol))

    async def risk_profile(self) -> Any:
        return await self.get_json(PATH_RISK_PROFILE)

    async def portfolio(self) -> Any:
        return await self.get_json(PATH_PORTFOLIO)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
