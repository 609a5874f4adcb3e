"""Binance klines REST client: paginated candle history."""

from __future__ import annotations

import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from backtest_replay.market_data.candle_store import merge_candle_pages
from backtest_replay.models.candle import Candle

logger = structlog.get_logger()

BINANCE_KLINES_URL = "https://api.binance.com/api/v3/klines"


def parse_kline_row(row: list) -> Candle:
    """[open_time_ms, open, high, low, close, volume, ...] -> Candle."""
    return Candle(
        time=int(row[0]) // 1000,
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]) if len(row) > 5 else 0.0,
    )


class BinanceRestClient:
    """
    Fetches full candle history for a (symbol, interval) pair.

    Pages are requested newest first; each following page ends at the open
    time of the oldest candle seen so far, so neighbouring pages share one
    boundary candle. Pagination stops when a page comes back short (start of
    listed history) or after max_pages requests.
    """

    def __init__(
        self,
        base_url: str = BINANCE_KLINES_URL,
        page_limit: int = 1000,
        max_pages: int = 100,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url
        self.page_limit = page_limit
        self.max_pages = max_pages
        self.timeout = timeout

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10), reraise=True)
    async def _get_klines(self, params: dict) -> list[list]:
        """Low-level HTTP GET with retry on transient errors."""
        async with httpx.AsyncClient() as http:
            response = await http.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

    async def fetch_page(
        self, symbol: str, interval: str, end_time_ms: int | None = None
    ) -> list[Candle]:
        """One page of candles (oldest first) ending at end_time_ms, or the latest page."""
        params: dict = {"symbol": symbol, "interval": interval, "limit": self.page_limit}
        if end_time_ms is not None:
            params["endTime"] = end_time_ms
        rows = await self._get_klines(params)
        return [parse_kline_row(row) for row in rows]

    async def fetch_history(self, symbol: str, interval: str) -> list[Candle]:
        """Ordered, deduplicated candle history."""
        pages: list[list[Candle]] = []
        end_time_ms: int | None = None
        for page_index in range(self.max_pages):
            try:
                page = await self.fetch_page(symbol, interval, end_time_ms)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    "candle_page_fetch_failed",
                    symbol=symbol,
                    interval=interval,
                    page=page_index,
                    error=str(e),
                )
                break
            if page:
                pages.append(page)
            if len(page) < self.page_limit:
                break
            end_time_ms = page[0].time * 1000

        candles = merge_candle_pages(pages)
        logger.info(
            "candle_history_fetched",
            symbol=symbol,
            interval=interval,
            pages=len(pages),
            count=len(candles),
        )
        return candles
