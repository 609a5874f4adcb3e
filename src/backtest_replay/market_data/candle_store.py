"""Candle series for the active (symbol, interval): history + live updates."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING

import pandas as pd
import structlog

if TYPE_CHECKING:
    from backtest_replay.market_data.binance_rest import BinanceRestClient
    from backtest_replay.market_data.ws_live import BinanceLiveFeed
    from backtest_replay.models.candle import Candle

logger = structlog.get_logger()

CandleListener = Callable[["Candle", bool], Awaitable[None]]


def merge_candle_pages(pages: Iterable[list[Candle]]) -> list[Candle]:
    """
    Flatten fetched pages into one series: one candle per time, ascending.

    The first occurrence of a time wins, so pass pages in fetch order.
    """
    by_time: dict[int, Candle] = {}
    for page in pages:
        for candle in page:
            by_time.setdefault(candle.time, candle)
    return sorted(by_time.values(), key=lambda c: c.time)


class CandleStore:
    """
    Owns the candle list of the current (symbol, interval) selection.

    select() replaces the series wholesale. While live, the streaming feed
    appends a new candle (time after the last one) or replaces the
    in-progress last candle (same time). freeze() makes the store ignore
    live updates entirely, which is what replay needs.

    Listeners are awaited as listener(candle, appended) after every applied
    live update.
    """

    def __init__(self, rest: BinanceRestClient, live: BinanceLiveFeed | None = None) -> None:
        self.rest = rest
        self.live = live
        self.symbol: str | None = None
        self.interval: str | None = None
        self.candles: list[Candle] = []
        self.frozen = False
        self._listeners: list[CandleListener] = []
        self._unsubscribe: Callable[[], None] | None = None

    async def select(self, symbol: str, interval: str) -> list[Candle]:
        """Load full history for a new selection and (re)subscribe to live updates."""
        self.close()
        self.symbol = symbol
        self.interval = interval
        self.candles = await self.rest.fetch_history(symbol, interval)
        if self.live is not None:
            self._unsubscribe = self.live.subscribe_live(symbol, interval, self.apply_live)
        logger.info("candle_series_selected", symbol=symbol, interval=interval, count=len(self.candles))
        return self.get_full_series()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def add_listener(self, listener: CandleListener) -> None:
        self._listeners.append(listener)

    def freeze(self) -> None:
        self.frozen = True

    def unfreeze(self) -> None:
        self.frozen = False

    def get_full_series(self) -> list[Candle]:
        return list(self.candles)

    def get_latest(self) -> Candle | None:
        if not self.candles:
            return None
        return self.candles[-1]

    async def apply_live(self, candle: Candle) -> bool:
        """Merge one streamed candle. Returns False when it was ignored."""
        if self.frozen:
            return False
        last = self.get_latest()
        if last is not None and candle.time == last.time:
            self.candles[-1] = candle
            appended = False
        elif last is None or candle.time > last.time:
            self.candles.append(candle)
            appended = True
        else:
            logger.debug("live_candle_ignored", reason="stale", time=candle.time)
            return False
        for listener in self._listeners:
            await listener(candle, appended)
        return True

    def get_as_dataframe(self, limit: int | None = None) -> pd.DataFrame:
        """
        Candles as a DataFrame for indicator overlays:
        columns: ['open', 'high', 'low', 'close', 'volume']
        index: DatetimeIndex (UTC)
        """
        candles = self.candles if limit is None else self.candles[-limit:]
        if not candles:
            return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])
        data = [
            {
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in candles
        ]
        index = pd.to_datetime([c.time for c in candles], unit="s", utc=True)
        return pd.DataFrame(data, index=index)
