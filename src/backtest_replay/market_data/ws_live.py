"""Binance kline WebSocket feed (live candle updates)."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable

import structlog
import websockets

from backtest_replay.models.candle import Candle

logger = structlog.get_logger()

BINANCE_WS_URL = "wss://stream.binance.com:9443/ws"


def parse_kline_message(message: str | bytes) -> Candle | None:
    """Kline event JSON -> Candle. Anything else returns None."""
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, TypeError):
        logger.warning("ws_invalid_json", message=str(message)[:200])
        return None
    k = data.get("k") if isinstance(data, dict) else None
    if not k:
        return None
    return Candle(
        time=int(k["t"]) // 1000,
        open=float(k["o"]),
        high=float(k["h"]),
        low=float(k["l"]),
        close=float(k["c"]),
        volume=float(k.get("v", 0)),
    )


class BinanceLiveFeed:
    def __init__(self, url: str = BINANCE_WS_URL, max_reconnect_delay: int = 60) -> None:
        self.url = url.rstrip("/")
        self.max_reconnect_delay = max_reconnect_delay

    def stream_url(self, symbol: str, interval: str) -> str:
        return f"{self.url}/{symbol.lower()}@kline_{interval}"

    def _connect(self, url: str):
        """Open the websocket. Separated for testability."""
        return websockets.connect(url, ping_interval=20)

    def subscribe_live(
        self,
        symbol: str,
        interval: str,
        on_candle: Callable[[Candle], Awaitable[None]],
    ) -> Callable[[], None]:
        """Start streaming in a background task. Returns an unsubscribe function."""
        url = self.stream_url(symbol, interval)
        task = asyncio.get_running_loop().create_task(self._run(url, on_candle))
        logger.info("ws_subscribed_klines", symbol=symbol, interval=interval)

        def unsubscribe() -> None:
            task.cancel()
            logger.info("ws_unsubscribed_klines", symbol=symbol, interval=interval)

        return unsubscribe

    async def _run(self, url: str, on_candle: Callable[[Candle], Awaitable[None]]) -> None:
        """Read messages forever, reconnecting with exponential backoff."""
        attempts = 0
        while True:
            try:
                async with self._connect(url) as ws:
                    attempts = 0
                    logger.info("ws_connected", url=url)
                    async for message in ws:
                        candle = parse_kline_message(message)
                        if candle is None:
                            continue
                        try:
                            await on_candle(candle)
                        except Exception:
                            logger.exception("ws_callback_error", url=url)
            except asyncio.CancelledError:
                raise
            except Exception:
                attempts += 1
                delay = min(2**attempts, self.max_reconnect_delay)
                logger.exception("ws_reconnecting", url=url, attempt=attempts, delay=delay)
                await asyncio.sleep(delay)
