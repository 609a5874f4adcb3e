"""Unit tests for BinanceRestClient: paginated kline history."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from tenacity import wait_none

from backtest_replay.market_data.binance_rest import BinanceRestClient, parse_kline_row
from backtest_replay.models.candle import Candle

HOUR = 3600
BASE_TIME = 1_700_000_000


def _page(start: int, count: int) -> list[Candle]:
    """count consecutive hourly candles starting at index start."""
    return [
        Candle(time=BASE_TIME + (start + i) * HOUR, open=1, high=2, low=0.5, close=1.5)
        for i in range(count)
    ]


@pytest.fixture
def client() -> BinanceRestClient:
    return BinanceRestClient(base_url="https://example.test/klines", page_limit=3, max_pages=10)


# --- parse_kline_row() ---


class TestParseKlineRow:
    def test_converts_ms_and_strings(self) -> None:
        row = [1700000000000, "100.5", "110", "99", "105.25", "12.5", 1700003599999]
        candle = parse_kline_row(row)

        assert candle.time == 1_700_000_000
        assert candle.open == 100.5
        assert candle.close == 105.25
        assert candle.volume == 12.5


# --- fetch_history() ---


class TestFetchHistory:
    async def test_chains_pages_backwards_and_dedupes(self, client: BinanceRestClient) -> None:
        # newest page first; neighbouring pages share their boundary candle
        newest = _page(6, 3)
        middle = _page(4, 3)
        oldest = _page(3, 2)
        with patch.object(
            client, "fetch_page", AsyncMock(side_effect=[newest, middle, oldest])
        ) as mock_fetch:
            candles = await client.fetch_history("BTCUSDT", "1h")

        assert [c.time for c in candles] == [BASE_TIME + i * HOUR for i in range(3, 9)]
        end_times = [call.args[2] for call in mock_fetch.await_args_list]
        assert end_times == [None, newest[0].time * 1000, middle[0].time * 1000]

    async def test_short_first_page_stops(self, client: BinanceRestClient) -> None:
        with patch.object(client, "fetch_page", AsyncMock(return_value=_page(0, 2))) as mock_fetch:
            candles = await client.fetch_history("BTCUSDT", "1h")

        assert len(candles) == 2
        mock_fetch.assert_awaited_once()

    async def test_empty_history(self, client: BinanceRestClient) -> None:
        with patch.object(client, "fetch_page", AsyncMock(return_value=[])):
            assert await client.fetch_history("BTCUSDT", "1h") == []

    async def test_stops_at_max_pages(self) -> None:
        client = BinanceRestClient(page_limit=2, max_pages=3)
        pages = [_page(10 - 2 * i, 2) for i in range(5)]
        with patch.object(client, "fetch_page", AsyncMock(side_effect=pages)) as mock_fetch:
            candles = await client.fetch_history("BTCUSDT", "1h")

        assert mock_fetch.await_count == 3
        assert len(candles) == 6

    async def test_page_error_keeps_fetched_pages(self, client: BinanceRestClient) -> None:
        with patch.object(
            client,
            "fetch_page",
            AsyncMock(side_effect=[_page(6, 3), httpx.ConnectError("boom")]),
        ):
            candles = await client.fetch_history("BTCUSDT", "1h")

        assert len(candles) == 3

    async def test_output_sorted_and_unique(self, client: BinanceRestClient) -> None:
        shuffled = [_page(5, 1)[0], _page(3, 1)[0], _page(4, 1)[0]]
        with patch.object(client, "fetch_page", AsyncMock(side_effect=[shuffled, _page(3, 1)])):
            candles = await client.fetch_history("BTCUSDT", "1h")

        times = [c.time for c in candles]
        assert times == sorted(set(times))


# --- _get_klines() retry ---


class TestGetKlinesRetry:
    async def test_retries_transient_errors(self, client: BinanceRestClient) -> None:
        response = MagicMock()
        response.json.return_value = [[1700000000000, "1", "2", "0.5", "1.5", "3"]]
        mock_http = MagicMock()
        mock_http.get = AsyncMock(side_effect=[httpx.ConnectError("boom"), response])

        with (
            patch.object(BinanceRestClient._get_klines.retry, "wait", wait_none()),
            patch("backtest_replay.market_data.binance_rest.httpx.AsyncClient") as mock_cls,
        ):
            mock_cls.return_value.__aenter__.return_value = mock_http
            candles = await client.fetch_page("BTCUSDT", "1h", end_time_ms=123)

        assert len(candles) == 1
        assert mock_http.get.await_count == 2
        params = mock_http.get.await_args.kwargs["params"]
        assert params == {"symbol": "BTCUSDT", "interval": "1h", "limit": 3, "endTime": 123}

    async def test_raises_after_three_attempts(self, client: BinanceRestClient) -> None:
        mock_http = MagicMock()
        mock_http.get = AsyncMock(side_effect=httpx.ConnectError("down"))

        with (
            patch.object(BinanceRestClient._get_klines.retry, "wait", wait_none()),
            patch("backtest_replay.market_data.binance_rest.httpx.AsyncClient") as mock_cls,
        ):
            mock_cls.return_value.__aenter__.return_value = mock_http
            with pytest.raises(httpx.ConnectError):
                await client.fetch_page("BTCUSDT", "1h")

        assert mock_http.get.await_count == 3
