"""Fixtures for backtest-replay tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from backtest_replay.models.candle import Candle
from backtest_replay.models.trade import TradeRecord

BASE_TIME = 1_700_000_000  # unix seconds, aligned to the hour
HOUR = 3600


# --- Candle helpers ---


def _make_candle(
    time: int = BASE_TIME,
    open_: float = 100.0,
    high: float = 105.0,
    low: float = 95.0,
    close: float = 102.0,
    volume: float = 1000.0,
) -> Candle:
    return Candle(time=time, open=open_, high=high, low=low, close=close, volume=volume)


@pytest.fixture
def sample_candle() -> Candle:
    return _make_candle()


@pytest.fixture
def sample_candles() -> list[Candle]:
    """20 hourly candles, close = 100 + i."""
    return [
        _make_candle(time=BASE_TIME + i * HOUR, close=float(100 + i)) for i in range(20)
    ]


# --- Trade helpers ---


def _make_trade(
    pnl: float = 100.0,
    status: str = "win",
    r_multiple: float = 1.0,
    side: str = "long",
    entry_time: datetime | None = None,
    trade_id: str | None = None,
) -> TradeRecord:
    entry = entry_time or datetime(2024, 1, 1, tzinfo=timezone.utc)
    return TradeRecord(
        id=trade_id,
        strategy_id="strat-1",
        user_id="user-1",
        pair="BTCUSDT",
        timeframe="1h",
        side=side,
        entry_price=100.0,
        exit_price=110.0,
        stop_loss=95.0,
        size=1000.0,
        pnl=pnl,
        r_multiple=r_multiple,
        status=status,
        entry_time=entry,
        exit_time=entry + timedelta(hours=4),
    )


@pytest.fixture
def sample_trade() -> TradeRecord:
    return _make_trade()


# --- Repository fixtures ---


@pytest.fixture
def mock_trade_repo() -> AsyncMock:
    repo = AsyncMock()
    repo.list_trades = AsyncMock(return_value=[])
    repo.create_trade = AsyncMock()
    repo.update_trade = AsyncMock()
    repo.delete_trade = AsyncMock()
    return repo


@pytest.fixture
def mock_session():
    """Create a mock AsyncSession with context manager support."""
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    session.flush = AsyncMock()
    session.execute = AsyncMock()
    session.delete = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def session_factory(mock_session):
    """Mock async_sessionmaker yielding mock_session.

    async_sessionmaker.__call__() returns a context manager (not a coroutine),
    so the factory is a MagicMock wired with the async context manager protocol.
    """
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=mock_session)
    ctx.__aexit__ = AsyncMock(return_value=False)

    factory = MagicMock()
    factory.return_value = ctx
    return factory
