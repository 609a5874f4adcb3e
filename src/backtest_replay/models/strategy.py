"""BacktestStrategy Pydantic model."""

from datetime import datetime

from pydantic import BaseModel

from backtest_replay.models.stats import BacktestStats


class BacktestStrategy(BaseModel):
    id: str = ""
    user_id: str = ""
    name: str = ""
    description: str | None = None
    symbol: str = ""  # e.g. BTCUSDT
    timeframe: str = ""  # e.g. 1h, 4h, 1d
    tags: list[str] = []
    initial_capital: float = 0.0
    currency: str = "USDT"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    # computed from trades, not stored
    stats: BacktestStats | None = None
    trade_count: int | None = None
