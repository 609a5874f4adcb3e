"""TradeRecord Pydantic model (immutable closed trade)."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from backtest_replay.models.position import Side

TradeStatus = Literal["win", "loss", "breakeven"]


class TradeRecord(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    id: str | None = None
    strategy_id: str = ""
    user_id: str = ""
    pair: str = ""
    timeframe: str = ""
    side: Side
    entry_price: float
    exit_price: float
    stop_loss: float | None = None
    take_profit: float | None = None
    size: float
    pnl: float
    pnl_percent: float = 0.0
    r_multiple: float = 0.0
    status: TradeStatus
    entry_time: datetime
    exit_time: datetime
    notes: str | None = None
    screenshot_url: str | None = None
    created_at: datetime | None = None
