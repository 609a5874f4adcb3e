"""BacktestStats, EquityPoint Pydantic models."""

from pydantic import BaseModel, ConfigDict


class EquityPoint(BaseModel):
    index: int
    cum_pnl: float


class BacktestStats(BaseModel):
    # profit_factor may be inf; keep it as Infinity in JSON instead of null
    model_config = ConfigDict(ser_json_inf_nan="constants")

    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    breakevens: int = 0
    win_rate: float = 0.0  # 0-100
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0  # <= 0, in currency
    avg_r_multiple: float = 0.0
    total_pnl: float = 0.0
    equity_curve: list[EquityPoint] = [EquityPoint(index=0, cum_pnl=0.0)]
