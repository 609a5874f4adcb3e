"""Trade-log performance statistics (pure, stateless)."""

from __future__ import annotations

import math
from collections.abc import Sequence

from backtest_replay.models.stats import BacktestStats, EquityPoint
from backtest_replay.models.trade import TradeRecord


def calculate_backtest_stats(trades: Sequence[TradeRecord]) -> BacktestStats:
    """
    Aggregate a trade log into performance metrics + equity curve.

    Trades are consumed in the order given. The equity curve and drawdown
    follow that order; pass the list through sort_by_entry_time() first if a
    chronological curve is needed.
    """
    if not trades:
        return BacktestStats()

    total = len(trades)
    wins = sum(1 for t in trades if t.status == "win")
    losses = sum(1 for t in trades if t.status == "loss")
    breakevens = sum(1 for t in trades if t.status == "breakeven")
    win_rate = wins / total * 100

    gross_profit = sum(t.pnl for t in trades if t.pnl > 0)
    gross_loss = abs(sum(t.pnl for t in trades if t.pnl < 0))
    if gross_loss == 0:
        profit_factor = math.inf if gross_profit > 0 else 0.0
    else:
        profit_factor = gross_profit / gross_loss

    # Running equity: drawdown is measured against the highest cum_pnl so far,
    # starting from the synthetic origin at 0.
    peak = 0.0
    max_drawdown = 0.0
    cum_pnl = 0.0
    equity_curve = [EquityPoint(index=0, cum_pnl=0.0)]
    for i, trade in enumerate(trades):
        cum_pnl += trade.pnl
        equity_curve.append(EquityPoint(index=i + 1, cum_pnl=round(cum_pnl, 2)))
        if cum_pnl > peak:
            peak = cum_pnl
        drawdown = cum_pnl - peak
        if drawdown < max_drawdown:
            max_drawdown = drawdown

    # r_multiple == 0 (no stop) is averaged in; only nan/inf are dropped
    r_values = [t.r_multiple for t in trades if math.isfinite(t.r_multiple)]
    avg_r_multiple = sum(r_values) / len(r_values) if r_values else 0.0

    return BacktestStats(
        total_trades=total,
        wins=wins,
        losses=losses,
        breakevens=breakevens,
        win_rate=win_rate,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=profit_factor,
        max_drawdown=max_drawdown,
        avg_r_multiple=avg_r_multiple,
        total_pnl=round(cum_pnl, 2),
        equity_curve=equity_curve,
    )


def sort_by_entry_time(trades: Sequence[TradeRecord]) -> list[TradeRecord]:
    """Return trades ordered by entry_time ascending (stable for ties)."""
    return sorted(trades, key=lambda t: t.entry_time)
