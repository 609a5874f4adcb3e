"""Plain-text formatting of backtest stats and trades."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from backtest_replay.models.stats import BacktestStats
    from backtest_replay.models.trade import TradeRecord


class StatsFormatter:
    """Format stats panels and trade rows as plain text."""

    def __init__(self, currency: str = "USDT") -> None:
        self.currency = currency

    def format_profit_factor(self, value: float) -> str:
        """inf -> '∞', otherwise 2 decimals."""
        if math.isinf(value):
            return "∞"
        return f"{value:.2f}"

    def format_pnl(self, value: float) -> str:
        """50 -> '+50.00 USDT', -12.5 -> '-12.50 USDT'"""
        sign = "+" if value >= 0 else "-"
        return f"{sign}{self._format_number(abs(value))} {self.currency}"

    def format_r_multiple(self, value: float) -> str:
        return f"{value:.2f}R"

    def format_win_rate(self, value: float) -> str:
        return f"{value:.1f}%"

    def format_stats_summary(self, stats: BacktestStats) -> str:
        lines = [
            "📊 Backtest Stats",
            f"Trades: {stats.total_trades} "
            f"(W {stats.wins} / L {stats.losses} / BE {stats.breakevens})",
            f"Win Rate: {self.format_win_rate(stats.win_rate)}",
            f"Profit Factor: {self.format_profit_factor(stats.profit_factor)}",
            f"Total PnL: {self.format_pnl(stats.total_pnl)}",
            f"Max Drawdown: {self._format_number(stats.max_drawdown)} {self.currency}",
            f"Avg R: {self.format_r_multiple(stats.avg_r_multiple)}",
        ]
        return "\n".join(lines)

    def format_trade(self, trade: TradeRecord) -> str:
        emoji = {"win": "✅", "loss": "❌"}.get(trade.status, "➖")
        lines = [
            f"{emoji} {trade.pair} {trade.side.upper()} ({trade.timeframe})",
            f"  Entry: {self._format_number(trade.entry_price, 4)} | "
            f"Exit: {self._format_number(trade.exit_price, 4)}",
            f"  PnL: {self.format_pnl(trade.pnl)} | R: {self.format_r_multiple(trade.r_multiple)}",
        ]
        if trade.notes:
            lines.append(f"  Notes: {trade.notes}")
        return "\n".join(lines)

    def _format_number(self, value: float, decimals: int = 2) -> str:
        """Format number with commas: 102500.00 -> '102,500.00'"""
        return f"{value:,.{decimals}f}"
