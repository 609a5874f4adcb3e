"""Single simulated position: open, SL/TP auto-close, close into a TradeRecord."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import structlog

from backtest_replay.models.effects import (
    LONG_COLOR,
    SHORT_COLOR,
    AddMarkerEffect,
    ChartEffect,
    CreatePriceLineEffect,
    Marker,
    RemovePriceLineEffect,
)
from backtest_replay.models.position import Position, Side, direction_of
from backtest_replay.models.trade import TradeRecord, TradeStatus

logger = structlog.get_logger()

BREAKEVEN_EPSILON = 0.001
AUTO_CLOSE_NOTE = "SL/TP hit (auto)"


# --- Trade math ---


def _divide(numerator: float, denominator: float) -> float:
    """Float division that yields nan/inf instead of raising on a zero divisor."""
    if denominator == 0:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator)
    return numerator / denominator


def compute_pnl(side: str, entry_price: float, exit_price: float, size: float) -> float:
    """size * direction * (exit - entry) / entry."""
    diff = direction_of(side) * (exit_price - entry_price)
    return size * _divide(diff, entry_price)


def compute_pnl_percent(side: str, entry_price: float, exit_price: float) -> float:
    diff = direction_of(side) * (exit_price - entry_price)
    return _divide(diff, entry_price) * 100


def compute_r_multiple(
    side: str, entry_price: float, exit_price: float, stop_loss: float | None
) -> float:
    """Move in units of initial risk |entry - stop|; 0 when there is no risk."""
    risk = abs(entry_price - stop_loss) if stop_loss is not None else 0.0
    if not risk > 0:
        return 0.0
    return direction_of(side) * (exit_price - entry_price) / risk


def classify_status(pnl: float, epsilon: float = BREAKEVEN_EPSILON) -> TradeStatus:
    if pnl > epsilon:
        return "win"
    if pnl < -epsilon:
        return "loss"
    return "breakeven"


def _to_datetime(value: int | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(value, tz=timezone.utc)


def build_trade(
    side: Side,
    entry_price: float,
    exit_price: float,
    size: float,
    entry_time: int | datetime,
    exit_time: int | datetime,
    stop_loss: float | None = None,
    take_profit: float | None = None,
    notes: str | None = None,
    epsilon: float = BREAKEVEN_EPSILON,
    **context,
) -> TradeRecord:
    """
    Build an immutable TradeRecord with every derived field filled in.

    Used for replay closes and for trades typed into the journal by hand.
    Extra keyword arguments (pair, timeframe, strategy_id, user_id, ...) are
    copied onto the record.
    """
    pnl = compute_pnl(side, entry_price, exit_price, size)
    # status from the exact pnl; stored pnl and R are cents-rounded
    return TradeRecord(
        side=side,
        entry_price=entry_price,
        exit_price=exit_price,
        stop_loss=stop_loss,
        take_profit=take_profit,
        size=size,
        pnl=round(pnl, 2),
        pnl_percent=compute_pnl_percent(side, entry_price, exit_price),
        r_multiple=round(compute_r_multiple(side, entry_price, exit_price, stop_loss), 2),
        status=classify_status(pnl, epsilon),
        entry_time=_to_datetime(entry_time),
        exit_time=_to_datetime(exit_time),
        notes=notes or None,
        **context,
    )


# --- Chart effects ---


def open_effects(position: Position) -> list[ChartEffect]:
    """Entry marker + entry/SL/TP price lines for a freshly opened position."""
    is_long = position.side == "long"
    color = LONG_COLOR if is_long else SHORT_COLOR
    label = "LONG" if is_long else "SHORT"
    effects: list[ChartEffect] = [
        CreatePriceLineEffect(
            line_id="entry",
            price=position.entry_price,
            color=color,
            line_width=2,
            line_style=0,
            title=f"Entry {label}",
        )
    ]
    if position.stop_loss is not None:
        effects.append(
            CreatePriceLineEffect(
                line_id="stop_loss", price=position.stop_loss, color=SHORT_COLOR, title="SL"
            )
        )
    if position.take_profit is not None:
        effects.append(
            CreatePriceLineEffect(
                line_id="take_profit", price=position.take_profit, color=LONG_COLOR, title="TP"
            )
        )
    arrow = "▲" if is_long else "▼"
    effects.append(
        AddMarkerEffect(
            marker=Marker(
                time=position.entry_time,
                position="belowBar" if is_long else "aboveBar",
                color=color,
                shape="arrowUp" if is_long else "arrowDown",
                text=f"{arrow} {label} @{position.entry_price:.2f}",
            )
        )
    )
    return effects


def close_effects(position: Position, trade: TradeRecord, exit_time: int) -> list[ChartEffect]:
    """Close marker + removal of every price line the position created."""
    # stored pnl is cents-rounded and can be -0.0
    pnl = compute_pnl(position.side, position.entry_price, trade.exit_price, position.size)
    sign = "+" if pnl >= 0 else ""
    effects: list[ChartEffect] = [
        AddMarkerEffect(
            marker=Marker(
                time=exit_time,
                position="aboveBar" if position.side == "long" else "belowBar",
                color=LONG_COLOR if pnl >= 0 else SHORT_COLOR,
                shape="circle",
                text=f"Close {sign}{pnl:.2f}$",
            )
        ),
        RemovePriceLineEffect(line_id="entry"),
    ]
    if position.stop_loss is not None:
        effects.append(RemovePriceLineEffect(line_id="stop_loss"))
    if position.take_profit is not None:
        effects.append(RemovePriceLineEffect(line_id="take_profit"))
    return effects


# --- Manager ---


class PositionManager:
    """Holds zero or one open Position. Invalid calls are silent no-ops."""

    def __init__(self, epsilon: float = BREAKEVEN_EPSILON) -> None:
        self.epsilon = epsilon
        self.position: Position | None = None

    @property
    def has_position(self) -> bool:
        return self.position is not None

    def open(
        self,
        side: Side,
        size: float,
        entry_price: float,
        entry_time: int,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> Position | None:
        if self.position is not None:
            logger.debug("open_position_ignored", reason="position_already_open")
            return None
        self.position = Position(
            side=side,
            entry_price=entry_price,
            size=size,
            stop_loss=stop_loss,
            take_profit=take_profit,
            entry_time=entry_time,
        )
        logger.info(
            "position_opened",
            side=side,
            entry_price=entry_price,
            size=size,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        return self.position

    def auto_close_trigger(self, latest_close: float) -> str | None:
        """
        Which level latest_close has reached: "stop_loss", "take_profit" or None.

        Only the close is examined, not the candle's high/low range. The stop is
        checked before the target, so a tick that satisfies both counts as a stop.
        """
        pos = self.position
        if pos is None:
            return None
        is_long = pos.side == "long"
        if pos.stop_loss is not None:
            if (is_long and latest_close <= pos.stop_loss) or (
                not is_long and latest_close >= pos.stop_loss
            ):
                return "stop_loss"
        if pos.take_profit is not None:
            if (is_long and latest_close >= pos.take_profit) or (
                not is_long and latest_close <= pos.take_profit
            ):
                return "take_profit"
        return None

    def close(
        self,
        exit_price: float,
        exit_time: int,
        notes: str | None = None,
        **context,
    ) -> TradeRecord | None:
        """Convert the open position into a TradeRecord and clear it."""
        pos = self.position
        if pos is None:
            logger.debug("close_position_ignored", reason="no_open_position")
            return None
        trade = build_trade(
            side=pos.side,
            entry_price=pos.entry_price,
            exit_price=exit_price,
            size=pos.size,
            entry_time=pos.entry_time,
            exit_time=exit_time,
            stop_loss=pos.stop_loss,
            take_profit=pos.take_profit,
            notes=notes,
            epsilon=self.epsilon,
            **context,
        )
        self.position = None
        logger.info(
            "position_closed",
            side=trade.side,
            exit_price=exit_price,
            pnl=trade.pnl,
            r_multiple=trade.r_multiple,
            status=trade.status,
        )
        return trade

    def unrealized_pnl(self, price: float) -> float | None:
        """Mark-to-market pnl of the open position at price."""
        if self.position is None:
            return None
        return compute_pnl(self.position.side, self.position.entry_price, price, self.position.size)
