"""ReplayEngine: candle series + replay cursor + open position for one session."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, SerializeAsAny

from backtest_replay.engine.position_manager import (
    AUTO_CLOSE_NOTE,
    BREAKEVEN_EPSILON,
    PositionManager,
    close_effects,
    open_effects,
)
from backtest_replay.engine.replay_cursor import ReplayCursor
from backtest_replay.models.effects import (
    AppendCandleEffect,
    ChartEffect,
    ClearMarkersEffect,
    SetSeriesEffect,
)
from backtest_replay.models.trade import TradeRecord

if TYPE_CHECKING:
    from backtest_replay.models.candle import Candle
    from backtest_replay.models.position import Position, Side
    from backtest_replay.models.replay import ReplayState

logger = structlog.get_logger()

STOP_CLOSE_NOTE = "Replay stopped (auto)"


class StepResult(BaseModel):
    """Outcome of one engine call. changed=False means the call was a no-op."""

    changed: bool = False
    effects: list[SerializeAsAny[ChartEffect]] = []
    closed_trade: TradeRecord | None = None


def parse_optional_price(value: float | str | None) -> float | None:
    """Form input -> float; blank or unparsable input means 'not set'."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None
    return float(value)


class ReplayEngine:
    """
    One replay session over a (symbol, interval) series for one strategy.

    Every public method is synchronous and returns a StepResult carrying the
    chart effects to apply and, when a position was closed, the new trade.
    Persisting that trade is the caller's job.
    """

    def __init__(
        self,
        symbol: str,
        interval: str,
        strategy_id: str = "",
        user_id: str = "",
        default_size: float = 1000.0,
        epsilon: float = BREAKEVEN_EPSILON,
    ) -> None:
        self.symbol = symbol
        self.interval = interval
        self.strategy_id = strategy_id
        self.user_id = user_id
        self.default_size = default_size
        self.cursor = ReplayCursor()
        self.positions = PositionManager(epsilon=epsilon)
        self._pending_replay_time: int | None = None

    # --- Read-only views ---

    @property
    def series(self) -> list[Candle]:
        return self.cursor.series

    @property
    def state(self) -> ReplayState:
        return self.cursor.state

    @property
    def is_replaying(self) -> bool:
        return self.cursor.is_replaying

    @property
    def position(self) -> Position | None:
        return self.positions.position

    @property
    def can_open(self) -> bool:
        return self.is_replaying and not self.positions.has_position

    def visible_candles(self) -> list[Candle]:
        return self.cursor.visible()

    def current_price(self) -> float | None:
        """Close of the replay candle, or of the latest candle in live mode."""
        candle = self.cursor.current_candle()
        if candle is None and self.series:
            candle = self.series[-1]
        return candle.close if candle is not None else None

    def unrealized_pnl(self) -> float | None:
        price = self.current_price()
        if price is None:
            return None
        return self.positions.unrealized_pnl(price)

    # --- Series ---

    def queue_replay(self, at_time: int) -> None:
        """Re-enter replay at this time once the next series is loaded."""
        self._pending_replay_time = at_time

    def cancel_queued_replay(self) -> None:
        self._pending_replay_time = None

    def load_series(self, candles: list[Candle]) -> StepResult:
        """
        Replace the series (new symbol/interval or fresh history).

        With a queued replay time the engine re-enters replay at the first
        candle at or after it and keeps any open position. Otherwise an active
        replay is stopped first.
        """
        effects: list[ChartEffect] = []
        closed: TradeRecord | None = None
        pending = self._pending_replay_time
        if pending is None and self.is_replaying:
            stopped = self.stop()
            effects.extend(stopped.effects)
            closed = stopped.closed_trade

        self.cursor.set_series(candles)
        if pending is not None:
            self._pending_replay_time = None
            self.cursor.start_at_or_after(pending)
        effects.append(SetSeriesEffect(candles=self.visible_candles()))
        logger.info(
            "series_loaded",
            symbol=self.symbol,
            interval=self.interval,
            count=len(candles),
            replaying=self.is_replaying,
        )
        return StepResult(changed=True, effects=effects, closed_trade=closed)

    def apply_live_candle(self, candle: Candle) -> StepResult:
        """Append a new live candle or replace the in-progress last one (live mode only)."""
        if self.is_replaying:
            return StepResult()
        series = self.cursor.series
        if series and series[-1].time == candle.time:
            series[-1] = candle
        elif not series or candle.time > series[-1].time:
            series.append(candle)
        else:
            logger.debug("live_candle_ignored", reason="stale", time=candle.time)
            return StepResult()
        return StepResult(changed=True, effects=[AppendCandleEffect(candle=candle)])

    # --- Replay cursor ---

    def start(self, at_time: int) -> StepResult:
        if not self.cursor.start(at_time):
            return StepResult()
        return StepResult(changed=True, effects=[SetSeriesEffect(candles=self.visible_candles())])

    def advance(self) -> StepResult:
        """Reveal one candle, then run the SL/TP check against its close exactly once."""
        candle = self.cursor.advance()
        if candle is None:
            return StepResult()
        result = StepResult(changed=True, effects=[AppendCandleEffect(candle=candle)])
        closed = self.check_auto_close(candle.close)
        if closed.closed_trade is not None:
            result.effects.extend(closed.effects)
            result.closed_trade = closed.closed_trade
        return result

    def stop(self) -> StepResult:
        """Leave replay. An open position is closed at the last revealed price first."""
        if not self.is_replaying:
            self._pending_replay_time = None
            return StepResult()
        effects: list[ChartEffect] = []
        closed: TradeRecord | None = None
        if self.positions.has_position:
            forced = self.close_position(notes=STOP_CLOSE_NOTE)
            effects.extend(forced.effects)
            closed = forced.closed_trade
        self.cursor.stop()
        self._pending_replay_time = None
        effects.append(ClearMarkersEffect())
        effects.append(SetSeriesEffect(candles=self.visible_candles()))
        return StepResult(changed=True, effects=effects, closed_trade=closed)

    # --- Positions ---

    def open_position(
        self,
        side: Side,
        size: float | str | None = None,
        stop_loss: float | str | None = None,
        take_profit: float | str | None = None,
    ) -> StepResult:
        """Open at the close of the current replay candle."""
        if not self.is_replaying:
            logger.debug("open_position_ignored", reason="not_replaying")
            return StepResult()
        candle = self.cursor.current_candle()
        position = self.positions.open(
            side=side,
            size=parse_optional_price(size) or self.default_size,
            entry_price=candle.close,
            entry_time=candle.time,
            stop_loss=parse_optional_price(stop_loss),
            take_profit=parse_optional_price(take_profit),
        )
        if position is None:
            return StepResult()
        return StepResult(changed=True, effects=open_effects(position))

    def check_auto_close(self, latest_close: float) -> StepResult:
        if not self.is_replaying:
            return StepResult()
        trigger = self.positions.auto_close_trigger(latest_close)
        if trigger is None:
            return StepResult()
        logger.info("auto_close_triggered", trigger=trigger, price=latest_close)
        return self.close_position(exit_price=latest_close, notes=AUTO_CLOSE_NOTE)

    def close_position(
        self, exit_price: float | None = None, notes: str | None = None
    ) -> StepResult:
        """Close the open position (at the current price unless exit_price is given)."""
        position = self.positions.position
        if position is None:
            logger.debug("close_position_ignored", reason="no_open_position")
            return StepResult()
        if exit_price is None:
            exit_price = self.current_price()
        exit_time = self.cursor.current_time()
        if exit_time is None:
            exit_time = self.series[-1].time if self.series else position.entry_time
        trade = self.positions.close(
            exit_price=exit_price,
            exit_time=exit_time,
            notes=notes,
            pair=self.symbol,
            timeframe=self.interval,
            strategy_id=self.strategy_id,
            user_id=self.user_id,
        )
        return StepResult(
            changed=True,
            effects=close_effects(position, trade, exit_time),
            closed_trade=trade,
        )
