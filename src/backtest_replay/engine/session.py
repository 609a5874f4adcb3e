"""Async session wiring: candle store -> replay engine -> trade log."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from backtest_replay.engine.replay_engine import StepResult

if TYPE_CHECKING:
    from backtest_replay.engine.replay_engine import ReplayEngine
    from backtest_replay.journal.trade_log import JournalEntry, TradeLog
    from backtest_replay.market_data.candle_store import CandleStore
    from backtest_replay.models.candle import Candle
    from backtest_replay.models.effects import ChartEffect
    from backtest_replay.models.position import Side
    from backtest_replay.models.stats import BacktestStats

logger = structlog.get_logger()


class BacktestSession:
    """
    One user's replay session for a (symbol, interval, strategy).

    Engine transitions run one at a time under a lock, so every revealed
    candle gets its SL/TP check before the next advance() is accepted. A
    closed trade is staged in the trade log while the lock is held and
    persisted after it is released. A persistence failure propagates as
    TradePersistenceError.

    stop() bumps a generation counter: advance() calls that were already
    waiting on the lock when stop() was called are dropped.
    """

    def __init__(
        self,
        engine: ReplayEngine,
        trade_log: TradeLog,
        candle_store: CandleStore | None = None,
        on_effects: Callable[[list[ChartEffect]], None] | None = None,
    ) -> None:
        self.engine = engine
        self.trade_log = trade_log
        self.candle_store = candle_store
        self.on_effects = on_effects
        self.generation = 0
        self._lock = asyncio.Lock()
        if candle_store is not None:
            candle_store.add_listener(self._on_live_candle)

    async def load(self) -> StepResult:
        """Load the trade log and, with a candle store, the engine's candle history."""
        await self.trade_log.load()
        if self.candle_store is None:
            return StepResult()
        candles = await self.candle_store.select(self.engine.symbol, self.engine.interval)
        async with self._lock:
            result = self.engine.load_series(candles)
            # a queued replay restore re-enters replay; otherwise the engine is live
            if self.engine.is_replaying:
                self.candle_store.freeze()
            else:
                self.candle_store.unfreeze()
            entry = self._stage(result)
        return await self._finish(result, entry)

    async def start(self, at_time: int) -> StepResult:
        async with self._lock:
            result = self.engine.start(at_time)
            if result.changed and self.candle_store is not None:
                self.candle_store.freeze()
        self._emit(result)
        return result

    async def advance(self) -> StepResult:
        generation = self.generation
        async with self._lock:
            if generation != self.generation:
                logger.debug("advance_dropped", reason="session_stopped")
                return StepResult()
            result = self.engine.advance()
            entry = self._stage(result)
        return await self._finish(result, entry)

    async def open_position(
        self,
        side: Side,
        size: float | str | None = None,
        stop_loss: float | str | None = None,
        take_profit: float | str | None = None,
    ) -> StepResult:
        async with self._lock:
            result = self.engine.open_position(side, size, stop_loss, take_profit)
        self._emit(result)
        return result

    async def close_position(self, notes: str | None = None) -> StepResult:
        """Manual close at the current replay price."""
        async with self._lock:
            result = self.engine.close_position(notes=notes)
            entry = self._stage(result)
        return await self._finish(result, entry)

    async def stop(self) -> StepResult:
        """Leave replay; with a candle store, reload its full series."""
        self.generation += 1
        async with self._lock:
            if self.candle_store is not None and self.engine.is_replaying:
                self.candle_store.unfreeze()
                self.engine.cancel_queued_replay()
                # load_series() stops the replay (force-closing any position) first
                result = self.engine.load_series(self.candle_store.get_full_series())
            else:
                result = self.engine.stop()
            entry = self._stage(result)
        return await self._finish(result, entry)

    def stats(self) -> BacktestStats:
        return self.trade_log.stats()

    async def _on_live_candle(self, candle: Candle, appended: bool) -> None:
        async with self._lock:
            result = self.engine.apply_live_candle(candle)
        self._emit(result)

    def _stage(self, result: StepResult) -> JournalEntry | None:
        if result.closed_trade is None:
            return None
        return self.trade_log.stage(result.closed_trade)

    async def _finish(self, result: StepResult, entry: JournalEntry | None) -> StepResult:
        self._emit(result)
        if entry is not None:
            await self.trade_log.persist(entry.local_id)
        return result

    def _emit(self, result: StepResult) -> None:
        if result.changed and self.on_effects is not None:
            self.on_effects(result.effects)
