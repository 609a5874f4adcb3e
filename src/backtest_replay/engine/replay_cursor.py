"""Replay cursor: which prefix of the candle series is revealed."""

from __future__ import annotations

from bisect import bisect_left
from typing import TYPE_CHECKING

import structlog

from backtest_replay.models.replay import ReplayMode, ReplayState

if TYPE_CHECKING:
    from backtest_replay.models.candle import Candle

logger = structlog.get_logger()


class ReplayCursor:
    """
    Live mode shows the whole series. Replay mode shows series[0..current_index]
    and only ever grows by one candle per advance(); there is no rewind.

    Invalid calls (unknown start time, advance in live mode, advance past the
    last candle, stop in live mode) are no-ops and return a falsy value.
    """

    def __init__(self, series: list[Candle] | None = None) -> None:
        self.series: list[Candle] = list(series or [])
        self.state = ReplayState()

    @property
    def mode(self) -> ReplayMode:
        return self.state.mode

    @property
    def is_replaying(self) -> bool:
        return self.state.mode == ReplayMode.REPLAY

    @property
    def start_index(self) -> int:
        return self.state.start_index

    @property
    def current_index(self) -> int:
        return self.state.current_index

    def set_series(self, series: list[Candle]) -> None:
        """Replace the series wholesale. Always drops back to live mode."""
        self.series = list(series)
        self.state = ReplayState()

    def index_of(self, at_time: int) -> int:
        """Index of the candle whose time equals at_time, or -1."""
        idx = bisect_left(self.series, at_time, key=lambda c: c.time)
        if idx < len(self.series) and self.series[idx].time == at_time:
            return idx
        return -1

    def start(self, at_time: int) -> bool:
        """Enter replay at the candle with exactly this time."""
        if self.is_replaying:
            logger.debug("replay_start_ignored", reason="already_replaying")
            return False
        idx = self.index_of(at_time)
        if idx == -1:
            logger.debug("replay_start_ignored", reason="time_not_found", time=at_time)
            return False
        self._enter(idx)
        return True

    def start_at_or_after(self, at_time: int) -> bool:
        """Enter replay at the first candle with time >= at_time (else the last one)."""
        if self.is_replaying or not self.series:
            return False
        idx = bisect_left(self.series, at_time, key=lambda c: c.time)
        self._enter(min(idx, len(self.series) - 1))
        return True

    def _enter(self, idx: int) -> None:
        self.state = ReplayState(mode=ReplayMode.REPLAY, start_index=idx, current_index=idx)
        logger.info("replay_started", index=idx, time=self.series[idx].time)

    def advance(self) -> Candle | None:
        """Reveal exactly one more candle. Returns it, or None on a no-op."""
        if not self.is_replaying:
            logger.debug("replay_advance_ignored", reason="not_replaying")
            return None
        next_index = self.state.current_index + 1
        if next_index >= len(self.series):
            logger.debug("replay_advance_ignored", reason="end_of_history")
            return None
        self.state = self.state.model_copy(update={"current_index": next_index})
        return self.series[next_index]

    def stop(self) -> bool:
        if not self.is_replaying:
            return False
        logger.info(
            "replay_stopped",
            start_index=self.state.start_index,
            current_index=self.state.current_index,
        )
        self.state = ReplayState()
        return True

    def visible(self) -> list[Candle]:
        """Candles the user may see right now."""
        if not self.is_replaying:
            return list(self.series)
        return self.series[: self.state.current_index + 1]

    def current_candle(self) -> Candle | None:
        if not self.is_replaying:
            return None
        return self.series[self.state.current_index]

    def current_time(self) -> int | None:
        candle = self.current_candle()
        return candle.time if candle is not None else None
