"""Unit tests for PositionManager and trade math."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from backtest_replay.engine.position_manager import (
    PositionManager,
    build_trade,
    classify_status,
    close_effects,
    compute_pnl,
    compute_pnl_percent,
    compute_r_multiple,
    open_effects,
)
from backtest_replay.models.effects import (
    LONG_COLOR,
    SHORT_COLOR,
    AddMarkerEffect,
    CreatePriceLineEffect,
    RemovePriceLineEffect,
)
from backtest_replay.models.trade import TradeRecord

ENTRY_TIME = 1_700_000_000
EXIT_TIME = 1_700_014_400


@pytest.fixture
def manager() -> PositionManager:
    return PositionManager()


def _open(manager: PositionManager, side: str = "long", **kwargs):
    params = {"size": 1000.0, "entry_price": 100.0, "entry_time": ENTRY_TIME}
    params.update(kwargs)
    return manager.open(side=side, **params)


# --- Trade math ---


class TestTradeMath:
    def test_long_pnl_and_r(self) -> None:
        assert compute_pnl("long", 100.0, 110.0, 1000.0) == pytest.approx(100.0)
        assert compute_r_multiple("long", 100.0, 110.0, 95.0) == pytest.approx(2.0)

    def test_short_profits_on_decline(self) -> None:
        assert compute_pnl("short", 100.0, 90.0, 1000.0) == pytest.approx(100.0)
        assert compute_pnl("short", 100.0, 110.0, 1000.0) == pytest.approx(-100.0)

    def test_pnl_sign_follows_direction(self) -> None:
        for entry, exit_ in [(100.0, 120.0), (50.0, 20.0), (3.0, 3.0)]:
            for side, direction in [("long", 1), ("short", -1)]:
                pnl = compute_pnl(side, entry, exit_, 500.0)
                assert (pnl > 0) == (direction * (exit_ - entry) > 0)
                assert (pnl < 0) == (direction * (exit_ - entry) < 0)

    def test_r_multiple_without_stop_is_zero(self) -> None:
        assert compute_r_multiple("long", 100.0, 120.0, None) == 0.0

    def test_r_multiple_with_stop_at_entry_is_zero(self) -> None:
        assert compute_r_multiple("long", 100.0, 120.0, 100.0) == 0.0

    def test_r_multiple_sign_matches_pnl(self) -> None:
        r = compute_r_multiple("short", 100.0, 104.0, 102.0)
        pnl = compute_pnl("short", 100.0, 104.0, 1000.0)

        assert r == pytest.approx(-2.0)
        assert (r < 0) == (pnl < 0)

    def test_pnl_percent(self) -> None:
        assert compute_pnl_percent("long", 200.0, 210.0) == pytest.approx(5.0)

    def test_zero_entry_price_does_not_raise(self) -> None:
        pnl = compute_pnl("long", 0.0, 10.0, 1000.0)

        assert math.isinf(pnl)
        assert math.isnan(compute_pnl("long", 0.0, 0.0, 1000.0))


class TestClassifyStatus:
    @pytest.mark.parametrize(
        ("pnl", "expected"),
        [
            (0.002, "win"),
            (-0.002, "loss"),
            (0.001, "breakeven"),
            (-0.001, "breakeven"),
            (0.0, "breakeven"),
        ],
    )
    def test_epsilon_band(self, pnl: float, expected: str) -> None:
        assert classify_status(pnl) == expected


class TestBuildTrade:
    def test_long_trade_fields(self) -> None:
        trade = build_trade(
            side="long",
            entry_price=100.0,
            exit_price=110.0,
            size=1000.0,
            entry_time=ENTRY_TIME,
            exit_time=EXIT_TIME,
            stop_loss=95.0,
            pair="BTCUSDT",
        )

        assert trade.pnl == 100.0
        assert trade.r_multiple == 2.0
        assert trade.pnl_percent == pytest.approx(10.0)
        assert trade.status == "win"
        assert trade.pair == "BTCUSDT"
        assert trade.entry_time == datetime.fromtimestamp(ENTRY_TIME, tz=timezone.utc)

    def test_pnl_rounded_to_cents(self) -> None:
        trade = build_trade(
            side="long",
            entry_price=3.0,
            exit_price=4.0,
            size=1000.0,
            entry_time=ENTRY_TIME,
            exit_time=EXIT_TIME,
        )

        assert trade.pnl == 333.33

    def test_status_uses_unrounded_pnl(self) -> None:
        # pnl = 0.004: rounds to 0.0 but is above the breakeven band
        trade = build_trade(
            side="long",
            entry_price=1000.0,
            exit_price=1000.004,
            size=1000.0,
            entry_time=ENTRY_TIME,
            exit_time=EXIT_TIME,
        )

        assert trade.pnl == 0.0
        assert trade.status == "win"

    def test_blank_notes_become_none(self) -> None:
        trade = build_trade(
            side="short",
            entry_price=100.0,
            exit_price=100.0,
            size=1000.0,
            entry_time=ENTRY_TIME,
            exit_time=EXIT_TIME,
            notes="",
        )

        assert trade.notes is None
        assert trade.status == "breakeven"

    def test_accepts_datetimes(self) -> None:
        entry = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
        trade = build_trade(
            side="long",
            entry_price=100.0,
            exit_price=101.0,
            size=100.0,
            entry_time=entry,
            exit_time=entry,
        )

        assert trade.entry_time == entry

    def test_infinite_pnl_survives_json(self) -> None:
        trade = build_trade(
            side="long",
            entry_price=0.0,
            exit_price=10.0,
            size=100.0,
            entry_time=ENTRY_TIME,
            exit_time=EXIT_TIME,
        )
        payload = trade.model_dump_json()

        assert '"pnl":Infinity' in payload
        restored = TradeRecord.model_validate_json(payload)
        assert restored.pnl == math.inf


# --- open() ---


class TestOpen:
    def test_open_creates_position(self, manager: PositionManager) -> None:
        position = _open(manager, stop_loss=95.0, take_profit=120.0)

        assert position is not None
        assert manager.has_position
        assert position.direction == 1
        assert position.stop_loss == 95.0

    def test_second_open_is_noop(self, manager: PositionManager) -> None:
        first = _open(manager)

        assert _open(manager, side="short", entry_price=200.0) is None
        assert manager.position is first


# --- auto_close_trigger() ---


class TestAutoCloseTrigger:
    def test_long_stop_hit(self, manager: PositionManager) -> None:
        _open(manager, stop_loss=95.0, take_profit=120.0)

        assert manager.auto_close_trigger(95.0) == "stop_loss"
        assert manager.auto_close_trigger(94.0) == "stop_loss"

    def test_long_target_hit(self, manager: PositionManager) -> None:
        _open(manager, stop_loss=95.0, take_profit=120.0)

        assert manager.auto_close_trigger(121.0) == "take_profit"

    def test_long_inside_bracket(self, manager: PositionManager) -> None:
        _open(manager, stop_loss=95.0, take_profit=120.0)

        assert manager.auto_close_trigger(110.0) is None

    def test_short_levels_are_mirrored(self, manager: PositionManager) -> None:
        _open(manager, side="short", stop_loss=105.0, take_profit=90.0)

        assert manager.auto_close_trigger(106.0) == "stop_loss"
        assert manager.auto_close_trigger(89.0) == "take_profit"
        assert manager.auto_close_trigger(100.0) is None

    def test_stop_checked_before_target(self, manager: PositionManager) -> None:
        # inverted bracket: a close of 100 satisfies both levels
        _open(manager, stop_loss=101.0, take_profit=99.0)

        assert manager.auto_close_trigger(100.0) == "stop_loss"

    def test_no_levels_never_trigger(self, manager: PositionManager) -> None:
        _open(manager)

        assert manager.auto_close_trigger(0.01) is None
        assert manager.auto_close_trigger(1_000_000.0) is None

    def test_without_position(self, manager: PositionManager) -> None:
        assert manager.auto_close_trigger(100.0) is None


# --- close() ---


class TestClose:
    def test_close_returns_trade_and_clears(self, manager: PositionManager) -> None:
        _open(manager, stop_loss=95.0)

        trade = manager.close(110.0, EXIT_TIME, notes="tp by hand", pair="BTCUSDT")

        assert trade is not None
        assert trade.pnl == 100.0
        assert trade.r_multiple == 2.0
        assert trade.notes == "tp by hand"
        assert manager.position is None

    def test_close_without_position_is_noop(self, manager: PositionManager) -> None:
        assert manager.close(110.0, EXIT_TIME) is None

    def test_unrealized_pnl(self, manager: PositionManager) -> None:
        assert manager.unrealized_pnl(110.0) is None
        _open(manager, side="short")

        assert manager.unrealized_pnl(90.0) == pytest.approx(100.0)


# --- Chart effects ---


class TestEffects:
    def test_open_effects_long_with_bracket(self, manager: PositionManager) -> None:
        position = _open(manager, stop_loss=95.0, take_profit=120.0)
        effects = open_effects(position)

        lines = [e for e in effects if isinstance(e, CreatePriceLineEffect)]
        assert [line.line_id for line in lines] == ["entry", "stop_loss", "take_profit"]
        assert lines[0].color == LONG_COLOR
        assert lines[1].color == SHORT_COLOR
        marker = effects[-1]
        assert isinstance(marker, AddMarkerEffect)
        assert marker.marker.text == "▲ LONG @100.00"
        assert marker.marker.position == "belowBar"

    def test_open_effects_short_without_bracket(self, manager: PositionManager) -> None:
        position = _open(manager, side="short")
        effects = open_effects(position)

        assert len(effects) == 2
        assert effects[0].color == SHORT_COLOR
        assert effects[1].marker.shape == "arrowDown"

    def test_close_effects_remove_lines(self, manager: PositionManager) -> None:
        position = _open(manager, stop_loss=95.0)
        trade = manager.close(90.0, EXIT_TIME)
        effects = close_effects(position, trade, EXIT_TIME)

        marker = effects[0]
        assert isinstance(marker, AddMarkerEffect)
        assert marker.marker.text == "Close -100.00$"
        assert marker.marker.color == SHORT_COLOR
        removed = [e.line_id for e in effects if isinstance(e, RemovePriceLineEffect)]
        assert removed == ["entry", "stop_loss"]

    def test_close_marker_uses_unrounded_pnl(self, manager: PositionManager) -> None:
        position = _open(manager, entry_price=100000.0)
        trade = manager.close(99999.9996, EXIT_TIME)

        marker = close_effects(position, trade, EXIT_TIME)[0].marker

        assert trade.pnl == 0.0
        assert trade.status == "breakeven"
        assert marker.text == "Close -0.00$"
        assert marker.color == SHORT_COLOR
