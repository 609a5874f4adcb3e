"""Chart effect schemas emitted by the replay engine.

The engine never touches a chart. Every state transition returns a list of
these effects and the rendering layer applies them in order.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from backtest_replay.models.candle import Candle

LONG_COLOR = "#10B981"
SHORT_COLOR = "#EF4444"

PriceLineId = Literal["entry", "stop_loss", "take_profit"]


class Marker(BaseModel):
    time: int
    position: Literal["belowBar", "aboveBar"]
    color: str
    shape: Literal["arrowUp", "arrowDown", "circle"]
    text: str


class ChartEffect(BaseModel):
    """Base effect for all chart updates."""

    type: str = ""


class SetSeriesEffect(ChartEffect):
    """Replace every candle on the chart and fit the time scale."""

    type: str = "set_series"
    candles: list[Candle] = []


class AppendCandleEffect(ChartEffect):
    """Reveal one more candle (or update the in-progress one)."""

    type: str = "append_candle"
    candle: Candle


class AddMarkerEffect(ChartEffect):
    type: str = "add_marker"
    marker: Marker


class ClearMarkersEffect(ChartEffect):
    type: str = "clear_markers"


class CreatePriceLineEffect(ChartEffect):
    type: str = "create_price_line"
    line_id: PriceLineId
    price: float
    color: str
    line_width: int = 1
    line_style: int = 2  # 0 = solid, 2 = dashed
    title: str = ""


class RemovePriceLineEffect(ChartEffect):
    type: str = "remove_price_line"
    line_id: PriceLineId
