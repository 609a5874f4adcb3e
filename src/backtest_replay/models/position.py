"""Simulated Position Pydantic model."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

Side = Literal["long", "short"]


def direction_of(side: str) -> int:
    """+1 for long, -1 for short."""
    return 1 if side == "long" else -1


class Position(BaseModel):
    """An open simulated position.

    Callers keep ``stop_loss < entry_price < take_profit`` for longs and the
    reverse for shorts. Inconsistent brackets are accepted but will not trigger
    the way the user expects.
    """

    model_config = ConfigDict(frozen=True)

    side: Side
    entry_price: float
    size: float  # notional, in quote currency
    stop_loss: float | None = None
    take_profit: float | None = None
    entry_time: int  # unix seconds of the entry candle

    @property
    def direction(self) -> int:
        return direction_of(self.side)
