"""OHLC candle Pydantic model."""

from datetime import datetime, timezone

from pydantic import BaseModel


class Candle(BaseModel):
    time: int  # unix seconds, unique per series
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.time, tz=timezone.utc)
