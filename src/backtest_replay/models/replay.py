"""ReplayMode, ReplayState models."""

import enum

from pydantic import BaseModel


class ReplayMode(enum.Enum):
    LIVE = "live"
    REPLAY = "replay"


class ReplayState(BaseModel):
    mode: ReplayMode = ReplayMode.LIVE
    start_index: int = -1
    current_index: int = -1
