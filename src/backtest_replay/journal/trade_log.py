"""Per-strategy trade log with optimistic (pending) and confirmed entries."""

from __future__ import annotations

import enum
import uuid
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from backtest_replay.analytics.statistics import calculate_backtest_stats
from backtest_replay.journal.errors import TradePersistenceError
from backtest_replay.models.trade import TradeRecord

if TYPE_CHECKING:
    from backtest_replay.db.repository import TradeRepository
    from backtest_replay.models.stats import BacktestStats

logger = structlog.get_logger()

# Fields owned by the store; never sent in an update.
_IMMUTABLE_FIELDS = {"id", "strategy_id", "user_id", "created_at"}


class EntryState(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class JournalEntry(BaseModel):
    local_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    trade: TradeRecord
    state: EntryState = EntryState.PENDING
    error: str | None = None


class TradeLog:
    """
    Ordered trade log for one strategy.

    New trades are shown immediately as PENDING, become CONFIRMED once the
    store returns them with an id, and turn FAILED if the write is rejected.
    Failed entries stay out of the statistics until retry() succeeds or
    discard() drops them. Writes are never retried automatically.
    Edits and deletes are applied locally first and rolled back on failure.
    """

    def __init__(self, repo: TradeRepository, strategy_id: str, owner_id: str) -> None:
        self.repo = repo
        self.strategy_id = strategy_id
        self.owner_id = owner_id
        self.entries: list[JournalEntry] = []

    # --- Views ---

    @property
    def trades(self) -> list[TradeRecord]:
        """Confirmed + pending trades in log order (what the user sees)."""
        return [e.trade for e in self.entries if e.state != EntryState.FAILED]

    @property
    def confirmed(self) -> list[TradeRecord]:
        return [e.trade for e in self.entries if e.state == EntryState.CONFIRMED]

    @property
    def pending(self) -> list[JournalEntry]:
        return [e for e in self.entries if e.state == EntryState.PENDING]

    @property
    def failed(self) -> list[JournalEntry]:
        return [e for e in self.entries if e.state == EntryState.FAILED]

    def stats(self) -> BacktestStats:
        """Recomputed from scratch on every call."""
        return calculate_backtest_stats(self.trades)

    # --- Load ---

    async def load(self) -> list[TradeRecord]:
        """Replace confirmed entries with the store's list; local unconfirmed entries are kept."""
        stored = await self.repo.list_trades(self.strategy_id)
        unconfirmed = [e for e in self.entries if e.state != EntryState.CONFIRMED]
        self.entries = [
            JournalEntry(trade=t, state=EntryState.CONFIRMED) for t in stored
        ] + unconfirmed
        logger.info("trade_log_loaded", strategy_id=self.strategy_id, count=len(stored))
        return list(stored)

    # --- Add ---

    def stage(self, trade: TradeRecord) -> JournalEntry:
        """Show a trade optimistically, before it is persisted."""
        entry = JournalEntry(trade=trade)
        self.entries.append(entry)
        return entry

    async def persist(self, local_id: str) -> TradeRecord:
        """Write a staged entry to the store and reconcile with the result."""
        entry = self._entry(local_id)
        if entry is None or entry.state == EntryState.CONFIRMED:
            raise ValueError(f"No unconfirmed trade: {local_id}")
        entry.state = EntryState.PENDING
        entry.error = None
        try:
            saved = await self.repo.create_trade(self.owner_id, self.strategy_id, entry.trade)
        except Exception as e:
            entry.state = EntryState.FAILED
            entry.error = str(e)
            logger.warning(
                "trade_persist_failed",
                strategy_id=self.strategy_id,
                local_id=local_id,
                error=str(e),
            )
            raise TradePersistenceError("create", local_id, str(e)) from e
        entry.trade = saved
        entry.state = EntryState.CONFIRMED
        logger.info("trade_persisted", strategy_id=self.strategy_id, trade_id=saved.id)
        return saved

    async def add(self, trade: TradeRecord) -> TradeRecord:
        entry = self.stage(trade)
        return await self.persist(entry.local_id)

    async def retry(self, local_id: str) -> TradeRecord:
        """User-triggered retry of a failed write."""
        entry = self._entry(local_id)
        if entry is None or entry.state != EntryState.FAILED:
            raise ValueError(f"No failed trade: {local_id}")
        return await self.persist(local_id)

    def discard(self, local_id: str) -> None:
        """Drop a failed entry that the user chose not to retry."""
        entry = self._entry(local_id)
        if entry is None or entry.state != EntryState.FAILED:
            raise ValueError(f"No failed trade: {local_id}")
        self.entries.remove(entry)
        logger.info("trade_discarded", local_id=local_id)

    # --- Edit / delete (last write wins) ---

    async def edit(self, trade_id: str, replacement: TradeRecord) -> TradeRecord:
        """Replace a confirmed trade's fields wholesale."""
        entry = self._confirmed_entry(trade_id)
        previous = entry.trade
        updated = replacement.model_copy(
            update={
                "id": previous.id,
                "strategy_id": previous.strategy_id,
                "user_id": previous.user_id,
                "created_at": previous.created_at,
            }
        )
        entry.trade = updated
        try:
            await self.repo.update_trade(
                trade_id, updated.model_dump(exclude=_IMMUTABLE_FIELDS)
            )
        except Exception as e:
            entry.trade = previous
            logger.warning("trade_update_failed", trade_id=trade_id, error=str(e))
            raise TradePersistenceError("update", trade_id, str(e)) from e
        logger.info("trade_edited", trade_id=trade_id)
        return updated

    async def delete(self, trade_id: str) -> None:
        entry = self._confirmed_entry(trade_id)
        index = self.entries.index(entry)
        self.entries.pop(index)
        try:
            await self.repo.delete_trade(trade_id)
        except Exception as e:
            self.entries.insert(index, entry)
            logger.warning("trade_delete_failed", trade_id=trade_id, error=str(e))
            raise TradePersistenceError("delete", trade_id, str(e)) from e
        logger.info("trade_deleted", trade_id=trade_id)

    # --- Helpers ---

    def _entry(self, local_id: str) -> JournalEntry | None:
        for entry in self.entries:
            if entry.local_id == local_id:
                return entry
        return None

    def _confirmed_entry(self, trade_id: str) -> JournalEntry:
        for entry in self.entries:
            if entry.state == EntryState.CONFIRMED and entry.trade.id == trade_id:
                return entry
        raise ValueError(f"Trade not found: {trade_id}")
