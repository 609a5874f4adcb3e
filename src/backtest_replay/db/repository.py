"""DB repositories: TradeRepository, StrategyRepository."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backtest_replay.analytics.statistics import calculate_backtest_stats
from backtest_replay.db.models import BacktestStrategyORM, BacktestTradeORM
from backtest_replay.models.strategy import BacktestStrategy
from backtest_replay.models.trade import TradeRecord

logger = structlog.get_logger()

_STRATEGY_FIELDS = {
    "name",
    "description",
    "symbol",
    "timeframe",
    "tags",
    "initial_capital",
    "currency",
}


def _orm_to_trade_record(orm: BacktestTradeORM) -> TradeRecord:
    """Convert BacktestTradeORM to TradeRecord Pydantic model."""
    return TradeRecord(
        id=orm.id,
        strategy_id=orm.strategy_id,
        user_id=orm.user_id,
        pair=orm.pair,
        timeframe=orm.timeframe,
        side=orm.side,
        entry_price=orm.entry_price,
        exit_price=orm.exit_price,
        stop_loss=orm.stop_loss,
        take_profit=orm.take_profit,
        size=orm.size,
        pnl=orm.pnl,
        pnl_percent=orm.pnl_percent or 0.0,
        r_multiple=orm.r_multiple or 0.0,
        status=orm.status,
        entry_time=orm.entry_time,
        exit_time=orm.exit_time,
        notes=orm.notes,
        screenshot_url=orm.screenshot_url,
        created_at=orm.created_at,
    )


def _orm_to_strategy(orm: BacktestStrategyORM) -> BacktestStrategy:
    return BacktestStrategy(
        id=orm.id,
        user_id=orm.user_id,
        name=orm.name,
        description=orm.description,
        symbol=orm.symbol,
        timeframe=orm.timeframe,
        tags=orm.tags or [],
        initial_capital=orm.initial_capital or 0.0,
        currency=orm.currency or "USDT",
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


class TradeRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create_trade(
        self, owner_id: str, strategy_id: str, trade: TradeRecord
    ) -> TradeRecord:
        """Insert a closed trade. Returns it with its generated id."""
        data = trade.model_dump(exclude={"id", "strategy_id", "user_id", "created_at"})
        async with self.session_factory() as session:
            orm = BacktestTradeORM(
                id=str(uuid.uuid4()),
                strategy_id=strategy_id,
                user_id=owner_id,
                created_at=datetime.now(timezone.utc),
                **data,
            )
            session.add(orm)
            await session.flush()
            await session.commit()
            logger.info("trade_created", trade_id=orm.id, strategy_id=strategy_id)
            return _orm_to_trade_record(orm)

    async def update_trade(self, trade_id: str, fields: dict) -> None:
        """Update trade fields by id."""
        async with self.session_factory() as session:
            stmt = select(BacktestTradeORM).where(BacktestTradeORM.id == trade_id)
            result = await session.execute(stmt)
            trade = result.scalar_one_or_none()
            if trade is None:
                raise ValueError(f"Trade not found: {trade_id}")
            for key, value in fields.items():
                setattr(trade, key, value)
            await session.flush()
            await session.commit()
            logger.info("trade_updated", trade_id=trade_id, fields=list(fields.keys()))

    async def delete_trade(self, trade_id: str) -> None:
        async with self.session_factory() as session:
            stmt = select(BacktestTradeORM).where(BacktestTradeORM.id == trade_id)
            result = await session.execute(stmt)
            trade = result.scalar_one_or_none()
            if trade is None:
                raise ValueError(f"Trade not found: {trade_id}")
            await session.delete(trade)
            await session.commit()
            logger.info("trade_deleted", trade_id=trade_id)

    async def list_trades(self, strategy_id: str) -> list[TradeRecord]:
        """All trades of a strategy, ordered by entry_time asc."""
        async with self.session_factory() as session:
            stmt = (
                select(BacktestTradeORM)
                .where(BacktestTradeORM.strategy_id == strategy_id)
                .order_by(BacktestTradeORM.entry_time.asc())
            )
            result = await session.execute(stmt)
            return [_orm_to_trade_record(t) for t in result.scalars().all()]


class StrategyRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create(self, user_id: str, data: dict) -> BacktestStrategy:
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            orm = BacktestStrategyORM(
                id=str(uuid.uuid4()),
                user_id=user_id,
                created_at=now,
                updated_at=now,
                **{k: v for k, v in data.items() if k in _STRATEGY_FIELDS},
            )
            session.add(orm)
            await session.flush()
            await session.commit()
            logger.info("strategy_created", strategy_id=orm.id, name=orm.name)
            return _orm_to_strategy(orm).model_copy(update={"trade_count": 0})

    async def update(self, strategy_id: str, data: dict) -> None:
        """Patch editable fields; unknown keys are ignored."""
        async with self.session_factory() as session:
            stmt = select(BacktestStrategyORM).where(BacktestStrategyORM.id == strategy_id)
            result = await session.execute(stmt)
            strategy = result.scalar_one_or_none()
            if strategy is None:
                raise ValueError(f"Strategy not found: {strategy_id}")
            for key, value in data.items():
                if key in _STRATEGY_FIELDS:
                    setattr(strategy, key, value)
            strategy.updated_at = datetime.now(timezone.utc)
            await session.flush()
            await session.commit()
            logger.info("strategy_updated", strategy_id=strategy_id, fields=list(data.keys()))

    async def delete(self, strategy_id: str) -> None:
        """Delete a strategy and all of its trades."""
        async with self.session_factory() as session:
            await session.execute(
                delete(BacktestTradeORM).where(BacktestTradeORM.strategy_id == strategy_id)
            )
            await session.execute(
                delete(BacktestStrategyORM).where(BacktestStrategyORM.id == strategy_id)
            )
            await session.commit()
            logger.info("strategy_deleted", strategy_id=strategy_id)

    async def list_for_user(self, user_id: str) -> list[BacktestStrategy]:
        """Strategies of a user, newest first."""
        async with self.session_factory() as session:
            stmt = (
                select(BacktestStrategyORM)
                .where(BacktestStrategyORM.user_id == user_id)
                .order_by(BacktestStrategyORM.created_at.desc())
            )
            result = await session.execute(stmt)
            return [_orm_to_strategy(s) for s in result.scalars().all()]

    async def list_with_stats(
        self, user_id: str, trade_repo: TradeRepository
    ) -> list[BacktestStrategy]:
        """Strategies with stats and trade_count computed from their trades."""
        strategies = await self.list_for_user(user_id)
        enriched = []
        for strategy in strategies:
            trades = await trade_repo.list_trades(strategy.id)
            enriched.append(
                strategy.model_copy(
                    update={
                        "stats": calculate_backtest_stats(trades),
                        "trade_count": len(trades),
                    }
                )
            )
        return enriched
